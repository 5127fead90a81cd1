"""
Raw tracking models

Events, sessions and visitors as written by the ingestion layer. The
aggregation core only reads these through aggregate queries, but the caching
service stores sessions and visitor identification entries in this shape.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """Supported beacon event types"""
    PAGE_VIEW = "page_view"
    CLICK = "click"
    SCROLL = "scroll"
    FORM_SUBMIT = "form_submit"
    CUSTOM = "custom"
    SESSION_START = "session_start"
    SESSION_END = "session_end"


class Event(BaseModel):
    """Immutable tracked event"""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    session_id: str
    event_type: EventType
    url: str
    referrer: Optional[str] = None
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime


class Session(BaseModel):
    """One visitor's browsing window"""
    id: str
    visitor_id: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    page_views: int = 0
    duration_seconds: Optional[int] = None
    is_returning_visitor: bool = False
    device_info: Dict[str, Any] = Field(default_factory=dict)
    geographic_data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_active(self) -> bool:
        return self.end_time is None


class Visitor(BaseModel):
    """Long-lived visitor identity"""
    id: str
    first_visit: datetime
    last_visit: Optional[datetime] = None
    total_sessions: int = 0
    total_page_views: int = 0


class CachedVisitor(BaseModel):
    """Visitor identification entry kept in the cache"""
    cookie_id: Optional[str] = None
    browser_fingerprint: Optional[str] = None
    is_returning: bool
    last_seen: datetime
