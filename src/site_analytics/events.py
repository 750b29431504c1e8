
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class EventType(str, Enum):
    CLICK = "click"
    PROJECT_VIEW = "project_view"
    SERVICE_CLICK = "service_click"
    WHATSAPP_CLICK = "whatsapp_click"


@dataclass
class InteractionEvent:
    """One discrete user action. page_path is filled in when queued."""
    event_type: str
    element_id: Optional[str] = None
    element_type: Optional[str] = None
    x_position: Optional[int] = None
    y_position: Optional[int] = None
    page_path: Optional[str] = None
    project_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if isinstance(self.event_type, EventType):
            self.event_type = self.event_type.value

    def to_row(self, *, session_id: str, fingerprint: str, created_at: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "session_id": session_id,
            "fingerprint": fingerprint,
            "event_type": self.event_type,
            "element_id": self.element_id,
            "element_type": self.element_type,
            "x_position": self.x_position,
            "y_position": self.y_position,
            "page_path": self.page_path,
            "project_id": self.project_id,
            "metadata": dict(self.metadata) if self.metadata else None,
            "created_at": created_at,
        }
