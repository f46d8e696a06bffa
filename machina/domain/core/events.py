from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Dict, Any
import uuid

from machina.domain.core.common_types import utcnow


@dataclass(frozen=True)
class ResourceStateChangedEvent:
    """Event raised when a resource's state changes."""
    old_state: str
    new_state: str
    resource_id: str
    resource_type: str
    details: Optional[Dict[str, Any]] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=utcnow)
