"""Audit trail repository interface."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from machina.domain.audit.audit_event import AuditEvent


class AuditRepository(ABC):

    @abstractmethod
    def record(self, event: AuditEvent) -> None:
        """Append an audit event."""

    @abstractmethod
    def find_by_target(self, target_id: str, action: Optional[str] = None) -> List[AuditEvent]:
        """Events for a target, oldest first."""

    @abstractmethod
    def search(self,
               action: Optional[str] = None,
               outcome: Optional[str] = None,
               actor_id: Optional[str] = None,
               target_type: Optional[str] = None,
               target_id: Optional[str] = None,
               after: Optional[datetime] = None,
               before: Optional[datetime] = None,
               limit: int = 50,
               offset: int = 0) -> List[AuditEvent]:
        """Events matching every given filter, newest first."""
