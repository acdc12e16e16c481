"""
Notification events emitted by the engine.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..data.models import Dispatch, DispatchLoadStatus, MatchPass


class NotificationEvent(BaseModel, ABC):
    """Base event: which template to render and with what data."""

    template_name: str
    subject: str

    @property
    @abstractmethod
    def template_data(self) -> dict[str, Any]:
        """Values rendered into the notification template."""


class StatusChanged(NotificationEvent):
    """A dispatch moved from one status to another (sent after commit)."""

    subject: str = "Load Status Update"
    dispatch_id: str
    load_number: Optional[int] = None
    previous: DispatchLoadStatus
    new: DispatchLoadStatus

    @classmethod
    def for_dispatch(
        cls, dispatch: Dispatch, previous: DispatchLoadStatus, template_name: str
    ) -> "StatusChanged":
        return cls(
            template_name=template_name,
            dispatch_id=dispatch.id,
            load_number=dispatch.load_number,
            previous=previous,
            new=dispatch.status,
        )

    @property
    def template_data(self) -> dict[str, Any]:
        return {"loadNumber": self.load_number, "status": self.new.value}


class MatchFound(NotificationEvent):
    """A match run for a load or truck returned at least one candidate."""

    subject: str = "Matches Found"
    subject_kind: str = Field(..., description='"load" or "truck"')
    subject_id: str
    reference: Optional[int] = Field(None, description="loadNumber or referenceNumber")
    match_pass: MatchPass
    total_count: int

    @property
    def template_data(self) -> dict[str, Any]:
        return {
            "kind": self.subject_kind,
            "reference": self.reference,
            "matchPass": self.match_pass.value,
            "totalCount": self.total_count,
        }
