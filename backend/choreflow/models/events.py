"""Change-feed event models"""
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class ChangeType(str, Enum):
    ADDED = "added"
    MODIFIED = "modified"
    REMOVED = "removed"


class ChangeEvent(BaseModel):
    """One document change from a watched collection"""
    type: ChangeType
    doc: Dict[str, Any]
    previous: Optional[Dict[str, Any]] = None


_WEBHOOK_CHANGE_TYPES = {
    "INSERT": ChangeType.ADDED,
    "UPDATE": ChangeType.MODIFIED,
    "DELETE": ChangeType.REMOVED,
}


class WebhookPayload(BaseModel):
    """Supabase database-webhook body"""
    type: Literal["INSERT", "UPDATE", "DELETE"]
    table: str
    schema_name: str = Field("public", alias="schema")
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None

    def to_change_event(self) -> ChangeEvent:
        change_type = _WEBHOOK_CHANGE_TYPES[self.type]
        doc = self.record if change_type != ChangeType.REMOVED else self.old_record
        return ChangeEvent(type=change_type, doc=doc or {}, previous=self.old_record)
