"""
API Schemas
===========

Request bodies accepted by the HTTP layer (pydantic models).

ABSENCE OVER THE WIRE:
JSON cannot tell "missing" from null. In a delta change, an omitted
old_value / new_value key means the path is absent on that side; an
explicit null is the value None.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class FieldChangeIn(BaseModel):
    old_value: Any = None
    new_value: Any = None
    change_reason: Optional[str] = None
    source_text: Optional[str] = None


class SnapshotIn(BaseModel):
    """A ready-made snapshot from an entity change source."""
    id: Optional[str] = None
    entity_type: str
    is_keyframe: bool
    change_type: str = "UPDATE"
    created_at: Optional[datetime] = None
    state: Optional[Dict[str, Any]] = None
    changes: Optional[Dict[str, FieldChangeIn]] = None
    change_summary: str = ""
    ai_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    chapter_order: Optional[int] = None
    chapter_id: Optional[str] = None
    source_text: Optional[str] = None
    backfill: bool = False


class StateIn(BaseModel):
    """A full entity state; the server decides keyframe or delta."""
    entity_type: str
    state: Dict[str, Any]
    change_type: Optional[str] = None
    change_reason: Optional[str] = None
    ai_confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    chapter_order: Optional[int] = None
    chapter_id: Optional[str] = None
    source_text: Optional[str] = None


class WarningIn(BaseModel):
    """A detector finding."""
    warning_type: str
    description: str = Field(min_length=1)
    severity: Optional[str] = None
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    entity_name: Optional[str] = None
    suggestion: Optional[str] = None
    field_path: Optional[str] = None
    expected_value: Optional[str] = None
    actual_value: Optional[str] = None
    related_entity_ids: List[str] = Field(default_factory=list)
    suggested_resolution: Optional[str] = None


class ResolveIn(BaseModel):
    resolution: Optional[str] = None


class BulkIn(BaseModel):
    ids: List[str]
    resolution: Optional[str] = None
