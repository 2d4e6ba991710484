"""Domain model for a cached generation record, independent of its table."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

JsonDict = Dict[str, Any]


class GenerationRecord(BaseModel):
    """
    One stored artifact.

    Natural key: (entity_id, session_id). Each artifact kind keeps its rows in
    its own table with its own column names; ArtifactKind.to_record() maps a
    raw row onto this shape.
    """

    kind: str
    entity_id: str
    session_id: str

    structured: JsonDict = Field(default_factory=dict)
    rendered: str = ""
    model: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
