"""Pydantic models for the generated-artifact routers."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from questforge.models.domain.artifacts import GenerationRecord


class ArtifactGenerateRequest(BaseModel):
    """Request body for POST /<artifact>?force=<bool>."""

    entity_id: str = Field(..., min_length=1, description="Chapter quest id, or chapter id for chapter stories.")


class ArtifactResponse(BaseModel):
    """GET /<artifact>: the cached record, or null when none was generated yet."""

    artifact: Optional[GenerationRecord] = None


class ArtifactGenerateResponse(BaseModel):
    artifact: GenerationRecord
    cached: bool
