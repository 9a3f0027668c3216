"""
Credentia — Common Primitives

Shared base classes and utilities used across all systems.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, Field
from ulid import ULID


def new_id() -> str:
    """Generate a new ULID string. Time-sortable, globally unique."""
    return str(ULID())


def new_uuid() -> str:
    """Random UUIDv4 string, for identifiers that must not leak ordering."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Current UTC time, timezone-aware."""
    return datetime.now(timezone.utc)


def epoch_millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


# ─── Base Models ──────────────────────────────────────────────────


class CredentiaBaseModel(BaseModel):
    """Base model for all Credentia records. Uses ULID IDs and UTC timestamps."""

    model_config = {"populate_by_name": True, "from_attributes": True}


class Timestamped(CredentiaBaseModel):
    """Mixin for models with creation timestamps."""

    created_at: datetime = Field(default_factory=utc_now)


class Identified(CredentiaBaseModel):
    """Mixin for models with ULID IDs."""

    id: str = Field(default_factory=new_id)
