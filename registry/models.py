"""
Pydantic models for node records, request payloads and sessions.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from registry.errors import ValidationError

DEFAULT_STATUS = "active"


class LoginRequest(BaseModel):
    """Request model for login."""

    password: str | None = Field(default=None, max_length=1024)


class AuthStatus(BaseModel):
    authenticated: bool


class NodeRecord(BaseModel):
    """A network node as stored and served."""

    id: str
    type: str
    status: str = DEFAULT_STATUS
    location: str = ""
    hardware: str = ""
    notes: str = ""
    lat: float | None = None
    lon: float | None = None
    image: str = ""


class NodeInput(BaseModel):
    """Raw create/update payload before defaults are applied."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    type: str | None = None
    status: str | None = None
    location: str | None = None
    hardware: str | None = None
    notes: str | None = None
    lat: float | None = None
    lon: float | None = None
    image: str | None = None

    @field_validator("lat", "lon", mode="before")
    @classmethod
    def _coerce_coordinate(cls, value: Any) -> float | None:
        """Blank means no coordinate; anything else must be a finite number."""
        if value is None:
            return None
        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, bool):
            raise ValueError("must be a number")
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValueError("must be a number") from None
        if not math.isfinite(number):
            raise ValueError("must be a finite number")
        return number

    def to_record(self, node_id: str) -> NodeRecord:
        """Build a full record. Omitted fields take their defaults."""
        return NodeRecord(
            id=node_id,
            type=self.type or "",
            status=self.status or DEFAULT_STATUS,
            location=self.location or "",
            hardware=self.hardware or "",
            notes=self.notes or "",
            lat=self.lat,
            lon=self.lon,
            image=self.image or "",
        )


def _parse_input(payload: Any) -> NodeInput:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return NodeInput.model_validate(payload)
    except PydanticValidationError as exc:
        fields = {
            ".".join(str(p) for p in err["loc"]) or "body": err["msg"]
            for err in exc.errors()
        }
        raise ValidationError("Invalid node data", fields=fields) from None


def parse_new_node(payload: Any) -> NodeRecord:
    """Validate a create payload; ``id`` and ``type`` are required."""
    data = _parse_input(payload)
    missing = {
        name: "required"
        for name in ("id", "type")
        if not getattr(data, name)
    }
    if missing:
        raise ValidationError("id and type are required", fields=missing)
    return data.to_record(data.id)


def parse_node_update(node_id: str, payload: Any) -> NodeRecord:
    """Validate an update payload. The path id wins over any body id."""
    return _parse_input(payload).to_record(node_id)


class Session(BaseModel):
    """Server-side session state for one login."""

    session_id: str
    client_binding: str
    authenticated: bool = True
    issued_at: datetime
    expires_at: datetime

    def is_active(self, now: datetime) -> bool:
        return self.authenticated and now < self.expires_at
