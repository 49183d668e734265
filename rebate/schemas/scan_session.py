"""Schemas for bottle scan sessions."""
from datetime import datetime
from decimal import Decimal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ScanSessionCreate(BaseModel):
    session_id: str = Field(
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("session_id", "sessionId"),
    )
    detected_brand: str | None = Field(
        default=None,
        max_length=100,
        validation_alias=AliasChoices("detected_brand", "detectedBrand"),
    )
    confidence: Decimal | None = Field(default=None, ge=0, le=1, decimal_places=2)


class ScanSessionRead(BaseModel):
    session_id: str
    detected_brand: str | None
    confidence: Decimal | None
    scanned_at: datetime

    model_config = ConfigDict(from_attributes=True)
