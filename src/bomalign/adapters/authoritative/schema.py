"""Pydantic models describing the authoritative parts API payloads."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

AttributeValue = str | int | float | None


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


class SourceBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class PartPayload(SourceBaseModel):
    part_number: str = Field(alias="partNumber", min_length=1)
    attributes: dict[str, AttributeValue] = Field(default_factory=dict)
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    @field_validator("part_number", mode="before")
    @classmethod
    def _strip_part_number(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("attributes", mode="before")
    @classmethod
    def _normalize_attributes(cls, value: object) -> object:
        if isinstance(value, dict):
            return {str(key): _blank_to_none(item) for key, item in value.items()}
        return value

    @field_validator("updated_at")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class PartsPageResponse(SourceBaseModel):
    items: list[PartPayload]
    next_offset: int | None = Field(default=None, alias="nextOffset", ge=0)


class ErrorResponse(SourceBaseModel):
    error: str | int
    message: str = ""
