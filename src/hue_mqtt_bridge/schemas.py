from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class XY(BaseModel):
    x: float = Field(..., ge=0.0, le=1.0)
    y: float = Field(..., ge=0.0, le=1.0)


class ControlColor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    x: float | None = Field(default=None, ge=0.0, le=1.0)
    y: float | None = Field(default=None, ge=0.0, le=1.0)


class ControlPayload(BaseModel):
    """Bus-side control message (the simplified light schema)."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    state: str | None = Field(default=None, description="ON or OFF; other values are ignored.")
    brightness: float | None = Field(default=None, ge=0, le=254)
    color: ControlColor | None = None
    color_temp: int | None = Field(
        default=None,
        ge=153,
        le=500,
        validation_alias=AliasChoices("color_temp", "colorTemp"),
    )


class OnState(BaseModel):
    on: bool


class Dimming(BaseModel):
    brightness: float = Field(..., ge=0.0, le=100.0)


class ColorXY(BaseModel):
    xy: XY


class ColorTemperature(BaseModel):
    mirek: int


class BridgeCommand(BaseModel):
    """Bridge-side partial update; unset fields are omitted from the body."""

    on: OnState | None = None
    dimming: Dimming | None = None
    color: ColorXY | None = None
    color_temperature: ColorTemperature | None = None

    def body(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class MatchSpec(BaseModel):
    model_config = ConfigDict(extra="ignore")

    room: str | None = None
    zone: str | None = None
    device: str


class MatchSetPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    match: MatchSpec
    state: dict[str, Any]
