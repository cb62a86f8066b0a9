from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from pydantic import ValidationError

from hue_mqtt_bridge.errors import TranslationError
from hue_mqtt_bridge.schemas import (
    XY,
    BridgeCommand,
    ColorTemperature,
    ColorXY,
    ControlColor,
    ControlPayload,
    Dimming,
    OnState,
)


logger = logging.getLogger(__name__)

BUS_BRIGHTNESS_MAX = 254
BRIDGE_BRIGHTNESS_MAX = 100


def decode_json_object(raw: bytes | bytearray | str | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(raw, Mapping):
        return dict(raw)
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
        obj = json.loads(text)
    except (UnicodeDecodeError, ValueError) as exc:
        raise TranslationError(f"payload is not valid JSON: {exc}") from exc
    if not isinstance(obj, dict):
        raise TranslationError(f"payload must be a JSON object, got {type(obj).__name__}")
    return obj


class PayloadTranslator:
    def parse_control(self, raw: bytes | bytearray | str | Mapping[str, Any]) -> ControlPayload:
        obj = decode_json_object(raw)
        try:
            return ControlPayload.model_validate(obj)
        except ValidationError as exc:
            raise TranslationError(f"invalid control payload: {exc.errors(include_url=False)}") from exc

    def to_bridge_command(self, raw: bytes | bytearray | str | Mapping[str, Any] | ControlPayload) -> BridgeCommand:
        payload = raw if isinstance(raw, ControlPayload) else self.parse_control(raw)
        command = BridgeCommand()

        if payload.state is not None:
            if payload.state in {"ON", "OFF"}:
                command.on = OnState(on=payload.state == "ON")
            else:
                logger.debug("[Translate] ignoring state %r", payload.state)

        if payload.brightness is not None:
            command.dimming = Dimming(brightness=payload.brightness * BRIDGE_BRIGHTNESS_MAX / BUS_BRIGHTNESS_MAX)

        if payload.color is not None:
            if payload.color.x is not None and payload.color.y is not None:
                command.color = ColorXY(xy=XY(x=payload.color.x, y=payload.color.y))
            else:
                logger.debug("[Translate] ignoring color without both x and y")

        if payload.color_temp is not None:
            command.color_temperature = ColorTemperature(mirek=payload.color_temp)

        return command

    def command_body(self, command: BridgeCommand) -> dict[str, Any]:
        return command.body()

    def translate(self, raw: bytes | bytearray | str | Mapping[str, Any]) -> dict[str, Any]:
        return self.command_body(self.to_bridge_command(raw))

    def parse_bridge_body(self, raw: bytes | bytearray | str | Mapping[str, Any]) -> dict[str, Any]:
        """Raw bridge-schema body, forwarded as-is after checking it is an object."""
        return decode_json_object(raw)

    def to_control_payload(self, resource: Mapping[str, Any]) -> ControlPayload:
        """Bus-side view of a bridge light or grouped_light resource."""
        payload = ControlPayload()

        on = resource.get("on")
        if isinstance(on, dict) and isinstance(on.get("on"), bool):
            payload.state = "ON" if on["on"] else "OFF"

        dimming = resource.get("dimming")
        if isinstance(dimming, dict) and isinstance(dimming.get("brightness"), (int, float)):
            payload.brightness = round(float(dimming["brightness"]) * BUS_BRIGHTNESS_MAX / BRIDGE_BRIGHTNESS_MAX)

        color = resource.get("color")
        xy = color.get("xy") if isinstance(color, dict) else None
        if isinstance(xy, dict) and isinstance(xy.get("x"), (int, float)) and isinstance(xy.get("y"), (int, float)):
            payload.color = ControlColor(x=float(xy["x"]), y=float(xy["y"]))

        color_temperature = resource.get("color_temperature")
        if isinstance(color_temperature, dict) and isinstance(color_temperature.get("mirek"), int):
            payload.color_temp = color_temperature["mirek"]

        return payload
