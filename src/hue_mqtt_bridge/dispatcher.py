from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from hue_mqtt_bridge.errors import DispatchError
from hue_mqtt_bridge.hue_client import HueClient, HueTransportError, HueUpstreamError, resource_path
from hue_mqtt_bridge.resolver import Target


logger = logging.getLogger(__name__)

DEFAULT_DELAY_MS = 250

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class DispatchOutcome:
    target: Target
    ok: bool
    status_code: int | None = None
    body: Any = None
    error: DispatchError | None = None


class CommandDispatcher:
    """Sends one PUT per target, one at a time, pausing after each request.

    The bridge controller rejects bursts, so the pause is applied whether the
    request succeeded or not. A failing target is logged and skipped; the
    remaining targets are still attempted.
    """

    def __init__(self, *, hue: HueClient, delay_ms: int = DEFAULT_DELAY_MS, sleep: Sleep = asyncio.sleep) -> None:
        self.hue = hue
        self.delay_ms = delay_ms
        self._sleep = sleep

    async def dispatch(self, targets: Sequence[Target], body: dict[str, Any]) -> list[DispatchOutcome]:
        outcomes: list[DispatchOutcome] = []
        for target in targets:
            outcomes.append(await self._dispatch_one(target, body))
            await self._sleep(self.delay_ms / 1000.0)
        return outcomes

    async def _dispatch_one(self, target: Target, body: dict[str, Any]) -> DispatchOutcome:
        try:
            result = await self.hue.put_json(resource_path(target.kind, target.id), json_body=body)
        except HueUpstreamError as exc:
            err = DispatchError(kind=target.kind, rid=target.id, status_code=exc.status_code, body=exc.body)
            logger.warning("[HTTP] %s failed with %s: %s", target, exc.status_code, _error_detail(exc.body))
            return DispatchOutcome(target=target, ok=False, status_code=exc.status_code, body=exc.body, error=err)
        except HueTransportError as exc:
            err = DispatchError(kind=target.kind, rid=target.id, message=f"PUT {target} failed: {exc}")
            logger.warning("[HTTP] %s unreachable: %s", target, exc)
            return DispatchOutcome(target=target, ok=False, error=err)

        logger.info("[HTTP] %s response %s", target, result.body)
        return DispatchOutcome(target=target, ok=True, status_code=result.status_code, body=result.body)


def _error_detail(body: Any) -> Any:
    if isinstance(body, dict) and body.get("errors"):
        return body["errors"]
    return body
