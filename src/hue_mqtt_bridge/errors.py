from __future__ import annotations

from typing import Any


class BridgeError(Exception):
    """Base class for errors raised by the message pipeline."""


class ConfigurationError(BridgeError):
    pass


class UnroutableTopicError(BridgeError):
    def __init__(self, topic: str, reason: str) -> None:
        super().__init__(f"Unroutable topic {topic!r}: {reason}")
        self.topic = topic
        self.reason = reason


class TranslationError(BridgeError):
    pass


class ResolutionError(BridgeError):
    """Raised when a route selects nothing the bridge can be told about.

    ``reason`` is ``not_found`` when no resource matches the selector and
    ``service_not_found`` when a room/zone matched but has no grouped_light
    service to address.
    """

    def __init__(self, *, reason: str, kind: str, selector: str) -> None:
        super().__init__(f"{kind} {selector}: {reason}")
        self.reason = reason
        self.kind = kind
        self.selector = selector


class DispatchError(BridgeError):
    def __init__(
        self,
        *,
        kind: str,
        rid: str,
        status_code: int | None = None,
        body: Any = None,
        message: str | None = None,
    ) -> None:
        super().__init__(message or f"PUT {kind}/{rid} failed: {status_code}")
        self.kind = kind
        self.rid = rid
        self.status_code = status_code
        self.body = body
