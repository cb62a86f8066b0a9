from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

from hue_mqtt_bridge.errors import UnroutableTopicError


CONTROL_KINDS = frozenset({"light", "room", "zone"})
RESOURCE_KINDS = frozenset({"light", "room", "zone", "grouped_light", "device", "scene"})

WILDCARD = "*"


@dataclass(frozen=True)
class WildcardSelector:
    def __str__(self) -> str:
        return WILDCARD


@dataclass(frozen=True)
class SlugSelector:
    slug: str

    def __str__(self) -> str:
        return self.slug


@dataclass(frozen=True)
class PatternSelector:
    pattern: re.Pattern[str]

    def __str__(self) -> str:
        return self.pattern.pattern


Selector = Union[WildcardSelector, SlugSelector, PatternSelector]


@dataclass(frozen=True)
class ControlRoute:
    kind: str
    selector: Selector


@dataclass(frozen=True)
class ResourceSetRoute:
    kind: str
    rid: str


@dataclass(frozen=True)
class ResourceGetRoute:
    kind: str
    rid: str | None = None


@dataclass(frozen=True)
class RefreshRoute:
    pass


@dataclass(frozen=True)
class MatchSetRoute:
    pass


Route = Union[ControlRoute, ResourceSetRoute, ResourceGetRoute, RefreshRoute, MatchSetRoute]


def parse_selector(value: str, *, mode: str) -> Selector:
    if value == WILDCARD:
        return WildcardSelector()
    if mode == "regex":
        return PatternSelector(re.compile(value))
    return SlugSelector(value)


class TopicRouter:
    """Turns ``/``-delimited topics into Route values.

    Control topics have the shape ``{prefix}/{kind}/{selector}``; the
    resource surface uses ``{prefix}/resource/{kind}[/{id}]/{set|get}``,
    ``{prefix}/state/refresh`` and ``{prefix}/set``.
    """

    def __init__(
        self,
        *,
        prefix: str = "hue",
        selector_mode: str = "slug",
        control_topics: bool = True,
        resource_topics: bool = True,
    ) -> None:
        if selector_mode not in {"slug", "regex"}:
            raise ValueError(f"unknown selector mode: {selector_mode}")
        self.prefix = prefix.strip("/")
        self._prefix_parts = self.prefix.split("/")
        self.selector_mode = selector_mode
        self.control_topics = control_topics
        self.resource_topics = resource_topics

    def subscriptions(self) -> list[str]:
        p = self.prefix
        filters: list[str] = []
        if self.control_topics:
            filters.extend(f"{p}/{kind}/+" for kind in sorted(CONTROL_KINDS))
        if self.resource_topics:
            filters.extend(
                [
                    f"{p}/set",
                    f"{p}/state/refresh",
                    f"{p}/resource/+/get",
                    f"{p}/resource/+/+/get",
                    f"{p}/resource/+/+/set",
                ]
            )
        return filters

    def parse(self, topic: str) -> Route:
        segments = topic.split("/")
        n = len(self._prefix_parts)
        if segments[:n] != self._prefix_parts:
            raise UnroutableTopicError(topic, "prefix mismatch")
        rest = segments[n:]
        if any(not segment for segment in rest):
            raise UnroutableTopicError(topic, "empty topic segment")

        if rest and rest[0] == "resource":
            return self._parse_resource(topic, rest[1:])
        if rest == ["state", "refresh"]:
            self._require_resource_topics(topic)
            return RefreshRoute()
        if rest == ["set"]:
            self._require_resource_topics(topic)
            return MatchSetRoute()
        if len(rest) == 2:
            return self._parse_control(topic, kind=rest[0], selector=rest[1])
        raise UnroutableTopicError(topic, "unrecognized topic shape")

    def _parse_control(self, topic: str, *, kind: str, selector: str) -> ControlRoute:
        if kind not in CONTROL_KINDS:
            raise UnroutableTopicError(topic, f"unknown kind {kind!r}")
        if not self.control_topics:
            raise UnroutableTopicError(topic, "control topics disabled")
        try:
            return ControlRoute(kind=kind, selector=parse_selector(selector, mode=self.selector_mode))
        except re.error as exc:
            raise UnroutableTopicError(topic, f"invalid selector pattern: {exc}") from exc

    def _parse_resource(self, topic: str, rest: list[str]) -> Route:
        self._require_resource_topics(topic)
        if not rest or rest[0] not in RESOURCE_KINDS:
            raise UnroutableTopicError(topic, "unknown resource kind")
        kind = rest[0]
        if len(rest) == 3 and rest[1] in {".", ".."}:
            raise UnroutableTopicError(topic, f"invalid resource id {rest[1]!r}")
        if rest[1:] == ["get"]:
            return ResourceGetRoute(kind=kind)
        if len(rest) == 3 and rest[2] == "get":
            return ResourceGetRoute(kind=kind, rid=rest[1])
        if len(rest) == 3 and rest[2] == "set":
            return ResourceSetRoute(kind=kind, rid=rest[1])
        raise UnroutableTopicError(topic, "unrecognized resource action")

    def _require_resource_topics(self, topic: str) -> None:
        if not self.resource_topics:
            raise UnroutableTopicError(topic, "resource topics disabled")
