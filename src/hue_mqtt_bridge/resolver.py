from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable

from hue_mqtt_bridge.errors import ResolutionError
from hue_mqtt_bridge.graph import Location, ResourceDescriptor, ResourceGraph
from hue_mqtt_bridge.schemas import MatchSpec
from hue_mqtt_bridge.topics import ControlRoute, PatternSelector, Selector, SlugSelector, WildcardSelector


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Target:
    kind: str
    id: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.id}"


def _dedupe(targets: Iterable[Target]) -> list[Target]:
    seen: set[Target] = set()
    out: list[Target] = []
    for target in targets:
        if target in seen:
            continue
        seen.add(target)
        out.append(target)
    return out


def _light_targets(lights: Iterable[ResourceDescriptor]) -> list[Target]:
    return [Target(kind="light", id=light.id) for light in lights]


def _selects(selector: Selector, descriptor: ResourceDescriptor | Location) -> bool:
    if isinstance(selector, WildcardSelector):
        return True
    if isinstance(selector, SlugSelector):
        return descriptor.slug == selector.slug
    if isinstance(selector, PatternSelector):
        return selector.pattern.search(descriptor.name) is not None
    raise TypeError(f"unsupported selector: {selector!r}")


class ResourceResolver:
    """Maps a control route onto the concrete bridge resources to PUT.

    ``location_strategy`` decides how rooms and zones are addressed:
    ``grouped_light`` targets the location's grouped_light service,
    ``members`` targets every member light individually. A wildcard
    location selector always expands to member lights.
    """

    def __init__(self, *, location_strategy: str = "grouped_light") -> None:
        if location_strategy not in {"grouped_light", "members"}:
            raise ValueError(f"unknown location strategy: {location_strategy}")
        self.location_strategy = location_strategy

    def resolve(self, route: ControlRoute, graph: ResourceGraph) -> list[Target]:
        try:
            if route.kind == "light":
                targets = self._resolve_lights(route.selector, graph)
            elif route.kind in {"room", "zone"}:
                targets = self._resolve_locations(route.kind, route.selector, graph)
            else:
                raise ResolutionError(reason="not_found", kind=route.kind, selector=str(route.selector))
        except ResolutionError as err:
            if err.reason == "service_not_found":
                logger.warning("[Hue] %s %s has no grouped_light service", err.kind, err.selector)
            else:
                logger.warning("[Hue] %s %s not found", err.kind, err.selector)
            return []
        return _dedupe(targets)

    def _resolve_lights(self, selector: Selector, graph: ResourceGraph) -> list[Target]:
        matched = [light for light in graph.lights if _selects(selector, light)]
        if not matched:
            raise ResolutionError(reason="not_found", kind="light", selector=str(selector))
        return _light_targets(matched)

    def _resolve_locations(self, kind: str, selector: Selector, graph: ResourceGraph) -> list[Target]:
        candidates = graph.locations(kind)

        if isinstance(selector, WildcardSelector):
            members = [light for location in candidates for light in location.members]
            if not members:
                raise ResolutionError(reason="not_found", kind=kind, selector=str(selector))
            return _light_targets(members)

        if isinstance(selector, SlugSelector):
            # First match wins for exact names.
            match = next((location for location in candidates if _selects(selector, location)), None)
            matched = [match] if match is not None else []
        else:
            matched = [location for location in candidates if _selects(selector, location)]
        if not matched:
            raise ResolutionError(reason="not_found", kind=kind, selector=str(selector))

        if self.location_strategy == "members":
            members = [light for location in matched for light in location.members]
            if not members:
                raise ResolutionError(reason="not_found", kind=kind, selector=str(selector))
            return _light_targets(members)

        targets: list[Target] = []
        for location in matched:
            if location.grouped_light is None:
                if len(matched) == 1:
                    raise ResolutionError(reason="service_not_found", kind=kind, selector=str(selector))
                logger.warning("[Hue] %s %s has no grouped_light service", kind, location.name)
                continue
            targets.append(Target(kind="grouped_light", id=location.grouped_light))
        if not targets:
            raise ResolutionError(reason="service_not_found", kind=kind, selector=str(selector))
        return targets

    def resolve_match(self, match: MatchSpec, graph: ResourceGraph) -> list[Target]:
        """Regex match over room/zone names, then over their member light names."""
        try:
            locations: list[Location] = []
            if match.room:
                room_pattern = re.compile(match.room)
                locations.extend(room for room in graph.rooms if room_pattern.search(room.name))
            if match.zone:
                zone_pattern = re.compile(match.zone)
                locations.extend(zone for zone in graph.zones if zone_pattern.search(zone.name))
            device: Selector = (
                WildcardSelector() if match.device == "*" else PatternSelector(re.compile(match.device))
            )
        except re.error as exc:
            logger.warning("[Hue] invalid match pattern: %s", exc)
            return []

        members = [light for location in locations for light in location.members if _selects(device, light)]
        if not members:
            logger.warning("[Hue] no resources match device pattern %r", match.device)
            return []
        logger.info("Found %d resource(s) that match device pattern %r", len(members), match.device)
        for light in members:
            logger.debug("- %s - (%s)", light.name, light.id)
        return _dedupe(_light_targets(members))
