from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from hue_mqtt_bridge.cache import ResourceCache
from hue_mqtt_bridge.hue_client import HueClient, resource_path


logger = logging.getLogger(__name__)

LOCATION_KINDS = ("room", "zone")


def slugify(name: str) -> str:
    return name.strip().lower().replace(" ", "_").replace("-", "_")


@dataclass(frozen=True)
class ResourceDescriptor:
    id: str
    name: str
    kind: str

    @property
    def slug(self) -> str:
        return slugify(self.name)


@dataclass(frozen=True)
class Location:
    descriptor: ResourceDescriptor
    members: tuple[ResourceDescriptor, ...] = ()
    grouped_light: str | None = None

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def slug(self) -> str:
        return self.descriptor.slug


@dataclass(frozen=True)
class ResourceGraph:
    lights: tuple[ResourceDescriptor, ...] = ()
    rooms: tuple[Location, ...] = ()
    zones: tuple[Location, ...] = ()

    def locations(self, kind: str) -> tuple[Location, ...]:
        if kind == "room":
            return self.rooms
        if kind == "zone":
            return self.zones
        raise ValueError(f"not a location kind: {kind}")

    def snapshot(self) -> dict[str, Any]:
        def location_dict(location: Location) -> dict[str, Any]:
            return {
                "name": location.name,
                "id": location.id,
                "grouped_light": location.grouped_light,
                "children": [
                    {"name": light.name, "id": light.id, "resourceType": light.kind}
                    for light in location.members
                ],
            }

        return {
            "room": [location_dict(room) for room in self.rooms],
            "zone": [location_dict(zone) for zone in self.zones],
        }


def extract_name(resource: dict[str, Any]) -> str | None:
    metadata = resource.get("metadata")
    if isinstance(metadata, dict) and isinstance(metadata.get("name"), str):
        return metadata["name"]
    if isinstance(resource.get("name"), str):
        return resource["name"]
    return None


def _extract_grouped_light_rid(resource: dict[str, Any]) -> str | None:
    services = resource.get("services")
    if not isinstance(services, list):
        return None
    for service in services:
        if not isinstance(service, dict):
            continue
        if service.get("rtype") == "grouped_light" and isinstance(service.get("rid"), str):
            return service["rid"]
    return None


def resource_items(payload: Any) -> list[dict[str, Any]]:
    """The ``data`` list of a CLIP v2 response, or ``[]`` when absent/malformed."""
    if not isinstance(payload, dict):
        return []
    errors = payload.get("errors")
    if isinstance(errors, list) and errors:
        logger.warning("[Hue] bridge reported errors: %s", errors)
    data = payload.get("data")
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict) and isinstance(item.get("id"), str)]


def build_graph(*, lights: Any, rooms: Any, zones: Any) -> ResourceGraph:
    light_descriptors: list[ResourceDescriptor] = []
    by_id: dict[str, ResourceDescriptor] = {}
    # Rooms list devices as children; lights point back at their device via owner.
    by_owner: dict[str, list[ResourceDescriptor]] = {}

    for item in resource_items(lights):
        descriptor = ResourceDescriptor(id=item["id"], name=extract_name(item) or "", kind="light")
        light_descriptors.append(descriptor)
        by_id[descriptor.id] = descriptor
        owner = item.get("owner")
        if isinstance(owner, dict) and isinstance(owner.get("rid"), str):
            by_owner.setdefault(owner["rid"], []).append(descriptor)

    def members_of(item: dict[str, Any]) -> tuple[ResourceDescriptor, ...]:
        members: list[ResourceDescriptor] = []
        children = item.get("children")
        if not isinstance(children, list):
            return ()
        for child in children:
            if not isinstance(child, dict) or not isinstance(child.get("rid"), str):
                continue
            rid = child["rid"]
            if rid in by_id:
                members.append(by_id[rid])
            elif rid in by_owner:
                members.extend(by_owner[rid])
            else:
                logger.debug("[Graph] %s child %s has no known light", item["id"], rid)
        return tuple(members)

    def locations(payload: Any, kind: str) -> tuple[Location, ...]:
        out: list[Location] = []
        for item in resource_items(payload):
            out.append(
                Location(
                    descriptor=ResourceDescriptor(id=item["id"], name=extract_name(item) or "", kind=kind),
                    members=members_of(item),
                    grouped_light=_extract_grouped_light_rid(item),
                )
            )
        return tuple(out)

    return ResourceGraph(
        lights=tuple(light_descriptors),
        rooms=locations(rooms, "room"),
        zones=locations(zones, "zone"),
    )


@dataclass
class _Sources:
    lights: Any = None
    rooms: Any = None
    zones: Any = None

    def same_as(self, other: "_Sources") -> bool:
        return self.lights is other.lights and self.rooms is other.rooms and self.zones is other.zones


@dataclass
class GraphStore:
    """Holds the current ResourceGraph and rebuilds it from cached bridge reads.

    The graph is only ever replaced by assigning a new snapshot, so readers
    that grabbed the previous one keep a consistent (possibly stale) view.
    """

    hue: HueClient
    cache: ResourceCache
    _graph: ResourceGraph | None = field(default=None, init=False)
    _sources: _Sources = field(default_factory=_Sources, init=False)

    def current(self) -> ResourceGraph | None:
        return self._graph

    async def fetch(self, kind: str, rid: str | None = None) -> Any:
        path = resource_path(kind, rid)
        return await self.cache.get(path, lambda: self.hue.get_json(path, retry=True))

    def invalidate(self, kinds: Iterable[str] = ("light",) + LOCATION_KINDS) -> None:
        for kind in kinds:
            self.cache.invalidate(resource_path(kind))

    async def get(self) -> ResourceGraph:
        sources = _Sources(
            lights=await self.fetch("light"),
            rooms=await self.fetch("room"),
            zones=await self.fetch("zone"),
        )
        graph = self._graph
        if graph is not None and sources.same_as(self._sources):
            return graph

        graph = build_graph(lights=sources.lights, rooms=sources.rooms, zones=sources.zones)
        self._graph = graph
        self._sources = sources
        logger.info(
            "[Graph] rebuilt: %d lights, %d rooms, %d zones",
            len(graph.lights),
            len(graph.rooms),
            len(graph.zones),
        )
        return graph

    async def refresh(self, *, force: bool = False) -> ResourceGraph:
        if force:
            self.invalidate()
        return await self.get()
