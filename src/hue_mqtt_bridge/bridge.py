from __future__ import annotations

import asyncio
import enum
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from pydantic import ValidationError

from hue_mqtt_bridge.cache import ResourceCache
from hue_mqtt_bridge.config import AppConfig
from hue_mqtt_bridge.dispatcher import CommandDispatcher, DispatchOutcome, Sleep
from hue_mqtt_bridge.errors import TranslationError, UnroutableTopicError
from hue_mqtt_bridge.graph import GraphStore, extract_name, resource_items, slugify
from hue_mqtt_bridge.hue_client import HueClient, HueTransportError, HueUpstreamError
from hue_mqtt_bridge.bus import MessageBus
from hue_mqtt_bridge.resolver import ResourceResolver, Target
from hue_mqtt_bridge.schemas import MatchSetPayload
from hue_mqtt_bridge.topics import (
    ControlRoute,
    MatchSetRoute,
    RefreshRoute,
    ResourceGetRoute,
    ResourceSetRoute,
    Route,
    TopicRouter,
)
from hue_mqtt_bridge.translator import PayloadTranslator


logger = logging.getLogger(__name__)


class Stage(str, enum.Enum):
    RECEIVED = "received"
    ROUTED = "routed"
    RESOLVED = "resolved"
    TRANSLATED = "translated"
    DISPATCHING = "dispatching"
    DONE = "done"
    DROPPED = "dropped"


@dataclass
class MessageOutcome:
    topic: str
    stage: Stage = Stage.RECEIVED
    route: Route | None = None
    reason: str | None = None
    outcomes: list[DispatchOutcome] = field(default_factory=list)

    def drop(self, reason: str) -> "MessageOutcome":
        self.stage = Stage.DROPPED
        self.reason = reason
        return self


@dataclass
class Counters:
    received: int = 0
    done: int = 0
    dropped: int = 0
    requests_ok: int = 0
    requests_failed: int = 0


@dataclass
class AppContext:
    """Everything the pipeline needs, built once at startup."""

    config: AppConfig
    hue: HueClient
    bus: MessageBus
    cache: ResourceCache
    graph: GraphStore

    @staticmethod
    def create(
        *,
        config: AppConfig,
        bus: MessageBus,
        hue: HueClient | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> "AppContext":
        hue = hue or HueClient(
            bridge_host=config.bridge.host,
            application_key=config.bridge.application_key,
            timeout_seconds=config.bridge.timeout_seconds,
        )
        cache = ResourceCache(
            ttl_seconds=config.cache.ttl_seconds,
            clock=clock,
            single_flight=config.cache.single_flight,
        )
        return AppContext(config=config, hue=hue, bus=bus, cache=cache, graph=GraphStore(hue=hue, cache=cache))


class HueMqttBridge:
    def __init__(self, ctx: AppContext, *, sleep: Sleep = asyncio.sleep) -> None:
        cfg = ctx.config
        self.ctx = ctx
        self.router = TopicRouter(
            prefix=cfg.routing.prefix,
            selector_mode=cfg.routing.selector_mode,
            control_topics=cfg.routing.control_topics,
            resource_topics=cfg.routing.resource_topics,
        )
        self.translator = PayloadTranslator()
        self.resolver = ResourceResolver(location_strategy=cfg.resolution.location_strategy)
        self.dispatcher = CommandDispatcher(hue=ctx.hue, delay_ms=cfg.dispatch.delay_ms, sleep=sleep)
        self.counters = Counters()

    @property
    def prefix(self) -> str:
        return self.router.prefix

    async def handle_message(self, topic: str, payload: bytes | str) -> MessageOutcome:
        outcome = MessageOutcome(topic=topic)
        self.counters.received += 1
        logger.info("[MQTT] Received message with topic: %s", topic)
        try:
            await self._process(outcome, payload)
        except asyncio.CancelledError:
            raise
        except (HueTransportError, HueUpstreamError) as exc:
            logger.warning("[Hue] %s: bridge request failed: %s", topic, exc)
            outcome.drop("bridge_error")
        except Exception as exc:
            logger.error("[ERROR] %s: %s", topic, exc)
            logger.debug("unhandled error for %s", topic, exc_info=True)
            outcome.drop("internal_error")

        if outcome.stage is Stage.DROPPED:
            self.counters.dropped += 1
        else:
            outcome.stage = Stage.DONE
            self.counters.done += 1
        for result in outcome.outcomes:
            if result.ok:
                self.counters.requests_ok += 1
            else:
                self.counters.requests_failed += 1
        return outcome

    async def _process(self, outcome: MessageOutcome, payload: bytes | str) -> None:
        try:
            route = self.router.parse(outcome.topic)
        except UnroutableTopicError as exc:
            logger.warning("[MQTT] %s", exc)
            outcome.drop("unroutable")
            return
        outcome.route = route
        outcome.stage = Stage.ROUTED

        if isinstance(route, ControlRoute):
            await self._handle_control(outcome, route, payload)
        elif isinstance(route, ResourceSetRoute):
            await self._handle_resource_set(outcome, route, payload)
        elif isinstance(route, ResourceGetRoute):
            await self._handle_resource_get(outcome, route)
        elif isinstance(route, RefreshRoute):
            await self.publish_state()
        elif isinstance(route, MatchSetRoute):
            await self._handle_match_set(outcome, payload)

    async def _handle_control(self, outcome: MessageOutcome, route: ControlRoute, payload: bytes | str) -> None:
        # Translate first so a malformed payload never costs a bridge read.
        try:
            body = self.translator.translate(payload)
        except TranslationError as exc:
            logger.error("[Translate] %s: %s", outcome.topic, exc)
            outcome.drop("translation_error")
            return
        outcome.stage = Stage.TRANSLATED

        graph = await self.ctx.graph.get()
        targets = self.resolver.resolve(route, graph)
        if not targets:
            outcome.drop("resolution_empty")
            return
        outcome.stage = Stage.RESOLVED
        await self._dispatch(outcome, targets, body)
        logger.info("[Hue] %s %s updated", route.kind, route.selector)

    async def _handle_resource_set(self, outcome: MessageOutcome, route: ResourceSetRoute, payload: bytes | str) -> None:
        try:
            body = self.translator.parse_bridge_body(payload)
        except TranslationError as exc:
            logger.error("[Translate] %s: %s", outcome.topic, exc)
            outcome.drop("translation_error")
            return
        outcome.stage = Stage.TRANSLATED
        await self._dispatch(outcome, [Target(kind=route.kind, id=route.rid)], body)

    async def _handle_match_set(self, outcome: MessageOutcome, payload: bytes | str) -> None:
        try:
            data = MatchSetPayload.model_validate(self.translator.parse_bridge_body(payload))
        except (TranslationError, ValidationError) as exc:
            logger.warning("[MQTT] %s: ignoring payload without a usable match: %s", outcome.topic, exc)
            outcome.drop("translation_error")
            return
        if not data.match.room and not data.match.zone:
            logger.warning("[MQTT] %s: match needs a room or zone pattern", outcome.topic)
            outcome.drop("translation_error")
            return

        graph = await self.ctx.graph.get()
        targets = self.resolver.resolve_match(data.match, graph)
        if not targets:
            outcome.drop("resolution_empty")
            return
        outcome.stage = Stage.TRANSLATED
        await self._dispatch(outcome, targets, data.state)

    async def _dispatch(self, outcome: MessageOutcome, targets: list[Target], body: dict[str, Any]) -> None:
        outcome.stage = Stage.DISPATCHING
        outcome.outcomes = await self.dispatcher.dispatch(targets, body)

    async def _handle_resource_get(self, outcome: MessageOutcome, route: ResourceGetRoute) -> None:
        response = await self.ctx.graph.fetch(route.kind, route.rid)
        data = resource_items(response)
        if route.rid is not None:
            topic = f"{self.prefix}/resource/{route.kind}/{route.rid}"
            value: Any = data[0] if data else None
        else:
            topic = f"{self.prefix}/resource/{route.kind}"
            value = data
        await self.ctx.bus.publish(topic, _dumps(value), retain=True)

    async def publish_state(self) -> None:
        graph = await self.ctx.graph.refresh(force=True)
        snapshot = graph.snapshot()
        logger.debug("[State] %s", json.dumps(snapshot, indent=2))
        await self.ctx.bus.publish(f"{self.prefix}/state", _dumps(snapshot), retain=True)

    async def publish_light_states(self) -> None:
        """Retained bus-schema state for every light, under ``{prefix}/light/{slug}/state``."""
        response = await self.ctx.graph.fetch("light")
        for item in resource_items(response):
            name = extract_name(item)
            if not name:
                continue
            state = self.translator.to_control_payload(item)
            await self.ctx.bus.publish(
                f"{self.prefix}/light/{slugify(name)}/state",
                _dumps(state.model_dump(mode="json", exclude_none=True)),
                retain=True,
            )

    async def on_connect(self) -> None:
        if not self.ctx.config.bridge.publish_on_connect:
            return
        try:
            await self.publish_state()
            await self.publish_light_states()
        except (HueTransportError, HueUpstreamError) as exc:
            logger.warning("[Hue] initial state publish failed: %s", exc)
        except Exception as exc:
            logger.error("[ERROR] initial state publish: %s", exc)
            logger.debug("initial state publish failed", exc_info=True)


def _dumps(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
