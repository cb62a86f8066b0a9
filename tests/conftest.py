import json
from typing import Any

import httpx
import pytest
import pytest_asyncio

from hue_mqtt_bridge.bridge import AppContext, HueMqttBridge
from hue_mqtt_bridge.config import AppConfig
from hue_mqtt_bridge.hue_client import HueClient


LIGHTS = [
    {"id": "L1", "type": "light", "metadata": {"name": "Living Room"}, "owner": {"rid": "dev-1", "rtype": "device"},
     "on": {"on": True}, "dimming": {"brightness": 50.0}, "color": {"xy": {"x": 0.3, "y": 0.4}},
     "color_temperature": {"mirek": None}},
    {"id": "L2", "type": "light", "metadata": {"name": "Office-Desk"}, "owner": {"rid": "dev-2", "rtype": "device"},
     "on": {"on": False}},
    {"id": "L3", "type": "light", "metadata": {"name": "Kitchen Spot"}, "owner": {"rid": "dev-3", "rtype": "device"}},
    {"id": "L4", "type": "light", "metadata": {"name": "Kitchen Strip"}, "owner": {"rid": "dev-4", "rtype": "device"}},
    {"id": "L5", "type": "light", "metadata": {"name": "Kitchen Pendant"}, "owner": {"rid": "dev-5", "rtype": "device"}},
]

ROOMS = [
    {
        "id": "R1",
        "type": "room",
        "metadata": {"name": "Kitchen"},
        "children": [
            {"rid": "dev-3", "rtype": "device"},
            {"rid": "dev-4", "rtype": "device"},
            {"rid": "dev-5", "rtype": "device"},
        ],
        "services": [{"rid": "G7", "rtype": "grouped_light"}],
    },
    {
        "id": "R2",
        "type": "room",
        "metadata": {"name": "Living Room"},
        "children": [{"rid": "dev-1", "rtype": "device"}],
        "services": [{"rid": "G1", "rtype": "grouped_light"}],
    },
    {
        "id": "R3",
        "type": "room",
        "metadata": {"name": "Office"},
        "children": [{"rid": "dev-2", "rtype": "device"}],
        "services": [],
    },
]

ZONES = [
    {
        "id": "Z1",
        "type": "zone",
        "metadata": {"name": "Downstairs"},
        "children": [{"rid": "L1", "rtype": "light"}, {"rid": "L3", "rtype": "light"}],
        "services": [{"rid": "GZ", "rtype": "grouped_light"}],
    },
]


class FakeBridge:
    """Stands in for the Hue bridge behind an httpx.MockTransport."""

    def __init__(self) -> None:
        self.resources: dict[str, list[dict[str, Any]]] = {
            "light": [dict(item) for item in LIGHTS],
            "room": [dict(item) for item in ROOMS],
            "zone": [dict(item) for item in ZONES],
        }
        self.requests: list[httpx.Request] = []
        self.fail_puts: dict[str, int] = {}
        self.fail_gets: int | None = None

    @property
    def gets(self) -> list[str]:
        return [r.url.path for r in self.requests if r.method == "GET"]

    @property
    def puts(self) -> list[tuple[str, dict[str, Any]]]:
        return [
            (r.url.path, json.loads(r.content.decode("utf-8")))
            for r in self.requests
            if r.method == "PUT"
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        parts = request.url.path.split("/")
        # /clip/v2/resource/{kind}[/{id}]
        if parts[:4] != ["", "clip", "v2", "resource"] or len(parts) < 5:
            return httpx.Response(404, json={"errors": [{"description": "not found"}], "data": []})
        kind = parts[4]
        rid = parts[5] if len(parts) > 5 else None

        if request.method == "GET":
            if self.fail_gets:
                return httpx.Response(self.fail_gets, json={"errors": [{"description": "unauthorized user"}]})
            items = self.resources.get(kind, [])
            if rid is not None:
                items = [item for item in items if item["id"] == rid]
            return httpx.Response(200, json={"errors": [], "data": items})

        if request.method == "PUT":
            status = self.fail_puts.get(f"{kind}/{rid}")
            if status:
                return httpx.Response(status, json={"errors": [{"description": "device unreachable"}], "data": []})
            return httpx.Response(200, json={"errors": [], "data": [{"rid": rid, "rtype": kind}]})

        return httpx.Response(405, json={"errors": [{"description": "method not allowed"}]})


class FakeBus:
    def __init__(self) -> None:
        self.published: list[tuple[str, Any, bool]] = []
        self.connected = True

    async def publish(self, topic: str, payload: str | bytes, *, retain: bool = False) -> None:
        self.published.append((topic, json.loads(payload), retain))


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_config(**sections: Any) -> AppConfig:
    raw: dict[str, Any] = {
        "mqtt": {"host": "broker.test"},
        "hue": {"bridge": "bridge.test", "token": "k"},
    }
    raw.update(sections)
    return AppConfig.from_mapping(raw)


@pytest.fixture
def config() -> AppConfig:
    return make_config()


@pytest.fixture
def fake_bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
def fake_bus() -> FakeBus:
    return FakeBus()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest_asyncio.fixture
async def make_bridge(fake_bridge: FakeBridge, fake_bus: FakeBus, clock: FakeClock, sleep: RecordingSleep):
    clients: list[HueClient] = []

    def _make(config: AppConfig | None = None) -> HueMqttBridge:
        cfg = config or make_config()
        hue = HueClient(
            bridge_host=cfg.bridge.host,
            application_key=cfg.bridge.application_key,
            transport=httpx.MockTransport(fake_bridge.handler),
        )
        clients.append(hue)
        ctx = AppContext.create(config=cfg, bus=fake_bus, hue=hue, clock=clock)
        return HueMqttBridge(ctx, sleep=sleep)

    try:
        yield _make
    finally:
        for hue in clients:
            await hue.close()


@pytest.fixture
def bridge(make_bridge) -> HueMqttBridge:
    return make_bridge()
