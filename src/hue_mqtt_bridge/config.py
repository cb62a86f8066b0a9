from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional
from urllib.parse import urlparse

import yaml

from hue_mqtt_bridge.errors import ConfigurationError


SELECTOR_MODES = ("slug", "regex")
LOCATION_STRATEGIES = ("grouped_light", "members")


@dataclass(frozen=True)
class MqttConfig:
    host: str
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    client_id: Optional[str] = None
    keepalive: int = 60
    tls: bool = False


@dataclass(frozen=True)
class BridgeConfig:
    host: str
    application_key: str
    timeout_seconds: float = 1.0
    publish_on_connect: bool = False


@dataclass(frozen=True)
class RoutingConfig:
    prefix: str = "hue"
    selector_mode: str = "slug"
    control_topics: bool = True
    resource_topics: bool = True


@dataclass(frozen=True)
class ResolutionConfig:
    location_strategy: str = "grouped_light"


@dataclass(frozen=True)
class DispatchConfig:
    delay_ms: int = 250


@dataclass(frozen=True)
class CacheConfig:
    ttl_seconds: float = 300.0
    single_flight: bool = False


@dataclass(frozen=True)
class HttpConfig:
    port: Optional[int] = None
    host: str = "0.0.0.0"


@dataclass(frozen=True)
class AppConfig:
    mqtt: MqttConfig
    bridge: BridgeConfig
    routing: RoutingConfig = field(default_factory=RoutingConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    log_level: int = logging.INFO

    @staticmethod
    def from_file(path: str | os.PathLike[str]) -> "AppConfig":
        file_path = Path(path)
        try:
            with file_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh)
        except FileNotFoundError as exc:
            raise ConfigurationError(f"config file not found: {file_path}") from exc
        except OSError as exc:
            raise ConfigurationError(f"cannot read config file {file_path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"invalid YAML in {file_path}: {exc}") from exc

        if raw is None:
            raw = {}
        if not isinstance(raw, dict):
            raise ConfigurationError("config root must be a mapping")
        return AppConfig.from_mapping(raw).with_env_overrides()

    @staticmethod
    def from_mapping(raw: Mapping[str, Any]) -> "AppConfig":
        mqtt_raw = _section(raw, "mqtt")
        hue_raw = _section(raw, "hue")
        app_raw = _section(raw, "huetomqtt")
        routing_raw = _section(raw, "routing")
        resolution_raw = _section(raw, "resolution")
        dispatch_raw = _section(raw, "dispatch")
        cache_raw = _section(raw, "cache")
        http_raw = _section(raw, "http")

        host, port, tls = _parse_broker(mqtt_raw)
        mqtt = MqttConfig(
            host=host,
            port=port,
            username=_opt_str(mqtt_raw, "username", "mqtt"),
            password=_opt_str(mqtt_raw, "password", "mqtt"),
            client_id=_opt_str(mqtt_raw, "client_id", "mqtt") or _opt_str(mqtt_raw, "clientId", "mqtt"),
            keepalive=_int(mqtt_raw, "keepalive", 60, "mqtt"),
            tls=tls,
        )
        bridge = BridgeConfig(
            host=_opt_str(hue_raw, "bridge", "hue") or "",
            application_key=_opt_str(hue_raw, "token", "hue") or _opt_str(hue_raw, "key", "hue") or "",
            timeout_seconds=_float(hue_raw, "timeout_seconds", 1.0, "hue"),
            publish_on_connect=_bool(hue_raw, "publish_on_connect", False, "hue"),
        )
        routing = RoutingConfig(
            prefix=(_opt_str(app_raw, "prefix", "huetomqtt") or "hue").strip("/"),
            selector_mode=_choice(routing_raw, "selector_mode", "slug", SELECTOR_MODES, "routing"),
            control_topics=_bool(routing_raw, "control_topics", True, "routing"),
            resource_topics=_bool(routing_raw, "resource_topics", True, "routing"),
        )
        resolution = ResolutionConfig(
            location_strategy=_choice(
                resolution_raw, "location_strategy", "grouped_light", LOCATION_STRATEGIES, "resolution"
            ),
        )
        dispatch = DispatchConfig(delay_ms=_int(dispatch_raw, "delay_ms", 250, "dispatch"))
        cache = CacheConfig(
            ttl_seconds=_float(cache_raw, "ttl_seconds", 300.0, "cache"),
            single_flight=_bool(cache_raw, "single_flight", False, "cache"),
        )
        http_port = http_raw.get("port")
        http = HttpConfig(
            port=None if http_port is None else _int(http_raw, "port", 0, "http"),
            host=_opt_str(http_raw, "host", "http") or "0.0.0.0",
        )
        config = AppConfig(
            mqtt=mqtt,
            bridge=bridge,
            routing=routing,
            resolution=resolution,
            dispatch=dispatch,
            cache=cache,
            http=http,
            log_level=parse_log_level(app_raw.get("loglevel", "INFO")),
        )
        return config

    def with_env_overrides(self) -> "AppConfig":
        config = self
        if os.getenv("HUE_BRIDGE_HOST"):
            config = replace(config, bridge=replace(config.bridge, host=os.environ["HUE_BRIDGE_HOST"]))
        if os.getenv("HUE_APPLICATION_KEY"):
            config = replace(
                config, bridge=replace(config.bridge, application_key=os.environ["HUE_APPLICATION_KEY"])
            )
        if os.getenv("MQTT_HOST"):
            config = replace(config, mqtt=replace(config.mqtt, host=os.environ["MQTT_HOST"]))
        if os.getenv("MQTT_PORT"):
            try:
                port = int(os.environ["MQTT_PORT"])
            except ValueError as exc:
                raise ConfigurationError("MQTT_PORT must be an integer") from exc
            config = replace(config, mqtt=replace(config.mqtt, port=port))
        if os.getenv("MQTT_USERNAME"):
            config = replace(config, mqtt=replace(config.mqtt, username=os.environ["MQTT_USERNAME"]))
        if os.getenv("MQTT_PASSWORD"):
            config = replace(config, mqtt=replace(config.mqtt, password=os.environ["MQTT_PASSWORD"]))
        if os.getenv("LOG_LEVEL"):
            config = replace(config, log_level=parse_log_level(os.environ["LOG_LEVEL"]))
        config.validate()
        return config

    def validate(self) -> None:
        if not self.mqtt.host:
            raise ConfigurationError("mqtt.host is required")
        if not self.bridge.host:
            raise ConfigurationError("hue.bridge is required")
        if not self.bridge.application_key:
            raise ConfigurationError("hue.token is required")
        if "://" in self.bridge.host or "/" in self.bridge.host:
            raise ConfigurationError("hue.bridge must be an IP/hostname only (no scheme/path)")
        if not self.routing.prefix:
            raise ConfigurationError("huetomqtt.prefix must not be empty")
        if self.dispatch.delay_ms < 0:
            raise ConfigurationError("dispatch.delay_ms must be >= 0")
        if self.cache.ttl_seconds <= 0:
            raise ConfigurationError("cache.ttl_seconds must be > 0")
        if self.bridge.timeout_seconds <= 0:
            raise ConfigurationError("hue.timeout_seconds must be > 0")


def parse_log_level(value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"invalid log level: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        name = value.strip().upper()
        if name.isdigit():
            return int(name)
        # loglevel-style names
        if name == "WARN":
            name = "WARNING"
        if name == "SILENT":
            return logging.CRITICAL + 10
        level = logging.getLevelName(name)
        if isinstance(level, int):
            return level
    raise ConfigurationError(f"invalid log level: {value!r}")


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"{name} must be a mapping")
    return value


def _parse_broker(mqtt_raw: Mapping[str, Any]) -> tuple[str, int, bool]:
    host = _opt_str(mqtt_raw, "host", "mqtt") or ""
    port = _int(mqtt_raw, "port", 0, "mqtt") if "port" in mqtt_raw else None
    tls = False
    if "://" in host:
        parsed = urlparse(host)
        tls = parsed.scheme in {"mqtts", "ssl", "tls"}
        if port is None and parsed.port:
            port = parsed.port
        host = parsed.hostname or ""
    if port is None:
        port = 8883 if tls else 1883
    return host, port, tls


def _opt_str(raw: Mapping[str, Any], key: str, section: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if not isinstance(value, str):
        raise ConfigurationError(f"{section}.{key} must be a string")
    return value.strip() or None


def _int(raw: Mapping[str, Any], key: str, default: int, section: str) -> int:
    value = raw.get(key, default)
    if isinstance(value, bool):
        raise ConfigurationError(f"{section}.{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{section}.{key} must be an integer") from exc


def _float(raw: Mapping[str, Any], key: str, default: float, section: str) -> float:
    value = raw.get(key, default)
    if isinstance(value, bool):
        raise ConfigurationError(f"{section}.{key} must be a number")
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{section}.{key} must be a number") from exc


def _bool(raw: Mapping[str, Any], key: str, default: bool, section: str) -> bool:
    value = raw.get(key, default)
    if not isinstance(value, bool):
        raise ConfigurationError(f"{section}.{key} must be true or false")
    return value


def _choice(raw: Mapping[str, Any], key: str, default: str, choices: tuple[str, ...], section: str) -> str:
    value = raw.get(key, default)
    if value not in choices:
        raise ConfigurationError(f"{section}.{key} must be one of {', '.join(choices)}")
    return value
