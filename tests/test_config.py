import logging

import pytest

from hue_mqtt_bridge.config import AppConfig, parse_log_level
from hue_mqtt_bridge.errors import ConfigurationError


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "HUE_BRIDGE_HOST",
        "HUE_APPLICATION_KEY",
        "MQTT_HOST",
        "MQTT_PORT",
        "MQTT_USERNAME",
        "MQTT_PASSWORD",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


def _write(tmp_path, text):
    path = tmp_path / "config.yml"
    path.write_text(text, encoding="utf-8")
    return path


def test_from_file_reads_sections_and_defaults(tmp_path):
    path = _write(
        tmp_path,
        """
mqtt:
  host: broker.local
  username: bridge
  password: secret
hue:
  bridge: 192.168.1.20
  token: abc123
huetomqtt:
  prefix: home/hue/
  loglevel: debug
""",
    )

    config = AppConfig.from_file(path)

    assert config.mqtt.host == "broker.local"
    assert config.mqtt.port == 1883
    assert config.mqtt.username == "bridge"
    assert config.bridge.host == "192.168.1.20"
    assert config.bridge.application_key == "abc123"
    assert config.routing.prefix == "home/hue"
    assert config.routing.selector_mode == "slug"
    assert config.resolution.location_strategy == "grouped_light"
    assert config.dispatch.delay_ms == 250
    assert config.cache.ttl_seconds == 300.0
    assert config.cache.single_flight is False
    assert config.http.port is None
    assert config.log_level == logging.DEBUG


@pytest.mark.parametrize(
    "host, expected",
    [
        ("mqtt://broker.local:1884", ("broker.local", 1884, False)),
        ("mqtts://broker.local", ("broker.local", 8883, True)),
        ("broker.local", ("broker.local", 1883, False)),
    ],
)
def test_broker_may_be_given_as_url(host, expected):
    config = AppConfig.from_mapping({"mqtt": {"host": host}, "hue": {"bridge": "b", "token": "t"}})
    assert (config.mqtt.host, config.mqtt.port, config.mqtt.tls) == expected


def test_env_overrides_take_precedence(tmp_path, monkeypatch):
    path = _write(tmp_path, "mqtt:\n  host: broker.local\nhue:\n  bridge: 10.0.0.2\n  token: from-file\n")
    monkeypatch.setenv("HUE_APPLICATION_KEY", "from-env")
    monkeypatch.setenv("MQTT_PORT", "2883")
    monkeypatch.setenv("LOG_LEVEL", "warn")

    config = AppConfig.from_file(path)

    assert config.bridge.application_key == "from-env"
    assert config.mqtt.port == 2883
    assert config.log_level == logging.WARNING


def test_env_can_supply_required_values(tmp_path, monkeypatch):
    path = _write(tmp_path, "mqtt:\n  host: broker.local\n")
    monkeypatch.setenv("HUE_BRIDGE_HOST", "10.0.0.3")
    monkeypatch.setenv("HUE_APPLICATION_KEY", "k")

    config = AppConfig.from_file(path)

    assert config.bridge.host == "10.0.0.3"


@pytest.mark.parametrize(
    "text, message",
    [
        ("mqtt:\n  host: broker.local\n", "hue.bridge is required"),
        ("hue:\n  bridge: b\n  token: t\n", "mqtt.host is required"),
        ("mqtt: [1, 2]\n", "mqtt must be a mapping"),
        ("- just\n- a list\n", "config root must be a mapping"),
        ("mqtt: {host: m}\nhue: {bridge: 'https://b', token: t}\n", "no scheme"),
        ("mqtt: {host: m}\nhue: {bridge: b, token: t}\nrouting: {selector_mode: glob}\n", "selector_mode"),
        ("mqtt: {host: m}\nhue: {bridge: b, token: t}\ncache: {ttl_seconds: 0}\n", "ttl_seconds"),
        ("mqtt: {host: m}\nhue: {bridge: b, token: t}\ndispatch: {delay_ms: fast}\n", "delay_ms"),
        ("mqtt: {host: m\n", "invalid YAML"),
    ],
)
def test_invalid_config_is_rejected(tmp_path, text, message):
    with pytest.raises(ConfigurationError) as exc:
        AppConfig.from_file(_write(tmp_path, text))
    assert message in str(exc.value)


def test_missing_file_is_a_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        AppConfig.from_file(tmp_path / "absent.yml")


def test_invalid_env_port_is_rejected(tmp_path, monkeypatch):
    path = _write(tmp_path, "mqtt:\n  host: m\nhue:\n  bridge: b\n  token: t\n")
    monkeypatch.setenv("MQTT_PORT", "eighteen")
    with pytest.raises(ConfigurationError):
        AppConfig.from_file(path)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("info", logging.INFO),
        ("WARN", logging.WARNING),
        ("error", logging.ERROR),
        ("10", logging.DEBUG),
        (30, logging.WARNING),
        ("silent", logging.CRITICAL + 10),
    ],
)
def test_parse_log_level(value, expected):
    assert parse_log_level(value) == expected


def test_parse_log_level_rejects_unknown_names():
    with pytest.raises(ConfigurationError):
        parse_log_level("chatty")
