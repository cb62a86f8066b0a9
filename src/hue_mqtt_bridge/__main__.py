from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

import uvicorn

from hue_mqtt_bridge.bridge import AppContext, HueMqttBridge
from hue_mqtt_bridge.bus import MqttBus
from hue_mqtt_bridge.config import AppConfig
from hue_mqtt_bridge.errors import ConfigurationError
from hue_mqtt_bridge.health import create_app


logger = logging.getLogger("hue_mqtt_bridge")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


async def run(config: AppConfig) -> None:
    mqtt = MqttBus(config=config.mqtt)
    ctx = AppContext.create(config=config, bus=mqtt)
    bridge = HueMqttBridge(ctx)

    tasks: list[asyncio.Task] = [
        asyncio.create_task(
            mqtt.run(
                subscriptions=bridge.router.subscriptions(),
                handler=bridge.handle_message,
                on_connect=bridge.on_connect,
            )
        )
    ]
    server: uvicorn.Server | None = None
    if config.http.port is not None:
        server = uvicorn.Server(
            uvicorn.Config(create_app(bridge), host=config.http.host, port=config.http.port, log_level="warning")
        )
        tasks.append(asyncio.create_task(server.serve()))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signame in ("SIGINT", "SIGTERM"):
        with contextlib.suppress(NotImplementedError, AttributeError):
            loop.add_signal_handler(getattr(signal, signame), stop.set)

    try:
        await stop.wait()
        logger.info("Shutting down")
    finally:
        if server is not None:
            server.should_exit = True
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await mqtt.close()
        await ctx.hue.close()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="hue-mqtt-bridge", description="Bridge MQTT messages to a Hue bridge.")
    parser.add_argument("config", help="Path to the YAML configuration file.")
    args = parser.parse_args(argv)

    try:
        config = AppConfig.from_file(args.config)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        raise SystemExit(2)

    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)
    asyncio.run(run(config))


if __name__ == "__main__":
    main()
