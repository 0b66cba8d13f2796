"""Entrypoint for the Uptime Robot exporter service."""

import asyncio
import logging
import signal
import sys
from typing import List, Optional

from poller.client import UptimeRobotClient
from poller.config import ConfigError, ExporterConfig, load_config
from poller.logger import setup_logging
from poller.metrics import MetricsRegistry
from poller.poller import AccountPoller, MonitorReconciler
from poller.server import start_server

LOGGER = logging.getLogger("uptimerobot-exporter")


async def serve(cfg: ExporterConfig, stop: Optional[asyncio.Event] = None) -> None:
    """Run both pollers and the metrics server until ``stop`` is set."""
    stop = stop or asyncio.Event()
    registry = MetricsRegistry()
    runner = await start_server(registry, cfg.address, cfg.port)
    client = UptimeRobotClient(cfg.api_key, timeout=cfg.timeout, observer=registry.record_request)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Not available on every platform or outside the main thread.
            pass

    pollers = [
        AccountPoller(client, registry, interval_seconds=cfg.interval),
        MonitorReconciler(
            client,
            registry,
            interval_seconds=cfg.interval,
            empty_confirmations=cfg.empty_confirmations,
            identity_key=cfg.identity_key,
        ),
    ]
    LOGGER.info("Starting fetch routines")
    tasks = [asyncio.create_task(p.run_forever(stop)) for p in pollers]
    try:
        await stop.wait()
        LOGGER.info("Shutting down")
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
        await runner.cleanup()
        client.session.close()


def main(argv: Optional[List[str]] = None) -> int:
    try:
        cfg = load_config(argv)
    except ConfigError as e:
        setup_logging("info")
        LOGGER.critical(f"Invalid configuration: {e}")
        return 1

    setup_logging(cfg.log_level)
    LOGGER.info("API key found")
    try:
        asyncio.run(serve(cfg))
    except OSError as e:
        LOGGER.critical(f"Cannot start metrics server on {cfg.address}:{cfg.port}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
