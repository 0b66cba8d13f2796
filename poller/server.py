"""HTTP endpoints scraped by Prometheus and probed for liveness."""

import logging

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST

from poller.metrics import MetricsRegistry

logger = logging.getLogger(__name__)

HEALTH_BODY = "I'm alive! 8)\n"
REGISTRY_KEY = web.AppKey("registry", MetricsRegistry)


async def metrics(request: web.Request) -> web.Response:
    body = request.app[REGISTRY_KEY].render()
    # CONTENT_TYPE_LATEST carries its own charset parameter.
    return web.Response(body=body, headers={"Content-Type": CONTENT_TYPE_LATEST})


async def health(request: web.Request) -> web.Response:
    return web.Response(text=HEALTH_BODY)


def create_app(registry: MetricsRegistry) -> web.Application:
    app = web.Application()
    app[REGISTRY_KEY] = registry
    app.router.add_get("/metrics", metrics)
    app.router.add_get("/health", health)
    return app


async def start_server(registry: MetricsRegistry, address: str, port: int) -> web.AppRunner:
    """Bind the exposition server. Raises OSError if the port cannot be bound."""
    runner = web.AppRunner(create_app(registry), access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, address, port)
    try:
        await site.start()
    except OSError:
        await runner.cleanup()
        raise
    logger.info(f"Serving metrics on http://{address}:{port}/metrics")
    return runner
