"""Process entry point.

Runs the MLLP listener and the internal HTTP API in one event loop.
"""

import asyncio

import uvicorn

from plincare.api import create_app
from plincare.config import get_settings
from plincare.integration.fhir_gateway_client import FHIRGatewayClient
from plincare.integration.mllp import MLLPServer, build_ssl_context
from plincare.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


async def run() -> None:
    """Serve MLLP and HTTP until either stops."""
    settings = get_settings()

    gateway_client = FHIRGatewayClient(
        settings.gateway_url,
        timeout=settings.delivery_timeout_seconds,
    )
    mllp_server = MLLPServer(
        settings,
        gateway_client=gateway_client,
        ssl_context=build_ssl_context(settings),
    )
    api_server = uvicorn.Server(
        uvicorn.Config(
            create_app(settings),
            host=settings.api_host,
            port=settings.api_port,
            log_level=settings.log_level.lower(),
        )
    )

    await mllp_server.start()
    mllp_task = asyncio.create_task(mllp_server.serve_forever())
    api_task = asyncio.create_task(api_server.serve())

    try:
        await asyncio.wait({mllp_task, api_task}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        api_server.should_exit = True
        mllp_task.cancel()
        await asyncio.gather(mllp_task, api_task, return_exceptions=True)
        await mllp_server.stop()
        await gateway_client.close()
        logger.info("engine_stopped")


def main() -> None:
    """Start the integration engine."""
    settings = get_settings()
    setup_logging(settings)
    logger.info(
        "engine_starting",
        app_name=settings.app_name,
        environment=settings.environment,
        mllp_port=settings.mllp_port,
        api_port=settings.api_port,
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("engine_interrupted")


if __name__ == "__main__":
    main()
