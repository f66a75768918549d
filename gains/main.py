"""Entry points: ``python -m gains.main api`` (HTTP server) or ``worker`` (job processor)."""

import asyncio
import logging
import signal
import sys

import uvicorn
from dotenv import load_dotenv

from .config import Config
from .container import build_services
from .web_api import create_app

logger = logging.getLogger(__name__)

USAGE = "usage: gains [api|worker]"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # httpx logs every request URL at INFO, including API keys in query strings
    logging.getLogger("httpx").setLevel(logging.WARNING)


def run_api(config: Config) -> None:
    services = build_services(config)
    app = create_app(services)
    logger.info("Starting API server on %s:%d (mode: %s)", config.api_host, config.api_port, config.recommendation_mode)
    uvicorn.run(app, host=config.api_host, port=config.api_port, log_level="warning")


async def run_worker(config: Config) -> None:
    """Standalone worker process polling the shared job queue."""
    if not config.has_ai_backend and not config.allow_rule_based_only:
        logger.error("No AI API key configured (OPENAI_API_KEY, GROK_API_KEY or ANTHROPIC_API_KEY); worker not started")
        sys.exit(1)

    services = build_services(config)
    if services.queue.name == "memory":
        logger.warning("Standalone worker with an in-memory queue will never see jobs from the API process")

    stop_event = asyncio.Event()

    def async_signal_handler(signum):
        logger.info("Signal %d received, shutting down gracefully...", signum)
        stop_event.set()

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGTERM, lambda: async_signal_handler(signal.SIGTERM))
    loop.add_signal_handler(signal.SIGINT, lambda: async_signal_handler(signal.SIGINT))

    services.processor.start()
    try:
        await stop_event.wait()
    finally:
        logger.info("Stopping worker...")
        await services.aclose()
        logger.info("Shutdown complete")


def run() -> None:
    """Synchronous entry point."""
    load_dotenv()
    config = Config.from_env()
    configure_logging(config.log_level)

    command = sys.argv[1] if len(sys.argv) > 1 else "api"
    try:
        if command == "api":
            run_api(config)
        elif command == "worker":
            asyncio.run(run_worker(config))
        else:
            print(USAGE, file=sys.stderr)
            sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    except Exception as exc:
        logger.error("Fatal error: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    run()
