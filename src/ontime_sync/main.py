"""Entry point that runs the sync engine and its web relay.

Usage:
    ontime-sync --url http://192.168.1.20:4001
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from ontime_sync.config import AppConfig, load_app_config
from ontime_sync.core.event_bus import EventBus
from ontime_sync.engine import SyncEngine
from ontime_sync.logging_config import setup_logging

logger = logging.getLogger(__name__)


class Application:
    """Coordinates the engine and the web relay.

    Lifecycle:
        1. Build the event bus and the engine.
        2. Start the web relay (so clients can connect while loading).
        3. Start the engine: load the rundown, open the stream.
        4. On shutdown, stop the engine and the web relay.
    """

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.event_bus = EventBus()
        self.engine = SyncEngine(config.engine, event_bus=self.event_bus)
        self._web_task: asyncio.Task[None] | None = None
        self._shutdown_event = asyncio.Event()
        self._stopped = False

    async def _start_web(self) -> None:
        """Start the FastAPI web relay as a background task."""
        import uvicorn

        from ontime_sync.web.app import create_app

        app = create_app(self.engine)
        uv_config = uvicorn.Config(
            app,
            host=self.config.web_host,
            port=self.config.web_port,
            log_level="warning",
        )
        server = uvicorn.Server(uv_config)
        self._web_task = asyncio.create_task(server.serve(), name="web-server")
        logger.info(
            "Web relay available at http://%s:%d",
            self.config.web_host,
            self.config.web_port,
        )

    # ── Lifecycle ──────────────────────────────────────────────────

    async def start(self) -> None:
        """Start all components."""
        logger.info("Ontime Sync starting up (server %s)", self.config.engine.server.base_url)
        if self.config.web_enabled:
            await self._start_web()
        await self.engine.start()
        logger.info("Ontime Sync is ready")

    async def shutdown(self) -> None:
        """Gracefully shut down all components."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Ontime Sync shutting down")
        self._shutdown_event.set()

        await self.engine.stop()

        if self._web_task is not None:
            self._web_task.cancel()
            try:
                await self._web_task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.warning("Web relay exited with an error: %s", exc)

        self.event_bus.close()
        logger.info("Ontime Sync stopped")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    async def run_forever(self) -> None:
        """Run until a shutdown signal is received."""
        await self.start()
        try:
            await self._shutdown_event.wait()
        finally:
            await self.shutdown()


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="ontime-sync",
        description="Ontime Sync: live state client and web relay for an Ontime server",
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to a TOML configuration file (default: config/default.toml)",
    )
    parser.add_argument(
        "--url",
        type=str,
        default=None,
        help="Ontime server base URL (default: http://localhost:4001)",
    )
    parser.add_argument(
        "--ws-url",
        type=str,
        default=None,
        help="Streaming URL (default: derived from --url)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Web relay host (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Web relay port (default: 8000)",
    )
    parser.add_argument(
        "--no-web",
        action="store_true",
        help="Run the engine without the web relay",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--frame-log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Level for per-frame streaming traffic (default: --log-level, at least INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON lines",
    )
    return parser


def apply_cli_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """CLI flags win over the file and the environment."""
    if args.url:
        config.engine.server.base_url = args.url
    if args.ws_url:
        config.engine.server.ws_url = args.ws_url
    if args.host:
        config.web_host = args.host
    if args.port:
        config.web_port = args.port
    if args.no_web:
        config.web_enabled = False
    return config


async def async_main(args: argparse.Namespace) -> None:
    """Async entry point."""
    setup_logging(
        level=args.log_level,
        json_output=args.json_logs,
        frame_level=args.frame_log_level,
    )

    config = apply_cli_overrides(load_app_config(config_path=args.config), args)
    app = Application(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, app.request_shutdown)

    await app.run_forever()


def cli_main() -> None:
    """CLI entry point (used by pyproject.toml [project.scripts])."""
    parser = build_parser()
    args = parser.parse_args()
    try:
        asyncio.run(async_main(args))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli_main()
