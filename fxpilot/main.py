"""FXPilot — application entry point.

Boots the FastAPI internal server and runs the autopilot loops alongside it.
"""

import logging

from fastapi import FastAPI

from fxpilot.api.routers import router

app = FastAPI(title="FXPilot Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("fxpilot")


@app.get("/health")
async def health():
    return {"status": "ok"}


def build_broker(config):
    """Return a ``BridgeClient`` when a bridge is configured, else offline."""
    from fxpilot.broker.bridge_client import BridgeClient
    from fxpilot.broker.execution import OfflineBroker

    if config.bridge_configured:
        return BridgeClient(config)
    logger.warning(
        "BRIDGE_URL not set; running offline with synthetic signals and no execution."
    )
    return OfflineBroker()


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and start the API and autopilot loops."""
    import argparse
    import asyncio
    import signal

    from fxpilot.api.routers import configure_routers
    from fxpilot.autopilot_manager import AutopilotManager
    from fxpilot.config import load_config
    from fxpilot.state import ParameterStore

    parser = argparse.ArgumentParser(description="FXPilot autopilot orchestrator")
    parser.add_argument(
        "--symbols",
        help="Comma-separated symbols (overrides SYMBOLS)",
    )
    parser.add_argument(
        "--engage",
        action="store_true",
        help="Start with the autopilot engaged",
    )
    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Run the autopilot loops without the API server",
    )
    args = parser.parse_args()

    config = load_config()

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    symbols = None
    if args.symbols:
        symbols = [s.strip().upper() for s in args.symbols.split(",") if s.strip()]

    store = ParameterStore()
    broker = build_broker(config)
    manager = AutopilotManager(config=config, store=store, broker=broker, symbols=symbols)
    manager.build_loops()

    configure_routers(
        store=store,
        broker=broker,
        autopilot_manager=manager,
        fallback_bar_count=config.fallback_bar_count,
    )

    if args.engage:
        store.set_autopilot_state(True)

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received, stopping gracefully.")
        manager.stop_all()

    signal.signal(signal.SIGINT, handle_shutdown)

    if args.no_api:
        asyncio.run(_run_loops_only(manager))
    else:
        asyncio.run(_run_with_api(manager, config.api_port))


async def _run_with_api(manager, port: int) -> None:
    """Start the API server and all autopilot loops concurrently."""
    import asyncio

    import uvicorn

    logger.info("Starting FXPilot with %d autopilot loop(s).", len(manager.symbols))

    uvi_config = uvicorn.Config(app, host="0.0.0.0", port=port, log_level="info")
    server = uvicorn.Server(uvi_config)

    async def _run_server():
        await server.serve()
        manager.stop_all()

    logger.info("API available at http://localhost:%d", port)
    results = await asyncio.gather(
        _run_server(),
        manager.run_all(),
        return_exceptions=True,
    )
    logger.info("FXPilot stopped. Results: %s", [type(r).__name__ for r in results])


async def _run_loops_only(manager) -> None:
    logger.info("Starting FXPilot loops (no API) for %s.", ", ".join(manager.symbols))
    await manager.run_all()
    logger.info("FXPilot loops stopped.")


if __name__ == "__main__":
    _run_cli()
