"""SwapRunner — application entry point.

Boots the FastAPI internal server and provides the CLI entry point for
dry-run and live modes.
"""

import logging

from fastapi import FastAPI

from swaprunner.api.routers import router

app = FastAPI(title="SwapRunner Internal API", version="0.1.0")
app.include_router(router)

logger = logging.getLogger("swaprunner")


@app.get("/health")
async def health():
    """Liveness probe."""
    return {"status": "ok"}


def warn_if_live(mode: str) -> bool:
    """Log a prominent warning when running in live mode.

    Returns ``True`` if *mode* is ``"live"``.
    """
    if mode == "live":
        logger.warning(
            "LIVE TRADING MODE — Real funds at risk! Starting in 5 seconds..."
        )
        return True
    return False


def load_executor_factory(path: str):
    """Import an executor factory given as ``"package.module:callable"``.

    The callable receives ``(private_key, rpc_url, strategy)`` and returns a
    ``SwapExecutor``.

    Raises ``ValueError`` if *path* is malformed or does not resolve to a
    callable.
    """
    import importlib

    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Executor must look like 'module:callable', got '{path}'")
    factory = getattr(importlib.import_module(module_name), attr, None)
    if not callable(factory):
        raise ValueError(f"'{path}' is not a callable executor factory")
    return factory


def _log_trade(entry) -> None:
    logger.info(
        "Confirmed %s — tx %s at %s base/target",
        entry.kind.value, entry.tx_hash, entry.price_base_per_target,
    )


# ── CLI ──────────────────────────────────────────────────────────────────


def _run_cli() -> None:
    """Parse CLI arguments and dispatch to the appropriate mode."""
    import argparse
    import asyncio
    import os
    import time

    from swaprunner.api.routers import record_runner_error, update_runner_status
    from swaprunner.cli.dashboard import print_status
    from swaprunner.config import load_config, load_strategy
    from swaprunner.models.position import RunnerCallbacks
    from swaprunner.repos.db import init_db

    parser = argparse.ArgumentParser(description="SwapRunner swap bot")
    parser.add_argument(
        "--mode",
        choices=["dry-run", "live"],
        default="dry-run",
        help="Trading mode (default: dry-run)",
    )
    parser.add_argument(
        "--engine-only",
        action="store_true",
        help="Run the runner without the API server; status goes to the console",
    )
    parser.add_argument(
        "--executor",
        default=os.environ.get("SWAP_EXECUTOR"),
        help="Live-mode executor factory as 'module:callable' (env SWAP_EXECUTOR)",
    )
    args = parser.parse_args()

    config = load_config()
    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    init_db(config.db_path)
    strategy = load_strategy(config.runner_json, network=config.network)

    executor_factory = None
    if args.mode == "live":
        if not args.executor:
            parser.error("--mode live requires --executor (or SWAP_EXECUTOR)")
        if not config.private_key:
            parser.error("--mode live requires BOT_PRIVATE_KEY")
        executor_factory = load_executor_factory(args.executor)

    if warn_if_live(args.mode):
        time.sleep(5)

    if args.engine_only:
        on_status = print_status
    else:
        on_status = update_runner_status
    callbacks = RunnerCallbacks(
        on_status=on_status,
        on_error=record_runner_error,
        on_trade=_log_trade,
    )

    asyncio.run(_run_runner(
        config, strategy, callbacks, executor_factory,
        mode=args.mode, with_api=not args.engine_only,
    ))


async def _run_runner(
    config,
    strategy,
    callbacks,
    executor_factory,
    mode: str,
    with_api: bool = True,
) -> None:
    """Start the runner, and the API server alongside it unless disabled."""
    import asyncio
    import signal

    import uvicorn

    from swaprunner.api.routers import configure_routers
    from swaprunner.engine_manager import start_runner, stop_runner

    handle = start_runner(
        strategy,
        config.private_key,
        config.rpc_url,
        callbacks,
        wallet_address=config.wallet_address,
        executor_factory=executor_factory,
        db_path=config.db_path,
    )
    configure_routers(handle=handle, status={"mode": mode, "running": True})

    def handle_shutdown(signum, frame):
        logger.info("Shutdown signal received — stopping gracefully.")
        stop_runner(handle)

    signal.signal(signal.SIGINT, handle_shutdown)

    logger.info("Starting SwapRunner in %s mode for %s.", mode, strategy.key)

    if not with_api:
        results = await handle.wait()
        logger.info("SwapRunner stopped after %d tick(s).", len(results))
        return

    uvi_config = uvicorn.Config(
        app,
        host="0.0.0.0",
        port=config.api_port,
        log_level="info",
    )
    server = uvicorn.Server(uvi_config)

    async def _run_server():
        await server.serve()
        # uvicorn owns SIGINT while serving
        stop_runner(handle)

    async def _run_engine():
        results = await handle.wait()
        server.should_exit = True
        return results

    logger.info("API available at http://localhost:%d", config.api_port)
    results = await asyncio.gather(
        _run_server(),
        _run_engine(),
        return_exceptions=True,
    )
    logger.info("SwapRunner stopped. Results: %s", results[1])


if __name__ == "__main__":
    _run_cli()
