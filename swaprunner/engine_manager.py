"""Runner lifecycle — wires one strategy to its collaborators and runs it.

``start_runner`` builds the RPC client, price oracle, swap executor and the
per-strategy repositories, then launches ``RunnerEngine.run()`` as an
``asyncio`` task.  The returned ``RunnerHandle`` is the only way to stop it.
"""

import asyncio
import logging
from typing import Callable, Optional

from swaprunner.chain.executor import DryRunSwapExecutor, SwapExecutor
from swaprunner.chain.rpc_client import JsonRpcClient
from swaprunner.engine import RunnerEngine
from swaprunner.models.position import RunnerCallbacks
from swaprunner.models.strategy import Strategy
from swaprunner.pricing.oracle import PriceOracle
from swaprunner.pricing.reference import ReferencePriceService
from swaprunner.repos.db import KeyValueStore, init_db
from swaprunner.repos.state_repo import PositionStateRepo
from swaprunner.repos.trade_log_repo import TradeLogRepo

logger = logging.getLogger("swaprunner.engine_manager")

DEFAULT_DB_PATH = "data/swaprunner.db"

# (private_key, rpc_url, strategy) -> SwapExecutor
ExecutorFactory = Callable[[Optional[str], str, Strategy], SwapExecutor]


class RunnerHandle:
    """A running strategy: its engine, task and repositories.

    Args:
        engine: The ``RunnerEngine`` being driven.
        task: The ``asyncio`` task running ``engine.run()``.
        state_repo: Position record repository for this strategy.
        trade_log: Trade log repository for this strategy.
        reference_prices: Shared USD price service (used for PnL in USD).
    """

    def __init__(
        self,
        engine: RunnerEngine,
        task: asyncio.Task,
        state_repo: PositionStateRepo,
        trade_log: TradeLogRepo,
        reference_prices: ReferencePriceService,
    ) -> None:
        self.engine = engine
        self.task = task
        self.state_repo = state_repo
        self.trade_log = trade_log
        self.reference_prices = reference_prices

    @property
    def strategy(self) -> Strategy:
        return self.engine.strategy

    @property
    def running(self) -> bool:
        return self.engine.running and not self.task.done()

    def stop(self) -> None:
        """Signal the loop to stop; an in-flight tick still completes."""
        self.engine.stop()
        logger.info("Stop signal sent to runner '%s'.", self.strategy.key)

    async def wait(self) -> list[dict]:
        """Wait for the loop to exit and return its per-tick results."""
        try:
            return await self.task
        except Exception as exc:  # pragma: no cover
            logger.error("Runner '%s' crashed: %s", self.strategy.key, exc)
            return [{"action": "error", "reason": str(exc)}]


def build_engine(
    strategy: Strategy,
    rpc,
    executor,
    store: KeyValueStore,
    callbacks: Optional[RunnerCallbacks] = None,
    reference_prices: Optional[ReferencePriceService] = None,
) -> RunnerEngine:
    """Assemble a ``RunnerEngine`` without starting it.

    State and trade log keys are namespaced by ``strategy.key`` so several
    strategies can share one store.
    """
    if reference_prices is None:
        reference_prices = ReferencePriceService()
    return RunnerEngine(
        strategy=strategy,
        rpc=rpc,
        oracle=PriceOracle(rpc, reference_prices),
        executor=executor,
        state_repo=PositionStateRepo(store, strategy.key),
        trade_log=TradeLogRepo(store, strategy.key),
        callbacks=callbacks,
    )


def start_runner(
    strategy: Strategy,
    private_key: Optional[str],
    rpc_url: str,
    callbacks: Optional[RunnerCallbacks],
    *,
    wallet_address: Optional[str] = None,
    executor_factory: Optional[ExecutorFactory] = None,
    store: Optional[KeyValueStore] = None,
    db_path: str = DEFAULT_DB_PATH,
    rpc=None,
    reference_prices: Optional[ReferencePriceService] = None,
    max_cycles: int = 0,
) -> RunnerHandle:
    """Start the polling loop for *strategy* on the running event loop.

    Without an *executor_factory* swaps are simulated by
    ``DryRunSwapExecutor`` for *wallet_address*.  The private key is handed
    to the factory and nowhere else.

    Raises:
        ValueError: neither an executor factory nor a wallet address given.
        RuntimeError: called outside a running event loop.
    """
    loop = asyncio.get_running_loop()

    if executor_factory is not None:
        executor = executor_factory(private_key, rpc_url, strategy)
    elif wallet_address:
        executor = DryRunSwapExecutor(wallet_address)
    else:
        raise ValueError("A wallet address is required for dry-run mode")

    if store is None:
        init_db(db_path)
        store = KeyValueStore(db_path)
    if rpc is None:
        rpc = JsonRpcClient(rpc_url)
    if reference_prices is None:
        reference_prices = ReferencePriceService()

    engine = build_engine(
        strategy, rpc, executor, store,
        callbacks=callbacks, reference_prices=reference_prices,
    )
    task = loop.create_task(engine.run(max_cycles=max_cycles))
    logger.info(
        "Started runner '%s' (%s, owner %s, poll %ds).",
        strategy.key,
        type(executor).__name__,
        executor.owner_address,
        strategy.poll_seconds,
    )
    return RunnerHandle(
        engine=engine,
        task=task,
        state_repo=engine.state_repo,
        trade_log=engine.trade_log,
        reference_prices=reference_prices,
    )


def stop_runner(handle: Optional[RunnerHandle]) -> None:
    """Stop *handle* if given; a no-op for ``None``."""
    if handle is not None:
        handle.stop()
