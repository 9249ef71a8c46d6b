"""Error taxonomy for the runner.

Every fault raised inside a tick is caught at the tick boundary by the
engine; these types let the engine (and its callers) tell them apart.
"""


class RunnerError(Exception):
    """Base class for all runner faults."""


class QuoteError(RunnerError):
    """Price resolution failed (RPC/transport failure, zero output, ...)."""


class NoRouteError(QuoteError):
    """The quote capability found no pool/route for the pair.

    This is the only quote failure that triggers the USD fallback path.
    """


class NoLiquidityError(QuoteError):
    """No on-chain route and no usable USD reference prices."""


class SubmissionError(RunnerError):
    """A swap failed before a transaction hash was produced."""


class PersistenceError(RunnerError):
    """Reading or writing the durable store failed."""


class PendingTimeout(RunnerError):
    """A pending submission was not confirmed within the timeout.

    Handled inside the tick as a local state reversion; never surfaced
    through the error callback.
    """

    def __init__(self, kind: str, tx_hash: str | None, age_ms: int) -> None:
        super().__init__(
            f"{kind} {tx_hash or '?'} unconfirmed after {age_ms / 1000:.0f}s"
        )
        self.kind = kind
        self.tx_hash = tx_hash
        self.age_ms = age_ms
