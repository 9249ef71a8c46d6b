"""CLI dashboard — prints runner status to the console."""


def _fmt_price(value) -> str:
    return f"{value:.10g}" if value is not None else "N/A"


def print_status(status: dict) -> str:
    """Format and print the current runner status.

    Args:
        status: Dict shaped like ``RunnerStatus.to_dict()``.

    Returns:
        The formatted string (also printed to stdout).
    """
    running = status.get("running", False)
    phase = status.get("phase", "IDLE")
    source = status.get("price_source")
    tx = status.get("last_tx_hash") or "N/A"
    message = status.get("message") or ""

    price_str = _fmt_price(status.get("last_price"))
    if source == "usd_fallback":
        price_str += " (USD ref)"

    lines = [
        "─────────────── SwapRunner Status ───────────────",
        f"  Running:         {running}",
        f"  Phase:           {phase}",
        f"  Price:           {price_str}",
        f"  Entry Price:     {_fmt_price(status.get('entry_price'))}",
        f"  Last Exit:       {_fmt_price(status.get('last_exit_price'))}",
        f"  Last Tx:         {tx}",
        f"  Message:         {message}",
        "─────────────────────────────────────────────────",
    ]
    output = "\n".join(lines)
    print(output)
    return output
