"""
Formatting utilities for display.
"""


def format_sol(amount: float) -> str:
    """Format SOL amount for display."""
    if amount >= 1000:
        return f"{amount:,.2f}"
    elif amount >= 1:
        return f"{amount:.4f}"
    else:
        return f"{amount:.6f}".rstrip("0").rstrip(".")


def format_usdc(amount: float) -> str:
    return f"{amount:.2f}" if amount >= 0.01 else f"{amount:.6f}".rstrip("0")


def format_tx_link(signature: str, network: str = "mainnet-beta") -> str:
    """Format Solana transaction explorer link."""
    base_url = f"https://solscan.io/tx/{signature}"
    if network != "mainnet-beta":
        base_url += f"?cluster={network}"
    return base_url


def truncate_address(address: str, start: int = 4, end: int = 4) -> str:
    """Truncate address for log lines."""
    if len(address) <= start + end:
        return address
    return f"{address[:start]}...{address[-end:]}"
