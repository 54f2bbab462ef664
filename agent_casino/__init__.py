"""Agent Casino: x402-gated, oracle-settled casino games on Solana."""

__version__ = "1.0.0"
