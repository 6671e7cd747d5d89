"""Resumable, batched token airdrops on the XRP Ledger."""

__version__ = "0.1.0"
