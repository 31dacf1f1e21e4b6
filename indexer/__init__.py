"""
Launchpad Indexer - Event-sourced accounting core

Consumes the launchpad's on-chain event log (launches, graduations, buys,
sells), replays it into per-user, per-position, daily pool and referral
ledgers in SQLite, and pays out each day's reward pool proportionally.
"""

__version__ = "0.4.0"

__all__ = [
    "chain_simulator",
    "config",
    "distribution",
    "errors",
    "fees",
    "ingestor",
    "models",
    "queries",
    "replay",
    "rpc",
    "server",
    "service",
    "storage",
]
