"""
Infrastructure package for watermark-sync.

Centralizes database connectivity concerns (DSN, connection factory, pooling).
Keep this layer focused on I/O and resource management, decoupled from the
sync steps and orchestrator logic.
"""

from watermark_sync.infrastructure.db_factory import (
    PoolManager,
    apply_statement_timeout,
    build_dsn,
    get_sync_connection,
)

__all__ = [
    "PoolManager",
    "apply_statement_timeout",
    "build_dsn",
    "get_sync_connection",
]
