"""
Option-chain persistence.

Append-only Postgres storage for per-strike rows and per-run OI summaries,
with OI changes computed against the last persisted run.

Usage:
    from oi_store import OIStore, OIDeltaWriter, PersistContext

    store = OIStore({"dsn": "postgresql://..."})
    summary = OIDeltaWriter(store).persist(chain, 25012.4, PersistContext(...))
"""

from .client import OIStore
from .models import AggregateBucket, PersistContext, RunSummary
from .writer import OIDeltaWriter

__all__ = ["OIStore", "OIDeltaWriter", "PersistContext", "RunSummary", "AggregateBucket"]
