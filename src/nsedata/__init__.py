"""
NSE market-data acquisition pipeline.

Fetches index, equity-variation and option-chain snapshots from the NSE web
API, keeps a rolling current/previous snapshot in a key/value cache, announces
updates on a message bus, enriches option legs with Greeks and hands chains to
the OI store.

Usage:
    from nsedata import Task
    from nsedata.router import TaskRouter

    router = TaskRouter()
    router.register(AllIndicesHandler(fetcher, publisher, defaults), "allindices")
    router.route(Task(kind="all-indices"))
"""

from .errors import (
    DecodeError,
    EnrichmentError,
    FetchError,
    InvalidTask,
    NoExpiryDates,
    PersistenceError,
    PipelineError,
    SinkUnavailable,
    UnknownTaskKind,
)
from .models import ChainEntry, ChainResponse, OptionLeg, Task

__version__ = "0.1.0"
__all__ = [
    "Task",
    "ChainEntry",
    "ChainResponse",
    "OptionLeg",
    "PipelineError",
    "InvalidTask",
    "UnknownTaskKind",
    "FetchError",
    "DecodeError",
    "NoExpiryDates",
    "EnrichmentError",
    "PersistenceError",
    "SinkUnavailable",
]
