"""
Exception taxonomy for the NSE acquisition pipeline.

Handlers turn these into ``"Error: ..."`` result strings; sink failures are
logged and counted but never change a handler's result.
"""


class PipelineError(Exception):
    """Base error for the acquisition pipeline."""

    pass


class TaskError(PipelineError):
    """A task could not be routed; rendered as a result string by the router."""

    pass


class InvalidTask(TaskError):
    """Task missing, or a required field (kind, symbol, ...) absent or invalid."""

    pass


class UnknownTaskKind(TaskError):
    """No handler is registered for the normalized task kind."""

    def __init__(self, kind: str):
        super().__init__(f"unknown taskType={kind}")
        self.kind = kind


class FetchError(PipelineError):
    """Transport failure or timeout while talking to the upstream source."""

    pass


class DecodeError(PipelineError):
    """Payload could not be decoded (malformed CSV/JSON, bad encoding)."""

    pass


class NoExpiryDates(PipelineError):
    """Contract-info yielded no usable expiry dates."""

    def __init__(self, symbol: str):
        super().__init__(f"Could not extract expiry dates for symbol {symbol}")
        self.symbol = symbol


class EnrichmentError(PipelineError):
    """Analytics call for a single option leg failed."""

    pass


class PersistenceError(PipelineError):
    """Relational write or read failed."""

    pass


class SinkUnavailable(PipelineError):
    """A sink is configured off or could not be constructed; callers treat it as a no-op."""

    def __init__(self, sink: str, reason: str = "disabled"):
        super().__init__(f"{sink} sink unavailable: {reason}")
        self.sink = sink
        self.reason = reason
