class ForecastEngineError(Exception):
    """Base class for errors raised by the forecasting engine."""


class StoreError(ForecastEngineError):
    """A document-store collaborator (ledger, goals, forecasts) failed."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation} failed: {message}")
        self.operation = operation


class InsufficientDataError(ForecastEngineError):
    """Not enough points to train a model. Never surfaced to callers."""
