"""
Error taxonomy for Courier.

Configuration errors are fatal, transport failures are retried,
storage failures degrade to in-memory retries and exhaustion is terminal.
"""


class CourierError(Exception):
    """Base class for all Courier errors."""


class ConfigurationError(CourierError):
    """Invalid or missing delivery configuration. Raised at construction, never retried."""


class TransportFailure(CourierError):
    """A single POST to one receiver failed."""

    def __init__(
        self,
        url: str,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.url = url
        self.message = message
        self.status_code = status_code
        self.error_code = error_code

    @property
    def classification(self) -> str:
        """HTTP status if there was one, else the transport error code, else 'unknown'."""
        if self.status_code is not None:
            return str(self.status_code)
        return self.error_code or "unknown"

    def __repr__(self):
        return f"<TransportFailure(url={self.url}, classification={self.classification})>"


class StorageFailure(CourierError):
    """The attempt ledger could not be read or written."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation
        self.message = message


class ExhaustionFailure(CourierError):
    """Every attempt of a delivery sequence failed."""

    def __init__(self, request_id: str, attempts: int, last_error: str):
        super().__init__(
            f"Delivery {request_id} abandoned after {attempts} attempts (last error: {last_error})"
        )
        self.request_id = request_id
        self.attempts = attempts
        self.last_error = last_error
