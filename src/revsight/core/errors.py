"""Exception hierarchy for revsight.

Every error surfaced to a caller carries an HTTP-style ``status_code`` and a
``retryable`` hint so request handlers and the CLI can decide whether to offer
a retry without inspecting the message text.
"""


class RevsightError(Exception):
    """Base exception for all revsight errors."""

    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, details: dict[str, str] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class HostError(RevsightError):
    """Raised when the version-control host rejects or fails a request."""

    retryable = True

    def __init__(self, message: str, status_code: int = 502, details: dict[str, str] | None = None):
        super().__init__(message, details)
        self.status_code = status_code
        # Client errors other than rate limiting will not succeed on retry
        self.retryable = status_code >= 500 or status_code == 429


class HostNotFoundError(HostError):
    """Raised when the change-set or repository does not exist on the host."""

    def __init__(self, resource: str):
        super().__init__(f"Not found on host: {resource}", status_code=404)
        self.resource = resource


class OracleError(RevsightError):
    """Raised when an analysis, embedding or summary call to the AI oracle fails."""

    status_code = 502
    retryable = True


class ContentTooLargeError(OracleError):
    """Raised when a payload exceeds the oracle's size limit."""

    status_code = 413
    retryable = False


class PersistenceError(RevsightError):
    """Raised when the durable store cannot be read or written."""

    status_code = 503
    retryable = True


class RecordNotFoundError(RevsightError):
    """Raised when a stored change-set or analysis does not exist."""

    status_code = 404

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} not found", details={"id": record_id})
        self.kind = kind
        self.record_id = record_id


class InvalidQueryError(RevsightError):
    """Raised when free-text search input is empty or too long."""

    status_code = 400


class ItemNotFoundError(RevsightError):
    """Raised when a triage request names an issue or suggestion that is not in the analysis."""

    status_code = 404


class CompensationError(RevsightError):
    """Raised when marking a change-set as failed itself fails.

    Carries both the error that aborted the run and the error raised by the
    compensating write.
    """

    def __init__(self, original: BaseException, compensation: BaseException):
        super().__init__(
            "Analysis failed and its status could not be set to 'failed'",
            details={"original": str(original), "compensation": str(compensation)},
        )
        self.original = original
        self.compensation = compensation
        self.retryable = getattr(original, "retryable", False)
