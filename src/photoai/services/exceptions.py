"""Service error hierarchy for job submission, ledger and reconciliation.

This module defines the exception hierarchy for service-level errors:
- ServiceError: Base for all service errors
- ValidationError / NotFoundError / InsufficientCreditsError: caller errors, no side effects
- ExecutorError: External executor failures, split into transient (timeouts are
  a transient subclass with an unknown outcome) and permanent
- DuplicateCallbackError: Internal marker for re-delivered callbacks
"""


class ServiceError(Exception):
    """Base exception for all service errors."""

    code: str = "service_error"
    retryable: bool = False


class ValidationError(ServiceError):
    """Malformed input. Nothing was persisted or charged."""

    code = "validation_error"


class NotFoundError(ServiceError):
    """Referenced model, job or pack does not exist (or is not usable)."""

    code = "not_found"


class InsufficientCreditsError(ServiceError):
    """Owner balance does not cover the requested amount."""

    code = "insufficient_credits"

    def __init__(self, owner_id: str, required: int, available: int | None = None):
        self.owner_id = owner_id
        self.required = required
        self.available = available
        message = f"Owner {owner_id} needs {required} credits"
        if available is not None:
            message += f" but has {available}"
        super().__init__(message)


class ExecutorError(ServiceError):
    """Base exception for external executor failures."""

    code = "executor_error"


class TransientExecutorError(ExecutorError):
    """Executor failure that may succeed on retry.

    Examples:
    - Network timeouts
    - Rate limit exceeded (429)
    - Service unavailable (503)
    """

    code = "executor_unavailable"
    retryable = True


class ExecutorTimeoutError(TransientExecutorError):
    """The executor did not answer in time; the request may still have been accepted.

    Dispatch treats this as unconfirmed rather than failed: the job stays
    pending and is settled by its callback or by the pending sweep.
    """

    code = "executor_timeout"


class PermanentExecutorError(ExecutorError):
    """Executor failure that will not succeed on retry.

    Examples:
    - Authentication failures (401, 403)
    - Invalid request parameters (400)
    - Malformed or missing result payloads
    """

    code = "executor_rejected"


class DuplicateCallbackError(ServiceError):
    """Callback arrived for a job that already left the pending state."""

    code = "duplicate_callback"


class StorageError(ServiceError):
    """Object store could not sign or serve a request."""

    code = "storage_unavailable"
    retryable = True
