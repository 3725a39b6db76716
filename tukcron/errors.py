"""
Error classes for tukcron provisioning and scheduling.

These error types enable classification at the pipeline boundaries:
- TransientError: Safe to retry (RPC timeouts, connection resets)
- PermanentError: Do not retry automatically (bad input, rejected writes,
  missing external setup)
- IdempotencyGuard: A check-then-create guard tripped on already provisioned
  state. These are "already done" signals, converted into skips by the
  provisioner, registrar and delegation coordinator.

Error handling contract:
- Provisioning-order errors halt the pipeline immediately (no rollback)
- Guard errors are caught at each check-then-create boundary
- Errors are exceptions, not values
"""


class TukcronError(Exception):
    """Base exception for tukcron."""
    pass


class TransientError(TukcronError):
    """
    Transient error - safe to retry.

    Examples:
    - RPC node timeout
    - Connection reset
    - Rate limit exceeded

    Existence checks are retried according to the configured retry policy
    when a backend raises TransientError.
    """
    pass


class PermanentError(TukcronError):
    """
    Permanent error - do not retry automatically.

    The operator fixes the external cause and re-runs the whole pipeline,
    which the idempotency checks make safe.
    """
    pass


class InvalidSeed(PermanentError):
    """Malformed address derivation input (caller bug)."""
    pass


class Rejected(PermanentError):
    """
    The external store refused an operation.

    Examples:
    - Insufficient funds for a transfer or rent
    - Program constraint violation
    """

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class NotFound(PermanentError):
    """A required pre-existing external resource is missing."""
    pass


class AuthorityMismatch(PermanentError):
    """The caller lacks the right to transfer a resource's authority."""
    pass


class IdempotencyGuard(TukcronError):
    """Base for guards that signal an operation was already performed."""
    pass


class SlotOccupied(IdempotencyGuard):
    """A job slot (or task id) is already populated."""

    def __init__(self, message: str, index: int | None = None):
        super().__init__(message)
        self.index = index


class AlreadyDelegated(IdempotencyGuard):
    """The resource already has an active delegation."""
    pass


class PipelineHalted(PermanentError):
    """
    Raised when a provisioning step failed and the pipeline stopped.

    Carries the partial report so callers can show which resources were
    created, which already existed and which one failed.
    """

    def __init__(self, message: str, report):
        super().__init__(message)
        self.report = report
