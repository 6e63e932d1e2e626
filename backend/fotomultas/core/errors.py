"""
Error taxonomy for the fines integration layer.

Every failure that crosses a component boundary is one of these classes.
The HTTP adapter maps ``status_code`` onto the response; everything below
it raises and propagates without knowing about HTTP.

    FineError
    ├── ValidationError        client fault, malformed input (400)
    │   └── InvalidTransition  status change rejected by the state machine
    ├── NotFound               fine id or CID absent (404)
    ├── LedgerError            carries the ledger revert reason when known
    │   ├── LedgerWriteError   revert, gas failure, id derivation failure
    │   └── LedgerReadError    node or decode failure on a view call
    └── StoreError
        ├── RetrievalTimeout   evidence not retrieved inside the time bound
        └── StoreUnavailable   evidence node unreachable or failing

A failed integrity check is not an error: it is a normal IntegrityReport
with ``is_valid=False``.
"""

from typing import Optional


class FineError(Exception):
    """Base class for every error raised by this package."""
    status_code: int = 500

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason


class ValidationError(FineError):
    """Malformed input: bad CID, bad pagination, bad field values."""
    status_code = 400


class InvalidTransition(ValidationError):
    """Raised when a status change is not in the transition table."""
    pass


class NotFound(FineError):
    """The requested fine or evidence blob does not exist."""
    status_code = 404


class LedgerError(FineError):
    """Base class for ledger failures. ``reason`` is the revert reason, if any."""
    status_code = 502


class LedgerWriteError(LedgerError):
    """A mutating transaction failed, reverted, or yielded no fine id."""
    pass


class LedgerReadError(LedgerError):
    """A view call against the ledger failed."""
    pass


class StoreError(FineError):
    """Base class for evidence store failures."""
    status_code = 503


class RetrievalTimeout(StoreError):
    """Evidence retrieval exceeded its time bound across all attempts."""
    status_code = 504


class StoreUnavailable(StoreError):
    """The evidence node could not be reached or rejected the request."""
    pass
