# credora/exceptions.py
"""
Application-level exceptions.

Each error carries a machine-checkable ``error_code`` and the HTTP status the
API layer answers with, so routes can turn any of them into a
``{"error": ..., "message": ...}`` payload without special-casing.
"""


class CredoraError(Exception):
    error_code = "internal_error"
    status_code = 500

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self):
        return {"error": self.error_code, "message": self.message}


class ValidationError(CredoraError):
    """Bad or missing input. Raised before any side effect happens."""
    error_code = "validation_error"
    status_code = 400


class UpstreamUnavailable(CredoraError):
    """Chain RPC, explorer or inference backend could not be reached."""
    error_code = "upstream_unavailable"
    status_code = 500


class PersistenceFailure(CredoraError):
    """The wallet store failed to read or write."""
    error_code = "persistence_failure"
    status_code = 500


class ContractRevert(CredoraError):
    """
    Deterministic business rejection mirrored from the Loan contract.

    The ``reason`` is the contract's revert string, byte for byte.
    """
    error_code = "contract_revert"
    status_code = 400

    def __init__(self, reason):
        super().__init__(reason)
        self.reason = reason
