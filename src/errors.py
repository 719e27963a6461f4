"""Error taxonomy for reconciliation ingestion and queries."""

from typing import Any, Dict


class ReconciliationError(Exception):
    """Base class for errors surfaced to callers as ``{"error": ...}``."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class ValidationError(ReconciliationError):
    """Missing or malformed request input. User-correctable."""

    status_code = 400


class NoDataError(ReconciliationError):
    """The upload parsed but produced no usable rows."""

    status_code = 400

    def __init__(self, message: str = "No usable rows found in uploaded file(s)"):
        super().__init__(
            f"{message}. Check that the export matches the expected CareCenta/HHAeX format."
        )


class NotFoundError(ReconciliationError):
    """Unknown run or row identifier."""

    status_code = 404


class ExtractionError(ReconciliationError):
    """A spreadsheet could not be read at all."""

    status_code = 500


class PersistenceError(ReconciliationError):
    """The record store rejected an insert, update or delete."""

    status_code = 500


class HeaderNotFoundError(Exception):
    """No row of a combined export carries the required columns."""
