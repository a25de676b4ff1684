from typing import Any, Dict, Optional


class DaeliError(Exception):
    """Base class for every failure the planner reports to its callers"""

    kind = "error"
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "success": False,
            "error": self.kind,
            "message": self.message,
        }
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(DaeliError):
    """Malformed input: missing field, bad timestamp, end not after start"""

    kind = "validation_error"
    status_code = 422


class NotFoundError(DaeliError):
    kind = "not_found"
    status_code = 404

    def __init__(self, record_kind: str, record_id: str):
        super().__init__(f"{record_kind.capitalize()} {record_id} not found")
        self.record_kind = record_kind
        self.record_id = record_id


class ConflictError(DaeliError):
    """The request contradicts the current state of a record"""

    kind = "conflict"
    status_code = 409


class StoreFailure(DaeliError):
    """The underlying persistence is unavailable or rejected the write"""

    kind = "store_failure"
    status_code = 503
