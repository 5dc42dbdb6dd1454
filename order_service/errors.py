import re
from enum import Enum
from typing import Any, Dict, Optional

from fastapi import HTTPException

UNKNOWN_SAVE_ERROR = "Unknown error while saving order"


class ErrorKind(str, Enum):
    """Closed set of failure kinds the save pipeline branches on."""
    NETWORK = "network"
    VERSION_CONFLICT = "version_conflict"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


# HTTP status used when a failure of a given kind leaves the service.
KIND_STATUS = {
    ErrorKind.NETWORK: 502,
    ErrorKind.VERSION_CONFLICT: 409,
    ErrorKind.VALIDATION: 400,
    ErrorKind.UNKNOWN: 500,
}


class OrderServiceError(Exception):
    """
    Base exception of the order service.

    Carries a machine readable code and converts itself into an
    HTTPException for the FastAPI layer.
    """
    code: str = "INTERNAL_ERROR"
    detail: str = "Internal server error"
    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, detail: Optional[str] = None, extra: Optional[Dict[str, Any]] = None):
        self.detail = detail or self.__class__.detail
        self.extra = extra or {}
        super().__init__(self.detail)

    @property
    def status_code(self) -> int:
        return KIND_STATUS[self.kind]

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "code": self.code,
                "kind": self.kind.value,
                "message": self.detail,
                **self.extra
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "kind": self.kind.value,
            "status_code": self.status_code,
            "message": self.detail,
            **self.extra
        }


class DataProviderError(OrderServiceError):
    """A remote call against the data service failed.

    Raised by every DataProvider implementation; the kind is decided here,
    once, so callers never probe response shapes.
    """
    code = "DATA_PROVIDER_ERROR"
    detail = "Data service request failed"

    def __init__(self, kind: ErrorKind, message: Optional[str] = None,
                 status_code: Optional[int] = None, resource: Optional[str] = None):
        self.kind = kind
        self.remote_status = status_code
        self.resource = resource
        super().__init__(message, {"resource": resource} if resource else None)


class VersionConflictError(DataProviderError):
    code = "VERSION_CONFLICT"
    detail = "The order was modified by another user"

    def __init__(self, message: Optional[str] = None, resource: Optional[str] = "orders"):
        super().__init__(ErrorKind.VERSION_CONFLICT, message, 409, resource)


class SaveError(OrderServiceError):
    """Structured failure of a whole order save."""
    code = "ORDER_SAVE_FAILED"
    detail = UNKNOWN_SAVE_ERROR

    def __init__(self, kind: ErrorKind, message: Optional[str] = None, *,
                 phase: Optional[str] = None, order_id: Optional[int] = None,
                 rolled_back: bool = False, partial: bool = False):
        self.kind = kind
        self.phase = phase
        self.order_id = order_id
        self.rolled_back = rolled_back
        self.partial = partial
        extra = {"phase": phase, "order_id": order_id,
                 "rolled_back": rolled_back, "partial": partial}
        if kind == ErrorKind.VERSION_CONFLICT:
            extra["action"] = "reload"
        super().__init__(message, extra)

    @property
    def is_version_conflict(self) -> bool:
        return self.kind == ErrorKind.VERSION_CONFLICT


# =============================================================================
# MESSAGE EXTRACTION
# =============================================================================

def translate_database_error(message: str) -> str:
    """Turn raw constraint violations into messages a user can act on."""
    if "duplicate key value violates unique constraint" in message or "UNIQUE constraint failed" in message:
        match = re.search(r'constraint "(.+?)"', message)
        constraint = match.group(1) if match else ""
        if "name" in constraint:
            return "A record with this name already exists."
        if "code" in constraint:
            return "This code already exists. Please use another one."
        return f"Value must be unique ({constraint})" if constraint else "Value must be unique"

    if "violates not-null constraint" in message or "NOT NULL constraint failed" in message:
        match = re.search(r'column "(.+?)"', message) or re.search(r"NOT NULL constraint failed: [\w]+\.(\w+)", message)
        column = match.group(1) if match else "field"
        return f'Field "{column}" is required'

    if "violates foreign key constraint" in message or "FOREIGN KEY constraint failed" in message:
        return "The record references, or is referenced by, data in other tables"

    if "violates check constraint" in message or "CHECK constraint failed" in message:
        match = re.search(r'constraint "(.+?)"', message)
        constraint = match.group(1) if match else ""
        if "positive" in constraint or "non_negative" in constraint:
            return "Value must be a positive number"
        return "Value does not satisfy validation rules"

    return message


def message_from_body(body: Any) -> Optional[str]:
    """Best message found in a JSON error body, if any."""
    if isinstance(body, str):
        return body or None
    if not isinstance(body, dict):
        return None
    errors = body.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict) and errors[0].get("message"):
        return str(errors[0]["message"])
    for key in ("message", "detail", "error"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
        if isinstance(value, dict) and value.get("message"):
            return str(value["message"])
    return None


def describe_error(error: Any) -> str:
    """Best available human readable message for any failure shape."""
    if isinstance(error, str):
        return error or UNKNOWN_SAVE_ERROR
    if isinstance(error, OrderServiceError):
        return error.detail
    if isinstance(error, dict):
        return message_from_body(error) or UNKNOWN_SAVE_ERROR
    if isinstance(error, BaseException) and str(error):
        return str(error)
    return UNKNOWN_SAVE_ERROR
