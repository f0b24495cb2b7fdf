"""
Typed, caller-recoverable errors raised by the yard services.

The API layer maps each class to an HTTP status:
- NotFoundError           -> 404
- ConflictError           -> 409 (capacity, overlap, invalid state transition)
- PreconditionFailedError -> 412 (e.g. check-out without check-in)
"""
from typing import Any, Dict, Optional


class YardError(Exception):
    """Base exception for yard and dock scheduling errors."""
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(YardError):
    """Referenced appointment, trailer, location or move does not exist."""
    status_code = 404


class ConflictError(YardError):
    """Capacity exceeded, overlapping slot or invalid state transition."""
    status_code = 409


class PreconditionFailedError(YardError):
    """Operation attempted before its prerequisite step."""
    status_code = 412
