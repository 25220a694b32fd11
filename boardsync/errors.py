"""Engine error taxonomy"""

from typing import Optional, Dict, Any, List


class BoardSyncError(Exception):
    """Base class for every failure an engine operation can report"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"detail": self.message, "kind": type(self).__name__, **self.details}


class ValidationError(BoardSyncError):
    """Rejected locally before any store call"""


class NotFoundError(BoardSyncError):
    """A referenced board, column, card or sub-resource no longer exists"""


class StoreError(BoardSyncError):
    """Any failure reported by the document store adapter"""


class PartialCascadeError(BoardSyncError):
    """A multi-batch operation failed after an earlier batch committed.

    The store now holds a transient duplicate or orphan; callers recover by
    refetching authoritative state, not by assuming nothing happened.
    """

    def __init__(
        self,
        message: str,
        stage: str,
        leftover_ids: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message, details)
        self.stage = stage
        self.leftover_ids = leftover_ids or []
        self.details.setdefault("stage", stage)
        self.details.setdefault("leftover_ids", self.leftover_ids)
