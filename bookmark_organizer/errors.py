from typing import List, Optional


class OrganizerError(Exception):
    """Base class for all bookmark organizer failures."""


class StoreError(OrganizerError):
    """The bookmark store rejected an operation."""


class TransportError(OrganizerError):
    """Network failure or timeout talking to a remote service."""


class ProbeTimeout(TransportError):
    pass


class ClassifierError(TransportError):
    pass


class RateLimited(ClassifierError):
    pass


class AuthError(ClassifierError):
    pass


class MalformedResponse(ClassifierError):
    pass


class Unavailable(ClassifierError):
    pass


class ParseError(OrganizerError):
    def __init__(self, message: str, batch_index: Optional[int] = None):
        self.batch_index = batch_index
        if batch_index is not None:
            message = f"Batch {batch_index + 1}: {message}"
        super().__init__(message)


class PlanningError(OrganizerError):
    """Classification failed and the remaining batches were abandoned."""

    def __init__(self, message: str, batch_index: int, plan=None):
        self.batch_index = batch_index
        self.plan = plan
        super().__init__(f"Batch {batch_index + 1}: {message}")


class CatastrophicPlanningError(OrganizerError):
    """Planning failed after a destructive reset had already begun."""

    def __init__(self, message: str, backup_id: Optional[str]):
        self.backup_id = backup_id
        super().__init__(f"{message} (all bookmarks are kept in backup folder {backup_id})")


class ReconcileError(OrganizerError):
    def __init__(self, message: str, backup_id: Optional[str] = None):
        self.backup_id = backup_id
        if backup_id is not None:
            message = f"{message} (backup folder {backup_id} left intact)"
        super().__init__(message)


class PartialMoveError(OrganizerError):
    """Some entries could not be moved; the rest of the run completed."""

    def __init__(self, moved_count: int, errors: List[str], result=None):
        self.moved_count = moved_count
        self.errors = errors
        self.result = result
        super().__init__(f"Moved {moved_count} bookmarks, {len(errors)} failed")
