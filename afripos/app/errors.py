"""Exceptions raised by the POS core."""


class PosError(Exception):
    """Base exception for the POS core."""

    def __init__(self, message="pos error", payload=None):
        super().__init__(message)
        self.message = message
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv["error"] = self.message
        return rv


class RemoteUnavailable(PosError):
    """The remote store could not be reached (offline, refused, or timed out)."""

    def __init__(self, message="remote store unavailable", payload=None):
        super().__init__(message, payload)


class CheckoutNotReadyError(PosError):
    """Commit attempted on an empty draft or before the balance is covered."""


class CommitInFlightError(PosError):
    """A commit for this draft is already running."""

    def __init__(self, draft_id: str):
        super().__init__(f"commit already in flight for draft {draft_id}", {"draft_id": draft_id})
        self.draft_id = draft_id
