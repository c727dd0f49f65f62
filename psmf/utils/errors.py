# psmf/utils/errors.py
class UserInputError(RuntimeError):
    """
    Raised for invalid user-provided input (ratings file, columns, etc).
    Should NOT print traceback.
    """


class ProtocolViolation(RuntimeError):
    """
    Upstream contract breach seen by a worker partition.

    Fatal for that partition: never retried, nothing rolled back.
    """

    def __init__(self, worker: int, message: str):
        super().__init__(f"[worker {worker}] {message}")
        self.worker = worker


class LateRatingError(ProtocolViolation):
    """A rating arrived after the barrier fired."""


class DuplicateEndMarkerError(ProtocolViolation):
    """Second end-of-input marker from the same source (or a foreign one)."""


class UnexpectedPullAnswerError(ProtocolViolation):
    """Pull answer with no matching pending pull."""
