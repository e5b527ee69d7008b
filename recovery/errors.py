from __future__ import annotations

from typing import Optional


class RecoveryError(Exception):
    """Base class for every failure raised by the recovery package."""


class RecoveryConfigError(RecoveryError):
    """A failed or retry directory is missing, or is not a directory."""


class PublishError(RecoveryError):
    """A message could not be handed to the broker."""

    def __init__(self, queue: str, reason: str):
        super().__init__(f"Failed to publish to queue '{queue}': {reason}")
        self.queue = queue
        self.reason = reason


class PersistenceError(RecoveryError):
    """A failed message could not be written to disk.

    Fatal for that message: the original publish failure is kept in
    ``publish_error`` and the I/O error is chained as ``__cause__``.
    """

    def __init__(self, path: str, publish_error: Optional[object] = None):
        detail = f" (original publish failure: {publish_error})" if publish_error is not None else ""
        super().__init__(f"Could not persist failed message to '{path}'{detail}")
        self.path = path
        self.publish_error = publish_error


class MalformedRecordError(RecoveryError):
    """A .meta file cannot be turned into a retryable record."""

    def __init__(self, meta_file: str, reason: str):
        super().__init__(f"{meta_file}: {reason}")
        self.meta_file = meta_file
        self.reason = reason
