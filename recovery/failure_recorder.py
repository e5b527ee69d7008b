from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from typing import List, Optional, Union

from recovery.errors import PersistenceError, RecoveryConfigError
from recovery.failed_message import CONTENT_SUFFIX, FailedMessageRecord, build_base_name
from recovery.file_store import atomic_write, recovery_logger, remove_if_exists


class FailureRecorder:
    """Persists messages that could not be published so they can be retried.

    Parameters
    ----------
    directory : str
        The failed-directory. Created on ``init_directory()`` if missing.
    """

    def __init__(self, directory: str) -> None:
        self.directory = str(directory)
        self.saved_count = 0
        self._failed_message_ids: List[str] = []

    @property
    def failed_message_ids(self) -> List[str]:
        return list(self._failed_message_ids)

    def init_directory(self) -> None:
        if os.path.exists(self.directory) and not os.path.isdir(self.directory):
            raise RecoveryConfigError(f"Failed message path is not a directory: {os.path.abspath(self.directory)}")
        if not os.path.isdir(self.directory):
            try:
                os.makedirs(self.directory, exist_ok=True)
            except OSError as e:
                raise RecoveryConfigError(f"Failed to create failed message directory {os.path.abspath(self.directory)}: {e}") from e
            recovery_logger.info(f"Created failed message directory: {os.path.abspath(self.directory)}")

    def record(
        self,
        payload: bytes,
        queue: str,
        correlation_id: Optional[str],
        index: int,
        error: Union[BaseException, str],
    ) -> FailedMessageRecord:
        """Write the payload, then its metadata, into the failed-directory.

        Raises ``PersistenceError`` if either file cannot be written. In that
        case no metadata is left behind pointing at a missing payload.
        """
        now = datetime.now(timezone.utc)
        base_name = build_base_name(correlation_id, index, now)
        record = FailedMessageRecord(
            timestamp=now.isoformat(),
            queue=queue,
            correlation_id=correlation_id,
            index=index,
            error=_describe(error),
            content_file=base_name + CONTENT_SUFFIX,
        )

        content_path = os.path.join(self.directory, record.content_file)
        try:
            atomic_write(self.directory, record.content_file, payload)
        except OSError as e:
            recovery_logger.error(f"action: record_failed_message | result: fail | file: {content_path} | error: {e}")
            raise PersistenceError(content_path, publish_error=error) from e

        meta_bytes = (json.dumps(record.to_metadata(), indent=2) + "\n").encode("utf-8")
        try:
            atomic_write(self.directory, record.meta_file, meta_bytes)
        except OSError as e:
            recovery_logger.error(f"action: record_failed_message | result: fail | file: {record.meta_file} | error: {e}")
            # a payload without metadata is never picked up; drop it
            remove_if_exists(content_path)
            raise PersistenceError(os.path.join(self.directory, record.meta_file), publish_error=error) from e

        self.saved_count += 1
        self._failed_message_ids.append(record.message_id)
        recovery_logger.info(
            f"action: record_failed_message | result: success | queue: {queue} | "
            f"correlation_id: {correlation_id} | index: {index} | file: {record.content_file}"
        )
        return record


def _describe(error: Union[BaseException, str]) -> str:
    if isinstance(error, BaseException):
        text = str(error)
        return text if text else type(error).__name__
    return str(error)
