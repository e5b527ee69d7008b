from __future__ import annotations

"""On-disk model of a failed message.

A failed message is a pair of sibling files sharing a base name::

    {yyyyMMdd_HHmmss_SSS}_{correlationId}_{index}.msg   raw payload
    {yyyyMMdd_HHmmss_SSS}_{correlationId}_{index}.meta  JSON metadata

The metadata names its payload through ``contentFile``; a ``.meta`` whose
payload is missing is a corrupt record.
"""

import os
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from recovery.errors import MalformedRecordError

CONTENT_SUFFIX = ".msg"
META_SUFFIX = ".meta"

NO_CORRELATION = "no-correlation"
MAX_CORRELATION_LENGTH = 50
_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\s]')


def sanitize_correlation_id(correlation_id: Optional[str]) -> str:
    """Make a correlation ID usable as part of a file name."""
    if correlation_id is None:
        return NO_CORRELATION
    if not correlation_id:
        return "unknown"
    return _UNSAFE_FILENAME_CHARS.sub("_", correlation_id)[:MAX_CORRELATION_LENGTH]


def build_base_name(correlation_id: Optional[str], index: int, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y%m%d_%H%M%S_") + f"{now.microsecond // 1000:03d}"
    return f"{stamp}_{sanitize_correlation_id(correlation_id)}_{index}"


def meta_name_for(content_file: str) -> str:
    stem, _ = os.path.splitext(content_file)
    return stem + META_SUFFIX


@dataclass(frozen=True)
class FailedMessageRecord:
    timestamp: str
    queue: str
    correlation_id: Optional[str]
    index: int
    error: str
    content_file: str

    @property
    def meta_file(self) -> str:
        return meta_name_for(self.content_file)

    @property
    def message_id(self) -> str:
        """Identifier used in failure summaries."""
        return self.correlation_id if self.correlation_id is not None else str(self.index)

    def to_metadata(self) -> Dict[str, Any]:
        meta: Dict[str, Any] = {"timestamp": self.timestamp, "queue": self.queue}
        if self.correlation_id is not None:
            meta["correlationId"] = self.correlation_id
        meta["index"] = self.index
        meta["error"] = self.error
        meta["contentFile"] = self.content_file
        return meta

    @classmethod
    def from_metadata(cls, meta: Any, *, meta_file: str = "<metadata>", default_queue: Optional[str] = None) -> "FailedMessageRecord":
        if not isinstance(meta, dict):
            raise MalformedRecordError(meta_file, "metadata is not a JSON object")

        content_file = meta.get("contentFile")
        if not isinstance(content_file, str) or not content_file:
            raise MalformedRecordError(meta_file, "missing contentFile")
        if os.path.basename(content_file) != content_file:
            raise MalformedRecordError(meta_file, f"contentFile '{content_file}' is not a plain file name")

        queue = meta.get("queue") or default_queue
        if not isinstance(queue, str) or not queue:
            raise MalformedRecordError(meta_file, "missing queue")

        index = meta.get("index", 0)
        if isinstance(index, bool) or not isinstance(index, int):
            raise MalformedRecordError(meta_file, f"index '{index}' is not an integer")

        correlation_id = meta.get("correlationId")
        if correlation_id is not None:
            correlation_id = str(correlation_id)

        return cls(
            timestamp=str(meta.get("timestamp", "")),
            queue=queue,
            correlation_id=correlation_id,
            index=index,
            error=str(meta.get("error", "")),
            content_file=content_file,
        )
