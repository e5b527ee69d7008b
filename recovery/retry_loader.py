from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Set, Tuple

from recovery.errors import MalformedRecordError, PersistenceError, PublishError, RecoveryConfigError
from recovery.failed_message import CONTENT_SUFFIX, META_SUFFIX, FailedMessageRecord
from recovery.failure_recorder import FailureRecorder
from recovery.file_store import is_temp_file, recovery_logger, remove_if_exists
from recovery.publisher import Publisher


class RefailPolicy(Enum):
    """What happens to the original pair when its resend fails again."""
    KEEP = "keep"
    MOVE = "move"

    @classmethod
    def parse(cls, name: str) -> "RefailPolicy":
        try:
            return cls(name.strip().lower())
        except ValueError:
            raise ValueError(f"Unknown refail policy '{name}'. Choose one of {[p.value for p in cls]}")


@dataclass(frozen=True)
class RetryCandidate:
    record: FailedMessageRecord
    meta_path: str
    content_path: str
    payload: bytes


@dataclass(frozen=True)
class RecordProblem:
    meta_file: str
    reason: str


@dataclass
class RetryReport:
    retried: int = 0
    failed: int = 0
    problems: List[RecordProblem] = field(default_factory=list)
    failed_message_ids: List[str] = field(default_factory=list)
    persistence_errors: List[RecordProblem] = field(default_factory=list)
    cleanup_errors: List[RecordProblem] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return len(self.problems)

    @property
    def total(self) -> int:
        return self.retried + self.failed + self.skipped


class RetryLoader:
    """Resubmits every complete failed-message pair found in a directory.

    Records are processed in file-name order. One bad record never stops the
    pass: it is reported in the ``RetryReport`` and the loader moves on.

    The directory must have a single writer; two loaders running against the
    same directory race on file deletion.
    """

    def __init__(
        self,
        directory: str,
        publisher: Publisher,
        *,
        failed_again_dir: Optional[str] = None,
        refail_policy: RefailPolicy = RefailPolicy.KEEP,
        default_queue: Optional[str] = None,
    ) -> None:
        self.directory = str(directory)
        self._publisher = publisher
        self._refail_policy = refail_policy
        self._default_queue = default_queue

        self._failed_again: Optional[FailureRecorder] = None
        if failed_again_dir is not None:
            if _same_directory(failed_again_dir, self.directory):
                recovery_logger.warning(
                    f"Failed-again directory {failed_again_dir} is the retry directory; "
                    "failed retries stay in place"
                )
            else:
                self._failed_again = FailureRecorder(str(failed_again_dir))

    def validate_directory(self) -> None:
        if not os.path.exists(self.directory):
            raise RecoveryConfigError(f"Retry directory does not exist: {os.path.abspath(self.directory)}")
        if not os.path.isdir(self.directory):
            raise RecoveryConfigError(f"Retry path is not a directory: {os.path.abspath(self.directory)}")

    def scan(self) -> Tuple[List[RetryCandidate], List[RecordProblem]]:
        """Load every ``.meta`` file and its payload, without publishing."""
        candidates: List[RetryCandidate] = []
        problems: List[RecordProblem] = []
        referenced: Set[str] = set()

        names = sorted(os.listdir(self.directory))
        for name in names:
            if not name.endswith(META_SUFFIX) or is_temp_file(name):
                continue
            try:
                candidate = self._load(name)
            except MalformedRecordError as e:
                recovery_logger.warning(f"action: load_retry_record | result: skipped | file: {name} | reason: {e.reason}")
                problems.append(RecordProblem(name, e.reason))
                continue
            content_file = candidate.record.content_file
            if content_file in referenced:
                reason = f"content file {content_file} is already referenced by another record"
                recovery_logger.warning(f"action: load_retry_record | result: skipped | file: {name} | reason: {reason}")
                problems.append(RecordProblem(name, reason))
                continue
            referenced.add(content_file)
            candidates.append(candidate)

        for name in names:
            if name.endswith(CONTENT_SUFFIX) and not is_temp_file(name) and name not in referenced:
                recovery_logger.warning(f"Payload {name} has no metadata referencing it; leaving it in place")

        return candidates, problems

    def _load(self, meta_name: str) -> RetryCandidate:
        meta_path = os.path.join(self.directory, meta_name)
        try:
            with open(meta_path, "r", encoding="utf-8") as fp:
                meta = json.load(fp)
        except json.JSONDecodeError as e:
            raise MalformedRecordError(meta_name, f"invalid JSON: {e}") from e
        except (OSError, UnicodeDecodeError) as e:
            raise MalformedRecordError(meta_name, f"unreadable metadata: {e}") from e

        record = FailedMessageRecord.from_metadata(meta, meta_file=meta_name, default_queue=self._default_queue)

        content_path = os.path.join(self.directory, record.content_file)
        try:
            with open(content_path, "rb") as fp:
                payload = fp.read()
        except FileNotFoundError as e:
            raise MalformedRecordError(meta_name, f"content file {record.content_file} does not exist") from e
        except OSError as e:
            raise MalformedRecordError(meta_name, f"content file {record.content_file} is unreadable: {e}") from e

        return RetryCandidate(record=record, meta_path=meta_path, content_path=content_path, payload=payload)

    def run(self, scanned: Optional[Tuple[List[RetryCandidate], List[RecordProblem]]] = None) -> RetryReport:
        """Resend every loadable record, deleting the pairs that went through.

        *scanned* is the result of an earlier ``scan()``; when omitted the
        directory is scanned here.
        """
        self.validate_directory()
        if self._failed_again is not None:
            self._failed_again.init_directory()

        candidates, problems = scanned if scanned is not None else self.scan()
        report = RetryReport(problems=list(problems))
        if candidates:
            recovery_logger.info(f"Found {len(candidates)} message(s) to retry from {os.path.abspath(self.directory)}")

        for candidate in candidates:
            record = candidate.record
            try:
                self._publisher.publish(candidate.payload, record.queue, correlation_id=record.correlation_id)
            except PublishError as e:
                report.failed += 1
                report.failed_message_ids.append(record.message_id)
                recovery_logger.error(
                    f"action: retry_message | result: fail | file: {record.content_file} | "
                    f"correlation_id: {record.correlation_id} | error: {e}"
                )
                self._handle_refail(candidate, e, report)
                continue

            report.retried += 1
            self._remove_pair(candidate, report)
            recovery_logger.info(
                f"action: retry_message | result: success | queue: {record.queue} | "
                f"correlation_id: {record.correlation_id} | file: {record.content_file}"
            )

        recovery_logger.info(
            f"action: retry_pass | result: done | retried: {report.retried} | "
            f"failed: {report.failed} | skipped: {report.skipped}"
        )
        return report

    def _handle_refail(self, candidate: RetryCandidate, error: PublishError, report: RetryReport) -> None:
        if self._failed_again is None:
            return

        record = candidate.record
        try:
            self._failed_again.record(candidate.payload, record.queue, record.correlation_id, record.index, error)
        except PersistenceError as e:
            report.persistence_errors.append(RecordProblem(os.path.basename(candidate.meta_path), str(e)))
            return

        if self._refail_policy is RefailPolicy.MOVE:
            self._remove_pair(candidate, report)

    @staticmethod
    def _remove_pair(candidate: RetryCandidate, report: RetryReport) -> None:
        # metadata first: an interrupted delete leaves a stray payload, never dangling metadata
        meta_file = os.path.basename(candidate.meta_path)
        try:
            remove_if_exists(candidate.meta_path)
            remove_if_exists(candidate.content_path)
        except OSError as e:
            recovery_logger.error(f"action: remove_retry_record | result: fail | file: {meta_file} | error: {e}")
            report.cleanup_errors.append(RecordProblem(meta_file, str(e)))


def _same_directory(a: str, b: str) -> bool:
    return os.path.realpath(str(a)) == os.path.realpath(str(b))
