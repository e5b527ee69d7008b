from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional

from publisher.config_init import PublishConfig
from recovery.errors import PersistenceError, PublishError, RecoveryConfigError
from recovery.failure_recorder import FailureRecorder
from recovery.publisher import Publisher
from recovery.retry_loader import RetryLoader, RetryReport

EXIT_OK = 0
EXIT_FAILURE = 1


@dataclass
class PublishSummary:
    published: int = 0
    failed: int = 0
    saved: int = 0
    lost: int = 0
    failed_message_ids: List[str] = field(default_factory=list)
    retry: Optional[RetryReport] = None

    @property
    def total_failed(self) -> int:
        return self.failed + (self.retry.failed if self.retry else 0)


class PublishCommand:
    """Publishes new content and resends previously failed messages.

    Retry candidates go first, then ``count`` copies of the new content.
    Every message that the broker refuses is written to the failed
    directory (when one is configured) so a later run can pick it up.
    """

    def __init__(self, config: PublishConfig, publisher: Publisher) -> None:
        self.config = config
        self._publisher = publisher
        self.summary = PublishSummary()

        self._recorder = FailureRecorder(config.failed_dir) if config.failed_dir else None
        self._retry_loader = None
        if config.retry_dir:
            self._retry_loader = RetryLoader(
                config.retry_dir,
                publisher,
                failed_again_dir=config.failed_dir,
                refail_policy=config.refail_policy,
                default_queue=config.queue,
            )

    def run(self) -> int:
        try:
            if self._recorder:
                self._recorder.init_directory()
            if self._retry_loader:
                self._retry_loader.validate_directory()
        except RecoveryConfigError as e:
            logging.error(f"action: publish | result: fail | error: {e}")
            return EXIT_FAILURE

        try:
            content = self._resolve_content()
        except OSError as e:
            logging.error(f"action: read_input | result: fail | file: {self.config.input_file} | error: {e}")
            return EXIT_FAILURE

        scanned = self._retry_loader.scan() if self._retry_loader else None
        pending_retries = len(scanned[0]) if scanned else 0

        if not content and pending_retries == 0:
            logging.error("action: publish | result: fail | error: no message content provided and no retry messages found")
            return EXIT_FAILURE

        if self._retry_loader:
            self.summary.retry = self._retry_loader.run(scanned)

        if content:
            self._publish_new(content)

        self._log_summary()
        return EXIT_OK if self.summary.total_failed == 0 else EXIT_FAILURE

    def _resolve_content(self) -> Optional[bytes]:
        if self.config.input_file:
            with open(self.config.input_file, "rb") as fp:
                return fp.read()
        if self.config.message:
            return self.config.message.encode("utf-8")
        return None

    def _publish_new(self, content: bytes) -> None:
        count = self.config.count
        batch_stamp = int(time.time() * 1000)

        for i in range(count):
            correlation_id = self.config.correlation_id
            if correlation_id is None and count > 1:
                correlation_id = f"msg-{batch_stamp}-{i}"

            try:
                self._publisher.publish(content, self.config.queue, correlation_id=correlation_id)
            except PublishError as e:
                self.summary.failed += 1
                self.summary.failed_message_ids.append(correlation_id if correlation_id is not None else str(i))
                logging.error(f"action: publish | result: fail | message: {i + 1}/{count} | error: {e}")
                self._save_failed(content, correlation_id, i, e)
                continue

            self.summary.published += 1
            suffix = f" [{i + 1}/{count}]" if count > 1 else ""
            logging.info(f"Published message to queue '{self.config.queue}'{suffix}")

    def _save_failed(self, content: bytes, correlation_id: Optional[str], index: int, error: PublishError) -> None:
        if self._recorder is None:
            return
        try:
            self._recorder.record(content, self.config.queue, correlation_id, index, error)
            self.summary.saved += 1
        except PersistenceError as e:
            self.summary.lost += 1
            logging.error(f"action: save_failed_message | result: fail | error: {e} | cause: {e.__cause__}")

    def _log_summary(self):
        retry = self.summary.retry
        if retry is not None and retry.total:
            logging.info(f"Retry results: {retry.retried}/{retry.retried + retry.failed} succeeded")
            if retry.skipped:
                logging.warning(f"{retry.skipped} malformed retry record(s) skipped")
            if retry.cleanup_errors:
                logging.warning(f"{len(retry.cleanup_errors)} retry record(s) could not be removed from {self.config.retry_dir}")

        published = self.summary.published + (retry.retried if retry else 0)
        if self.summary.total_failed == 0:
            logging.info(f"Successfully published {published} message(s)")
            return

        logging.warning(f"Published {published} message(s), {self.summary.total_failed} failed")
        if self.config.failed_dir:
            logging.info(f"Failed messages saved to: {self.config.failed_dir}")
        if self.summary.lost:
            logging.error(f"{self.summary.lost} failed message(s) could not be saved and are lost")
