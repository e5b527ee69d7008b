from __future__ import annotations

import fnmatch
import logging
import os
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from broker.rabbit_wrapper import ConsumedMessage
from orchestrator.config_init import OrchestrationConfig
from orchestrator.transformers import TransformError
from recovery.errors import PersistenceError, PublishError
from recovery.failed_message import sanitize_correlation_id
from recovery.failure_recorder import FailureRecorder
from recovery.file_store import atomic_write, is_temp_file
from recovery.publisher import Publisher

# (max_count, inactivity_timeout, browse) -> messages
MessageSource = Callable[[int, float, bool], Iterable[ConsumedMessage]]


@dataclass
class OrchestrationReport:
    consumed: int = 0
    transformed: int = 0
    transform_failed: int = 0
    published: int = 0
    publish_failed: int = 0
    saved: int = 0
    file_errors: int = 0

    @property
    def failures(self) -> int:
        return self.transform_failed + self.publish_failed + self.file_errors


class Orchestrator:
    """Runs CONSUME -> TRANSFORM -> PUBLISH over a working directory.

    Each stage hands its results to the next one as files, so a run can be
    split across invocations (see ``Mode``). A failing item is routed to the
    failed directory and never aborts the batch: transform failures are
    moved there as-is, publish failures are written as retryable
    ``.msg``/``.meta`` pairs.
    """

    def __init__(
        self,
        config: OrchestrationConfig,
        transformer,
        *,
        source: Optional[MessageSource] = None,
        publisher: Optional[Publisher] = None,
    ) -> None:
        self.config = config
        self._transformer = transformer
        self._source = source
        self._publisher = publisher
        self._recorder = FailureRecorder(config.failed_path)
        self.report = OrchestrationReport()

    def run(self) -> OrchestrationReport:
        self._setup_dirs()

        if self.config.mode.consumes:
            self.step_consume()
        if self.config.mode.publishes:
            self.step_transform()
            self.step_publish()

        logging.info(
            f"action: orchestrate | result: done | consumed: {self.report.consumed} | "
            f"transformed: {self.report.transformed} | transform_failed: {self.report.transform_failed} | "
            f"published: {self.report.published} | publish_failed: {self.report.publish_failed} | "
            f"file_errors: {self.report.file_errors}"
        )
        return self.report

    def _setup_dirs(self):
        if self.config.dry_run:
            return
        for path in (self.config.input_path, self.config.output_path, self.config.failed_path, self.config.processed_path):
            os.makedirs(path, exist_ok=True)
        logging.debug(f"Working directories ready under {self.config.work_dir}")

    # ------------------------------------------------------------------
    # Step 1: queue -> input directory
    # ------------------------------------------------------------------
    def step_consume(self):
        cfg = self.config
        logging.info(f"Consuming from queue '{cfg.source_queue}' into {cfg.input_path} "
                     f"(count: {cfg.message_count or 'unlimited'}, timeout: {cfg.consume_timeout}s)")
        if cfg.dry_run:
            logging.info(f"[DRY RUN] Would consume from {cfg.source_queue}")
            return
        if self._source is None:
            raise RuntimeError("No message source configured for the consume stage")

        for message in self._source(cfg.message_count, cfg.consume_timeout, cfg.browse_only):
            self.report.consumed += 1
            filename = self._input_filename(message, self.report.consumed)
            # a failed write stops the drain before this message is acked
            atomic_write(cfg.input_path, filename, message.body)
            logging.debug(f"Saved message {self.report.consumed} as {filename}")

        logging.info(f"Consumed {self.report.consumed} message(s)")

    def _input_filename(self, message: ConsumedMessage, n: int) -> str:
        """Pick a name in the input directory that no earlier message holds."""
        ext = self.config.file_extension
        if self.config.use_correlation and message.correlation_id:
            stem = sanitize_correlation_id(message.correlation_id)
            if not self._input_exists(stem + ext):
                return stem + ext
        else:
            stem = "message"

        while self._input_exists(f"{stem}_{n:06d}{ext}"):
            n += 1
        return f"{stem}_{n:06d}{ext}"

    def _input_exists(self, name: str) -> bool:
        return os.path.exists(os.path.join(self.config.input_path, name))

    # ------------------------------------------------------------------
    # Step 2: input directory -> output directory
    # ------------------------------------------------------------------
    def step_transform(self):
        cfg = self.config
        input_files = self._list_files(cfg.input_path)
        if not input_files:
            logging.warning(f"No files to transform in {cfg.input_path}")
            return

        logging.info(f"Processing {len(input_files)} file(s)")
        for name in input_files:
            if cfg.dry_run:
                logging.info(f"[DRY RUN] Would transform: {name}")
                continue

            input_file = os.path.join(cfg.input_path, name)
            try:
                with open(input_file, "rb") as fp:
                    transformed = self._transformer.transform(fp.read())
                atomic_write(cfg.output_path, name, transformed)
            except (TransformError, OSError) as e:
                self.report.transform_failed += 1
                logging.error(f"action: transform | result: fail | file: {name} | error: {e}")
                self._file_op("move_to_failed", name, os.replace, input_file, os.path.join(cfg.failed_path, name))
                continue

            self.report.transformed += 1
            if cfg.cleanup_input:
                self._file_op("remove_input", name, os.remove, input_file)
            else:
                self._file_op("move_to_processed", name, os.replace, input_file, os.path.join(cfg.processed_path, name))

        logging.info(f"Transform complete: {self.report.transformed} succeeded, {self.report.transform_failed} failed")

    # ------------------------------------------------------------------
    # Step 3: output directory -> destination queue
    # ------------------------------------------------------------------
    def step_publish(self):
        cfg = self.config
        output_files = self._list_files(cfg.output_path)
        if not output_files:
            logging.warning(f"No files to publish in {cfg.output_path}")
            return

        logging.info(f"Publishing {len(output_files)} file(s) to queue '{cfg.dest_queue}'")
        if cfg.dry_run:
            logging.info(f"[DRY RUN] Would publish {len(output_files)} file(s) to {cfg.dest_queue}")
            return
        if self._publisher is None:
            raise RuntimeError("No publisher configured for the publish stage")

        for index, name in enumerate(output_files):
            output_file = os.path.join(cfg.output_path, name)
            correlation_id = os.path.splitext(name)[0]
            try:
                with open(output_file, "rb") as fp:
                    payload = fp.read()
            except OSError as e:
                self.report.file_errors += 1
                logging.error(f"action: read_output | result: fail | file: {name} | error: {e}")
                continue

            try:
                self._publisher.publish(payload, cfg.dest_queue, correlation_id=correlation_id)
            except PublishError as e:
                self.report.publish_failed += 1
                logging.error(f"action: publish | result: fail | file: {name} | error: {e}")
                self._save_failed(output_file, payload, correlation_id, index, e)
                continue

            self.report.published += 1
            if cfg.cleanup_output:
                self._file_op("remove_output", name, os.remove, output_file)

        logging.info(f"Publish complete: {self.report.published} succeeded, {self.report.publish_failed} failed")

    def _save_failed(self, output_file: str, payload: bytes, correlation_id: str, index: int, error: PublishError):
        try:
            self._recorder.record(payload, self.config.dest_queue, correlation_id, index, error)
        except PersistenceError as e:
            # the output file stays where it is, so nothing is lost
            logging.error(f"action: save_failed_message | result: fail | file: {output_file} | error: {e}")
            return
        self.report.saved += 1
        self._file_op("remove_output", os.path.basename(output_file), os.remove, output_file)

    def _file_op(self, action: str, name: str, op, *paths: str) -> None:
        """Run a per-file move or delete; a failure is counted and logged, never raised."""
        try:
            op(*paths)
        except OSError as e:
            self.report.file_errors += 1
            logging.error(f"action: {action} | result: fail | file: {name} | error: {e}")

    def _list_files(self, directory: str) -> List[str]:
        if not os.path.isdir(directory):
            return []
        return sorted(
            name for name in os.listdir(directory)
            if os.path.isfile(os.path.join(directory, name))
            and not is_temp_file(name)
            and fnmatch.fnmatch(name, self.config.file_pattern)
            and name.endswith(self.config.file_extension)
        )
