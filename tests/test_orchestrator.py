"""Tests for the consume -> transform -> publish pipeline."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List

import pytest

from broker.rabbit_wrapper import ConnectionConfig, ConsumedMessage
from orchestrator.config_init import Mode, OrchestrationConfig
from orchestrator.orchestrator import Orchestrator
from orchestrator.transformers import JsonCompactTransformer, PassThroughTransformer, get_transformer
from recovery.retry_loader import RetryLoader


class FakeQueue:
    def __init__(self, messages: List[ConsumedMessage]) -> None:
        self.messages = messages
        self.calls = []

    def drain(self, max_count: int, inactivity_timeout: float, browse: bool):
        self.calls.append((max_count, inactivity_timeout, browse))
        limit = max_count or len(self.messages)
        yield from self.messages[:limit]


def _config(tmp_path: Path, **overrides) -> OrchestrationConfig:
    values = dict(
        connection=ConnectionConfig(),
        source_queue="orders.in",
        dest_queue="orders.out",
        work_dir=str(tmp_path / "work"),
    )
    values.update(overrides)
    return OrchestrationConfig(**values)


def _messages(*pairs) -> List[ConsumedMessage]:
    return [ConsumedMessage(body=body, correlation_id=cid, delivery_tag=i + 1) for i, (cid, body) in enumerate(pairs)]


def test_full_pipeline_moves_messages_to_the_destination_queue(tmp_path: Path, broker) -> None:
    source = FakeQueue(_messages(("order-1", b'{"id": 1}'), ("order-2", b'{"id": 2}')))
    config = _config(tmp_path)

    report = Orchestrator(config, PassThroughTransformer(), source=source.drain, publisher=broker).run()

    assert report.consumed == 2
    assert report.transformed == 2
    assert report.published == 2
    assert report.failures == 0
    assert broker.messages_on("orders.out") == [("order-1", b'{"id": 1}'), ("order-2", b'{"id": 2}')]
    assert list(Path(config.input_path).iterdir()) == []
    assert list(Path(config.output_path).iterdir()) == []
    assert source.calls == [(0, 10.0, False)]


def test_consume_names_files_by_correlation_id_or_sequence(tmp_path: Path) -> None:
    source = FakeQueue(_messages(("a/b", b"1"), (None, b"2"), ("a/b", b"3")))
    config = _config(tmp_path, mode=Mode.CONSUME)

    Orchestrator(config, PassThroughTransformer(), source=source.drain).run()

    names = sorted(p.name for p in Path(config.input_path).iterdir())
    assert names == ["a_b.txt", "a_b_000003.txt", "message_000002.txt"]
    assert (Path(config.input_path) / "a_b_000003.txt").read_bytes() == b"3"


def test_consume_without_correlation_uses_generated_names(tmp_path: Path) -> None:
    source = FakeQueue(_messages(("x", b"1")))
    config = _config(tmp_path, mode=Mode.CONSUME, use_correlation=False, file_extension=".json")

    Orchestrator(config, PassThroughTransformer(), source=source.drain).run()

    assert [p.name for p in Path(config.input_path).iterdir()] == ["message_000001.json"]


def test_transform_failures_are_moved_to_the_failed_dir(tmp_path: Path, broker) -> None:
    config = _config(tmp_path, mode=Mode.PUBLISH, transformer="JSON_COMPACT")
    input_dir = Path(config.input_path)
    input_dir.mkdir(parents=True)
    (input_dir / "good.txt").write_bytes(b'{ "b": 2, "a": 1 }')
    (input_dir / "bad.txt").write_bytes(b"not json")

    report = Orchestrator(config, get_transformer(config.transformer), publisher=broker).run()

    assert report.transformed == 1
    assert report.transform_failed == 1
    assert (Path(config.failed_path) / "bad.txt").read_bytes() == b"not json"
    assert broker.messages_on("orders.out") == [("good", b'{"a":1,"b":2}')]


def test_inputs_are_kept_in_processed_dir_without_cleanup(tmp_path: Path, broker) -> None:
    config = _config(tmp_path, mode=Mode.PUBLISH, cleanup_input=False, cleanup_output=False)
    input_dir = Path(config.input_path)
    input_dir.mkdir(parents=True)
    (input_dir / "m.txt").write_bytes(b"m")

    Orchestrator(config, PassThroughTransformer(), publisher=broker).run()

    assert (Path(config.processed_path) / "m.txt").exists()
    assert (Path(config.output_path) / "m.txt").exists()


def test_only_matching_files_are_processed(tmp_path: Path, broker) -> None:
    config = _config(tmp_path, mode=Mode.PUBLISH, file_pattern="order*")
    input_dir = Path(config.input_path)
    input_dir.mkdir(parents=True)
    (input_dir / "order-1.txt").write_bytes(b"1")
    (input_dir / "invoice-1.txt").write_bytes(b"2")
    (input_dir / "order-2.csv").write_bytes(b"3")

    Orchestrator(config, PassThroughTransformer(), publisher=broker).run()

    assert broker.messages_on("orders.out") == [("order-1", b"1")]
    assert sorted(p.name for p in input_dir.iterdir()) == ["invoice-1.txt", "order-2.csv"]


def test_publish_failures_become_retryable_records(tmp_path: Path, broker) -> None:
    source = FakeQueue(_messages(("order-1", b'{"id": 1}')))
    config = _config(tmp_path)
    broker.unreachable_queues.add("orders.out")

    report = Orchestrator(config, PassThroughTransformer(), source=source.drain, publisher=broker).run()

    assert report.publish_failed == 1
    assert report.saved == 1
    assert list(Path(config.output_path).iterdir()) == []
    meta = json.loads(next(Path(config.failed_path).glob("*.meta")).read_text(encoding="utf-8"))
    assert meta["queue"] == "orders.out"
    assert meta["correlationId"] == "order-1"

    broker.unreachable_queues.clear()
    retry = RetryLoader(config.failed_path, broker).run()

    assert retry.retried == 1
    assert broker.messages_on("orders.out") == [("order-1", b'{"id": 1}')]


def test_dry_run_touches_nothing(tmp_path: Path, broker) -> None:
    source = FakeQueue(_messages(("order-1", b"1")))
    config = _config(tmp_path, dry_run=True)

    report = Orchestrator(config, PassThroughTransformer(), source=source.drain, publisher=broker).run()

    assert report.consumed == 0
    assert source.calls == []
    assert broker.sent == []
    assert not Path(config.work_dir).exists()


def test_consume_stage_requires_a_source(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError):
        Orchestrator(_config(tmp_path, mode=Mode.CONSUME), PassThroughTransformer()).run()


def test_json_compact_transformer() -> None:
    assert JsonCompactTransformer().transform('{"k": "é", "a": [1, 2]}'.encode("utf-8")) == '{"a":[1,2],"k":"é"}'.encode("utf-8")


def test_unknown_transformer() -> None:
    with pytest.raises(ValueError):
        get_transformer("XML")


def test_mode_stages() -> None:
    assert Mode.parse("Both").consumes and Mode.BOTH.publishes
    assert Mode.CONSUME.consumes and not Mode.CONSUME.publishes
    assert Mode.PUBLISH.publishes and not Mode.PUBLISH.consumes
    with pytest.raises(ValueError):
        Mode.parse("sideways")


def _failing_remove(monkeypatch: pytest.MonkeyPatch, failing_path: Path) -> None:
    real_remove = os.remove

    def remove(path, *args, **kwargs):
        if Path(path) == failing_path:
            raise PermissionError(13, "Permission denied", str(path))
        return real_remove(path, *args, **kwargs)

    monkeypatch.setattr(os, "remove", remove)


def test_output_cleanup_error_does_not_stop_publishing(tmp_path: Path, broker, monkeypatch: pytest.MonkeyPatch) -> None:
    config = _config(tmp_path, mode=Mode.PUBLISH)
    input_dir = Path(config.input_path)
    input_dir.mkdir(parents=True)
    (input_dir / "a.txt").write_bytes(b"a")
    (input_dir / "b.txt").write_bytes(b"b")
    _failing_remove(monkeypatch, Path(config.output_path) / "a.txt")

    report = Orchestrator(config, PassThroughTransformer(), publisher=broker).run()

    assert broker.messages_on("orders.out") == [("a", b"a"), ("b", b"b")]
    assert report.published == 2
    assert report.file_errors == 1
    assert report.failures == 1
    assert [p.name for p in Path(config.output_path).iterdir()] == ["a.txt"]


def test_input_cleanup_error_does_not_stop_transforming(tmp_path: Path, broker, monkeypatch: pytest.MonkeyPatch) -> None:
    config = _config(tmp_path, mode=Mode.PUBLISH)
    input_dir = Path(config.input_path)
    input_dir.mkdir(parents=True)
    (input_dir / "a.txt").write_bytes(b"a")
    (input_dir / "b.txt").write_bytes(b"b")
    _failing_remove(monkeypatch, input_dir / "a.txt")

    report = Orchestrator(config, PassThroughTransformer(), publisher=broker).run()

    assert report.transformed == 2
    assert report.file_errors == 1
    assert broker.messages_on("orders.out") == [("a", b"a"), ("b", b"b")]
    assert [p.name for p in input_dir.iterdir()] == ["a.txt"]


def test_consume_does_not_overwrite_files_from_an_earlier_run(tmp_path: Path) -> None:
    config = _config(tmp_path, mode=Mode.CONSUME)

    Orchestrator(config, PassThroughTransformer(), source=FakeQueue(_messages((None, b"first"))).drain).run()
    Orchestrator(config, PassThroughTransformer(), source=FakeQueue(_messages((None, b"second"))).drain).run()

    input_dir = Path(config.input_path)
    assert sorted(p.name for p in input_dir.iterdir()) == ["message_000001.txt", "message_000002.txt"]
    assert (input_dir / "message_000001.txt").read_bytes() == b"first"
    assert (input_dir / "message_000002.txt").read_bytes() == b"second"
