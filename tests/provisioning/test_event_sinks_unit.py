"""Unit tests for event sinks and metrics."""

import asyncio
import json
import logging

import pytest

from src.provisioning.events import (
    CallbackEventSink,
    CompositeEventSink,
    EventSinkType,
    EventType,
    LoggingEventSink,
    MetricsEventSink,
    NullEventSink,
    ProvisioningEvent,
    ProvisioningMetrics,
    QueueEventSink,
    create_event_sink,
)


def run_async(coro):
    return asyncio.run(coro)


def make_event(event_type=EventType.LOG, sequence=1, text="line", **kwargs):
    return ProvisioningEvent(
        event_type=event_type,
        run_id="run-1",
        sequence=sequence,
        text=text,
        **kwargs,
    )


def stage_event(to_stage, progress, sequence=1):
    return make_event(
        EventType.STAGE,
        sequence=sequence,
        text=to_stage,
        details={"from_stage": "idle", "to_stage": to_stage, "progress": progress},
    )


def result_event(success, stage=None):
    details = {"success": success, "duration_seconds": 12.5}
    if stage:
        details["stage"] = stage
    return make_event(EventType.RESULT, text="done", details=details)


class TestProvisioningEvent:
    def test_sequence_starts_at_one(self):
        with pytest.raises(ValueError):
            make_event(sequence=0)

    def test_progress_only_for_stage_events(self):
        assert stage_event("cleanup", 90).progress == 90
        assert make_event().progress is None

    def test_to_log_dict_flattens_details(self):
        log_dict = stage_event("fetching_repo", 40).to_log_dict()

        assert log_dict["event_type"] == "stage"
        assert log_dict["to_stage"] == "fetching_repo"
        assert log_dict["progress"] == 40
        assert "stream" not in log_dict

    def test_to_json(self):
        payload = json.loads(make_event(text="hello", stream="stdout").to_json())

        assert payload["event_type"] == "log"
        assert payload["text"] == "hello"
        assert payload["stream"] == "stdout"


class TestCallbackEventSink:
    def test_sync_callback_receives_text(self):
        lines = []
        sink = CallbackEventSink(lines.append)

        run_async(sink.emit(make_event(text="Cloning...")))

        assert lines == ["Cloning..."]

    def test_async_callback_is_awaited(self):
        lines = []

        async def on_line(text):
            lines.append(text)

        run_async(CallbackEventSink(on_line).emit(make_event(text="x")))

        assert lines == ["x"]

    def test_stage_events_skipped_by_default(self):
        lines = []

        run_async(CallbackEventSink(lines.append).emit(stage_event("cleanup", 90)))
        run_async(
            CallbackEventSink(lines.append, include_stages=True).emit(stage_event("cleanup", 90))
        )

        assert lines == ["cleanup"]


class TestQueueEventSink:
    def test_iterate_yields_until_close(self):
        async def scenario():
            sink = QueueEventSink()
            await sink.emit(make_event(sequence=1, text="a"))
            await sink.emit(make_event(sequence=2, text="b"))
            await sink.close()
            return [event.text async for event in sink.iterate()]

        assert run_async(scenario()) == ["a", "b"]

    def test_emit_after_close_is_dropped(self):
        async def scenario():
            sink = QueueEventSink()
            await sink.close()
            await sink.close()
            await sink.emit(make_event())
            return sink.queue.qsize(), sink.closed

        assert run_async(scenario()) == (1, True)


class TestLoggingEventSink:
    @pytest.mark.parametrize(
        "event,level",
        [
            (make_event(), logging.DEBUG),
            (stage_event("cleanup", 90), logging.INFO),
            (make_event(EventType.WARNING, text="Warning: Could not clean up"), logging.WARNING),
            (result_event(True), logging.INFO),
            (result_event(False, stage="fetching_repo"), logging.ERROR),
        ],
    )
    def test_levels(self, event, level, caplog):
        caplog.set_level(logging.DEBUG, logger="provisioning.events.test")

        run_async(LoggingEventSink("provisioning.events.test").emit(event))

        assert caplog.records[-1].levelno == level
        assert caplog.records[-1].run_id == "run-1"


class FailingSink(NullEventSink):
    async def emit(self, event):
        raise RuntimeError("boom")

    async def close(self):
        raise RuntimeError("boom")


class TestCompositeEventSink:
    def test_one_failing_child_does_not_stop_others(self):
        received = []
        composite = CompositeEventSink([FailingSink(), CallbackEventSink(received.append)])

        run_async(composite.emit(make_event(text="still delivered")))
        run_async(composite.close())

        assert received == ["still delivered"]

    def test_add_sink(self):
        composite = CompositeEventSink()
        composite.add_sink(NullEventSink())

        assert len(composite.sinks) == 1


class TestCreateEventSink:
    def test_default_is_logging(self):
        assert isinstance(create_event_sink(), LoggingEventSink)

    def test_combines_extra_and_configured_sinks(self):
        queue_sink = QueueEventSink()

        sink = create_event_sink(
            [EventSinkType.LOGGING, EventSinkType.METRICS],
            extra_sinks=[queue_sink],
        )

        assert isinstance(sink, CompositeEventSink)
        kinds = [type(child) for child in sink.sinks]
        assert kinds == [QueueEventSink, LoggingEventSink, MetricsEventSink]


class TestMetricsEventSink:
    def sample(self, metrics, name, labels=None):
        return metrics.registry.get_sample_value(name, labels or {})

    def test_counts_stages_lines_and_results(self):
        metrics = ProvisioningMetrics()
        sink = MetricsEventSink(metrics)

        async def scenario():
            await sink.emit(stage_event("fetching_repo", 40))
            await sink.emit(make_event(stream="stdout"))
            await sink.emit(make_event(stream="stderr"))
            await sink.emit(make_event(stream="stderr"))
            await sink.emit(make_event())
            await sink.emit(result_event(False, stage="fetching_repo"))

        run_async(scenario())

        assert self.sample(metrics, "provisioning_stage_transitions_total", {"stage": "fetching_repo"}) == 1
        assert self.sample(metrics, "provisioning_output_lines_total", {"stream": "stderr"}) == 2
        assert self.sample(metrics, "provisioning_output_lines_total", {"stream": "stdout"}) == 1
        assert self.sample(metrics, "provisioning_runs_total", {"result": "failure"}) == 1
        assert self.sample(metrics, "provisioning_failures_total", {"stage": "fetching_repo"}) == 1
        assert self.sample(metrics, "provisioning_run_duration_seconds_count") == 1

    def test_separate_instances_do_not_share_registry(self):
        first = ProvisioningMetrics()
        second = ProvisioningMetrics()
        first.record_run(success=True)

        assert self.sample(second, "provisioning_runs_total", {"result": "success"}) is None

    def test_write_textfile(self, tmp_path):
        metrics = ProvisioningMetrics()
        metrics.record_run(success=True, duration_seconds=3.0)
        target = tmp_path / "provisioning.prom"

        metrics.write_textfile(str(target))

        assert 'provisioning_runs_total{result="success"} 1.0' in target.read_text()
        assert b"provisioning_run_duration_seconds" in metrics.render()
