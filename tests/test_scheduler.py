"""
Integration tests for the collection scheduler.

Tests fan-out, serialized aggregation, failure handling and the background loop,
with the mtr tracer replaced by test doubles.
"""

import threading
import time
from unittest.mock import Mock

import pytest

from collector.detector import ChangeDetector
from collector.errors import MalformedOutput, ProbeExecutionError
from collector.scheduler import MetricSink, Scheduler
from collector.statistics import compute_statistics
from config.parser import ExporterConfig
from exporter.metrics import MetricStore
from models import DestinationChange, Hop, RouteChange, Trace, TraceFailure


def make_config(*aliases):
    return ExporterConfig({
        'hosts': [{'name': f"{alias}.example", 'alias': alias} for alias in aliases],
        'cycles': 1,
    })


def make_trace(host, addresses):
    hops = [
        compute_statistics(Hop(index=i, address=address, latency_samples=[1000 + i]), sent=1)
        for i, address in enumerate(addresses)
    ]
    return Trace(target=host.name, alias=host.alias, hops=hops)


class RoutingTracer:
    """Tracer double returning a configurable route (or error) per alias."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []
        self._lock = threading.Lock()

    def run(self, host):
        with self._lock:
            self.calls.append(host.alias)
        outcome = self.routes[host.alias]
        if isinstance(outcome, Exception):
            raise outcome
        return make_trace(host, outcome)


class RecordingSink(MetricSink):
    """Sink double that records calls and checks they never overlap."""

    def __init__(self):
        self.traces = []
        self.failures = []
        self.changes = []
        self.threads = set()
        self._busy = False

    def _enter(self):
        assert not self._busy, "aggregation must be serialized"
        self._busy = True
        self.threads.add(threading.get_ident())
        time.sleep(0.001)
        self._busy = False

    def record_trace(self, trace):
        self._enter()
        self.traces.append(trace)

    def record_failure(self, failure):
        self._enter()
        self.failures.append(failure)

    def record_change(self, event):
        self._enter()
        self.changes.append(event)


class TestRunCycle:
    """Test a single collection cycle."""

    def test_every_host_traced_once(self):
        config = make_config("a", "b", "c")
        tracer = RoutingTracer({
            "a": ["10.0.0.1", "10.0.1.1"],
            "b": ["10.0.0.1", "10.0.2.1"],
            "c": ["10.0.0.1", "10.0.3.1"],
        })
        sink = RecordingSink()
        scheduler = Scheduler(config, sink, tracer=tracer)

        report = scheduler.run_cycle()

        assert sorted(tracer.calls) == ["a", "b", "c"]
        assert sorted(t.alias for t in report.traces) == ["a", "b", "c"]
        assert report.failures == []
        assert report.events == []
        assert len(sink.traces) == 3
        assert scheduler.cycle_count == 1

    def test_aggregation_runs_on_calling_thread(self):
        config = make_config("a", "b", "c", "d")
        tracer = RoutingTracer({alias: ["10.0.0.1"] for alias in "abcd"})
        sink = RecordingSink()

        Scheduler(config, sink, tracer=tracer).run_cycle()

        assert sink.threads == {threading.get_ident()}

    def test_traces_run_concurrently(self):
        """Test that all hosts are traced at the same time, one thread each."""
        aliases = ["a", "b", "c", "d", "e"]
        barrier = threading.Barrier(len(aliases), timeout=5)

        def run(host):
            barrier.wait()
            return make_trace(host, ["10.0.0.1"])

        tracer = Mock()
        tracer.run.side_effect = run

        report = Scheduler(make_config(*aliases), RecordingSink(), tracer=tracer).run_cycle()

        assert report.failures == []
        assert len(report.traces) == len(aliases)

    def test_failure_does_not_abort_cycle(self):
        config = make_config("good", "down", "garbled")
        tracer = RoutingTracer({
            "good": ["10.0.0.1", "10.0.0.2"],
            "down": ProbeExecutionError("mtr exited with status 1"),
            "garbled": MalformedOutput("line 1: truncated record 'h'"),
        })
        sink = RecordingSink()

        report = Scheduler(config, sink, tracer=tracer).run_cycle()

        assert [t.alias for t in report.traces] == ["good"]
        assert sorted(f.alias for f in report.failures) == ["down", "garbled"]
        assert all(isinstance(f, TraceFailure) for f in sink.failures)
        assert [t.alias for t in sink.traces] == ["good"]

    def test_unexpected_exception_is_a_failure(self):
        config = make_config("a", "b")
        tracer = RoutingTracer({
            "a": ["10.0.0.1"],
            "b": RuntimeError("boom"),
        })

        report = Scheduler(config, RecordingSink(), tracer=tracer).run_cycle()

        assert [t.alias for t in report.traces] == ["a"]
        assert [f.alias for f in report.failures] == ["b"]
        assert report.failures[0].error == "boom"


class TestChangeDetection:
    """Test that path changes flow from traces to the sink."""

    def test_changes_reported_on_second_cycle(self):
        config = make_config("a")
        tracer = RoutingTracer({"a": ["10.0.0.1", "10.0.0.2", "10.0.0.3"]})
        sink = RecordingSink()
        scheduler = Scheduler(config, sink, tracer=tracer)

        first = scheduler.run_cycle()
        tracer.routes["a"] = ["10.0.0.1", "10.0.0.2", "10.0.0.3", "10.0.0.4", "10.0.0.5"]
        second = scheduler.run_cycle()

        assert first.events == []
        assert len(second.events) == 2
        route_change = [e for e in second.events if isinstance(e, RouteChange)]
        destination_change = [e for e in second.events if isinstance(e, DestinationChange)]
        assert [e.hop_index for e in route_change] == [3]
        assert destination_change[0].previous == "10.0.0.3"
        assert destination_change[0].current == "10.0.0.5"
        assert sink.changes == second.events

    def test_failed_trace_leaves_route_state(self):
        config = make_config("a")
        detector = ChangeDetector()
        tracer = RoutingTracer({"a": ["10.0.0.1", "10.0.0.2"]})
        scheduler = Scheduler(config, RecordingSink(), tracer=tracer, detector=detector)

        scheduler.run_cycle()
        before = detector.route_state("a")

        tracer.routes["a"] = ProbeExecutionError("mtr to a.example timed out after 60s")
        report = scheduler.run_cycle()

        assert report.traces == []
        assert detector.route_state("a") == before

        # the next success is compared with the last successful route
        tracer.routes["a"] = ["10.0.0.1", "10.0.0.2"]
        assert scheduler.run_cycle().events == []


class TestWithMetricStore:
    """Test the scheduler feeding the real metric store."""

    def test_failure_counter_increments_once(self):
        config = make_config("ok", "down")
        tracer = RoutingTracer({
            "ok": ["10.0.0.1", "10.0.0.2"],
            "down": ProbeExecutionError("unreachable"),
        })
        store = MetricStore()
        scheduler = Scheduler(config, store, tracer=tracer)

        scheduler.run_cycle()

        assert store.failed.get(("down", "down.example")) == 1.0
        assert store.failed.get(("ok", "ok.example")) == 0.0
        assert store.sent.get(("ok", "ok.example", "0", "10.0.0.1")) == 1.0

        scheduler.run_cycle()

        assert store.failed.get(("down", "down.example")) == 2.0
        assert store.sent.get(("ok", "ok.example", "0", "10.0.0.1")) == 2.0

    def test_failure_keeps_published_values(self):
        config = make_config("a")
        tracer = RoutingTracer({"a": ["10.0.0.1"]})
        store = MetricStore()
        scheduler = Scheduler(config, store, tracer=tracer)

        scheduler.run_cycle()
        tracer.routes["a"] = MalformedOutput("garbled")
        scheduler.run_cycle()

        assert store.received.get(("a", "a.example", "0", "10.0.0.1")) == 1.0
        assert [t.alias for t in store.latest_traces()] == ["a"]


class TestBackgroundLoop:
    """Test start/stop of the collector thread."""

    def test_start_and_stop(self):
        config = make_config("a")
        tracer = RoutingTracer({"a": ["10.0.0.1"]})
        scheduler = Scheduler(config, RecordingSink(), tracer=tracer)

        scheduler.start()
        deadline = time.time() + 5
        while scheduler.cycle_count < 2 and time.time() < deadline:
            time.sleep(0.01)
        scheduler.stop(timeout=5)

        assert scheduler.cycle_count >= 2
        assert not scheduler.running
        assert not scheduler.collector_thread.is_alive()

    def test_stop_when_not_running(self):
        scheduler = Scheduler(make_config("a"), RecordingSink(), tracer=Mock())
        scheduler.stop()
        assert not scheduler.running

    def test_default_tracer_built_from_config(self):
        config = ExporterConfig({
            'hosts': [{'name': 'example.com', 'alias': 'example'}],
            'args': ['-n'],
            'cycles': 3,
            'mtr_binary': '/usr/sbin/mtr',
            'timeout': 10,
        })

        scheduler = Scheduler(config, RecordingSink())

        assert scheduler.tracer.build_command("example.com") == [
            "/usr/sbin/mtr", "--raw", "-c", "3", "example.com", "-n"
        ]
        assert scheduler.tracer.timeout == 10


@pytest.mark.parametrize("count", [1, 10, 50])
def test_one_message_per_host(count):
    """Test that every host yields exactly one trace or failure."""
    aliases = [f"h{i}" for i in range(count)]
    routes = {
        alias: (ProbeExecutionError("down") if i % 3 == 0 else ["10.0.0.1", "10.0.0.2"])
        for i, alias in enumerate(aliases)
    }

    report = Scheduler(make_config(*aliases), RecordingSink(), tracer=RoutingTracer(routes)).run_cycle()

    seen = sorted([t.alias for t in report.traces] + [f.alias for f in report.failures])
    assert seen == sorted(aliases)
