"""
Collection scheduler for the MTR exporter.

Each cycle starts one worker thread per configured host. Workers only run
mtr and compute statistics; they hand their result to a queue that is drained
by the thread running the cycle. That thread is the sole owner of the change
detector and the only writer of the metric sink.
"""

import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import List, Optional, Union

from collector.detector import ChangeDetector
from collector.errors import TraceError
from collector.tracer import MtrTracer
from config.parser import ExporterConfig
from models import ChangeEvent, CycleReport, Host, Trace, TraceFailure


logger = logging.getLogger(__name__)


class MetricSink(ABC):
    """Receiver of finished traces, failures and change events."""

    @abstractmethod
    def record_trace(self, trace: Trace) -> None:
        """Publish per-hop statistics of a successful trace."""
        raise NotImplementedError

    @abstractmethod
    def record_failure(self, failure: TraceFailure) -> None:
        """Count a failed trace."""
        raise NotImplementedError

    @abstractmethod
    def record_change(self, event: ChangeEvent) -> None:
        """Count a route or destination change."""
        raise NotImplementedError


class Scheduler:
    """
    Drives collection cycles over all configured hosts.

    Attributes:
        config: Exporter configuration (read-only)
        tracer: Runs mtr for one host
        sink: Receives aggregated results
        detector: Route and destination change detector
    """

    def __init__(
        self,
        config: ExporterConfig,
        sink: MetricSink,
        tracer: Optional[MtrTracer] = None,
        detector: Optional[ChangeDetector] = None
    ):
        """
        Initialize Scheduler.

        Args:
            config: ExporterConfig with hosts and mtr settings
            sink: MetricSink receiving results
            tracer: Tracer to use (default: built from config)
            detector: Change detector to use (default: a fresh one)
        """
        self.config = config
        self.sink = sink
        self.tracer = tracer or MtrTracer(
            mtr_binary=config.mtr_binary,
            cycles=config.cycles,
            args=config.arguments,
            timeout=config.timeout
        )
        self.detector = detector or ChangeDetector()
        self.cycle_count = 0

        # Thread control
        self.running = False
        self.collector_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        logger.info(f"Scheduler initialized with {len(config.hosts)} hosts")

    def _worker(self, worker_id: int, host: Host, results: "queue.Queue[Union[Trace, TraceFailure]]") -> None:
        """
        Trace one host and put exactly one message on the results queue.
        """
        logger.info(f"worker {worker_id} processing job {host.name} aliased as {host.alias}")
        try:
            trace = self.tracer.run(host)
        except TraceError as e:
            logger.error(f"worker {worker_id} failed job {host.name} aliased as {host.alias}: {e}")
            results.put(TraceFailure(target=host.name, alias=host.alias, error=str(e)))
        except Exception as e:
            logger.error(
                f"worker {worker_id} crashed on job {host.name} aliased as {host.alias}: {e}",
                exc_info=True
            )
            results.put(TraceFailure(target=host.name, alias=host.alias, error=str(e)))
        else:
            logger.info(f"worker {worker_id} finished job {host.name} aliased as {host.alias}")
            results.put(trace)

    def _aggregate(self, message: Union[Trace, TraceFailure], report: CycleReport) -> None:
        if isinstance(message, TraceFailure):
            self.sink.record_failure(message)
            report.failures.append(message)
            return

        self.sink.record_trace(message)
        events = self.detector.observe(message)
        for event in events:
            self.sink.record_change(event)
        report.traces.append(message)
        report.events.extend(events)

    def run_cycle(self) -> CycleReport:
        """
        Trace every host concurrently and aggregate the results.

        Results are processed one at a time in completion order. The cycle
        returns once every worker has reported and been joined.

        Returns:
            CycleReport with successful traces, failures and change events
        """
        hosts = self.config.hosts
        results: "queue.Queue[Union[Trace, TraceFailure]]" = queue.Queue()
        workers: List[threading.Thread] = []

        for worker_id, host in enumerate(hosts):
            worker = threading.Thread(
                target=self._worker,
                args=(worker_id, host, results),
                name=f"TraceWorker-{host.alias}",
                daemon=True
            )
            worker.start()
            workers.append(worker)

        report = CycleReport()
        for _ in range(len(workers)):
            self._aggregate(results.get(), report)

        for worker in workers:
            worker.join()

        self.cycle_count += 1
        logger.info(
            f"Cycle {self.cycle_count} complete: {len(report.traces)} traces, "
            f"{len(report.failures)} failures, {len(report.events)} path changes"
        )
        return report

    def run(self) -> None:
        """
        Run collection cycles until stop() is called (blocking).
        """
        logger.info("Collector loop started")

        while self.running:
            try:
                self.run_cycle()
            except Exception as e:
                logger.error(f"Error in collection cycle: {e}", exc_info=True)
                self._stop_event.wait(1)

            if self.config.interval > 0:
                self._stop_event.wait(self.config.interval)

        logger.info("Collector loop stopped")

    def start(self) -> None:
        """
        Start collecting in a background thread.
        """
        if self.running:
            logger.warning("Scheduler already running")
            return

        logger.info("Starting Scheduler")
        self.running = True
        self._stop_event.clear()
        self.collector_thread = threading.Thread(
            target=self.run,
            name="CollectorThread",
            daemon=True
        )
        self.collector_thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop the background collector after its current cycle.

        Args:
            timeout: Seconds to wait for the collector thread (default: forever)
        """
        if not self.running:
            logger.warning("Scheduler not running")
            return

        logger.info("Stopping Scheduler")
        self.running = False
        self._stop_event.set()

        if self.collector_thread and self.collector_thread.is_alive():
            self.collector_thread.join(timeout=timeout)

        logger.info("Scheduler stopped")
