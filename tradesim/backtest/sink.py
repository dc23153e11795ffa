"""
Asynchronous event file sink.

Buffers the event stream of one run in memory (the simulation never waits on
IO) and hands finished files to a fixed worker pool. Writes are fire and
forget: a failure is logged and counted, never raised into the simulation or
to other listeners. `shutdown()` drains the pool with a bounded wait.

Layout:
    <output_dir>/<run_name>/<kind>.jsonl     one JSON object per event
"""

import json
import logging
import threading
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Dict, List, Optional, Set

from tradesim.backtest.events import Event, EventKind

logger = logging.getLogger(__name__)


class EventFileSink:
    """
    Example:
        sink = EventFileSink("results", max_workers=4)
        bus.subscribe(sink.listener("run-001"))
        engine.run()
        sink.shutdown()
    """

    def __init__(self, output_dir: str | Path, max_workers: int = 4, shutdown_timeout: float = 30.0):
        self.output_dir = Path(output_dir)
        self.shutdown_timeout = shutdown_timeout
        self._executor: Optional[ThreadPoolExecutor] = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="event_sink_"
        )
        self._futures: Set[Future] = set()
        self._lock = threading.Lock()

        # Telemetry
        self.files_written = 0
        self.write_failures = 0

    def listener(self, run_name: str) -> "RunRecorder":
        """Per-run listener; flushes its files when the run completes."""
        return RunRecorder(self, run_name)

    def submit(self, run_name: str, kind: EventKind, records: List[dict]) -> None:
        if self._executor is None:
            logger.warning(f"Sink already shut down, dropping {kind.value} events for {run_name}")
            return
        path = self.output_dir / run_name / f"{kind.value.lower()}.jsonl"
        future = self._executor.submit(self._write, path, records)
        with self._lock:
            self._futures.add(future)
        future.add_done_callback(self._discard)

    def _discard(self, future: Future) -> None:
        with self._lock:
            self._futures.discard(future)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._futures)

    def _write(self, path: Path, records: List[dict]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                for record in records:
                    f.write(json.dumps(record) + "\n")
        except OSError as e:
            with self._lock:
                self.write_failures += 1
            logger.error(f"Failed to write {path}: {e}")
            return
        with self._lock:
            self.files_written += 1
        logger.debug(f"Wrote {len(records)} events to {path}")

    def shutdown(self, timeout: Optional[float] = None) -> bool:
        """
        Drain pending writes. Returns False if the wait timed out.
        """
        if self._executor is None:
            return True
        timeout = self.shutdown_timeout if timeout is None else timeout
        with self._lock:
            pending = list(self._futures)
        done, not_done = wait(pending, timeout=timeout)
        with self._lock:
            self._futures.difference_update(done)
        if not_done:
            logger.warning(f"Sink shutdown timed out with {len(not_done)} writes pending")
        self._executor.shutdown(wait=False, cancel_futures=False)
        self._executor = None
        logger.info(
            f"Sink shutdown complete ({self.files_written} files, {self.write_failures} failures)"
        )
        return not not_done


class RunRecorder:
    """Collects one run's events by kind and submits them on completion."""

    def __init__(self, sink: EventFileSink, run_name: str):
        self.sink = sink
        self.run_name = run_name
        self._records: Dict[EventKind, List[dict]] = defaultdict(list)

    def __call__(self, event: Event) -> None:
        self._records[event.kind].append(event.to_record())
        if event.kind == EventKind.SIMULATION:
            self.flush()

    def flush(self) -> None:
        for kind, records in self._records.items():
            self.sink.submit(self.run_name, kind, records)
        self._records = defaultdict(list)
