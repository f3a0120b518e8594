from __future__ import annotations

import logging
import os
import select
import signal
import socket
import subprocess
import sys
import tempfile
import time
from collections import deque
from typing import Any, Callable, Iterable, TextIO

from .app_logging import log_with_fields
from .config import MAX_JOBS, MIN_JOBS
from .manifest import Manifest
from .models import Blob, BlobType, CompletionEvent, RunningTask
from .tools import ExternalToolError

CommandBuilder = Callable[[Blob], list[str]]


class ChildWatcher:
    """Collects child exits from SIGCHLD into a queue drained by the coordinator.

    The handler reaps every exited child with ``waitpid(-1, WNOHANG)``, so no
    other code may wait on children while the watcher is installed.
    """

    def __init__(self) -> None:
        self.events: deque[CompletionEvent] = deque()
        self._reader: socket.socket | None = None
        self._writer: socket.socket | None = None
        self._previous_handler: Any = None
        self._previous_wakeup_fd = -1

    def __enter__(self) -> "ChildWatcher":
        self._reader, self._writer = socket.socketpair()
        self._reader.setblocking(False)
        self._writer.setblocking(False)
        self._previous_wakeup_fd = signal.set_wakeup_fd(self._writer.fileno(), warn_on_full_buffer=False)
        self._previous_handler = signal.signal(signal.SIGCHLD, self._on_sigchld)
        return self

    def __exit__(self, *exc_info: object) -> None:
        previous = self._previous_handler if self._previous_handler is not None else signal.SIG_DFL
        signal.signal(signal.SIGCHLD, previous)
        signal.set_wakeup_fd(self._previous_wakeup_fd)
        for sock in (self._reader, self._writer):
            if sock is not None:
                sock.close()
        self._reader = None
        self._writer = None

    def _on_sigchld(self, signum: int, frame: object) -> None:
        self.reap()

    def reap(self) -> None:
        while True:
            try:
                pid, status = os.waitpid(-1, os.WNOHANG)
            except ChildProcessError:
                return
            if pid == 0:
                return
            self.events.append(CompletionEvent(pid, os.waitstatus_to_exitcode(status), time.monotonic()))

    def drain(self) -> list[CompletionEvent]:
        self.reap()
        drained: list[CompletionEvent] = []
        while self.events:
            drained.append(self.events.popleft())
        return drained

    def wait(self, timeout: float) -> None:
        if self.events or self._reader is None:
            return
        select.select([self._reader], [], [], timeout)
        while True:
            try:
                if not self._reader.recv(4096):
                    break
            except (BlockingIOError, InterruptedError):
                break


class StatusLine:
    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream if stream is not None else sys.stderr
        self.width = 0

    def update(self, text: str) -> None:
        padding = " " * max(0, self.width - len(text))
        self.stream.write("\r" + text + padding)
        self.stream.flush()
        self.width = len(text)

    def clear(self) -> None:
        if self.width:
            self.stream.write("\r" + " " * self.width + "\r")
            self.stream.flush()
            self.width = 0

    def finish(self) -> None:
        if self.width:
            self.stream.write("\n")
            self.stream.flush()
            self.width = 0


def _count_by_kind(blobs: Iterable[Blob]) -> dict[BlobType, int]:
    counts = {kind: 0 for kind in BlobType}
    for blob in blobs:
        counts[blob.kind] += 1
    return counts


def format_status(running: Iterable[Blob], pending: Iterable[Blob]) -> str:
    run_counts = _count_by_kind(running)
    pending_counts = _count_by_kind(pending)
    return (
        f"running: {sum(run_counts.values())} "
        f"(whole: {run_counts[BlobType.WHOLE]}, range: {run_counts[BlobType.RANGE]}), "
        f"pending: {sum(pending_counts.values())} "
        f"(whole: {pending_counts[BlobType.WHOLE]}, range: {pending_counts[BlobType.RANGE]})"
    )


class WorkerPool:
    def __init__(
        self,
        jobs: int,
        command_builder: CommandBuilder,
        manifest: Manifest,
        logger: logging.Logger,
        status: StatusLine | None = None,
        max_wait_seconds: float = 1.0,
    ) -> None:
        if not MIN_JOBS <= jobs <= MAX_JOBS:
            raise ValueError(f"jobs must be between {MIN_JOBS} and {MAX_JOBS}, got {jobs}")
        if max_wait_seconds <= 0:
            raise ValueError("max_wait_seconds must be > 0")
        self.jobs = jobs
        self.command_builder = command_builder
        self.manifest = manifest
        self.logger = logger
        self.status = status if status is not None else StatusLine()
        self.max_wait_seconds = max_wait_seconds
        self.queue: deque[Blob] = deque()
        self.running: dict[int, RunningTask] = {}
        self.completed = 0
        self.peak_running = 0

    def run(self, blobs: Iterable[Blob]) -> None:
        self.queue = deque(blobs)
        self.running = {}
        self.completed = 0
        started_at = time.monotonic()
        with ChildWatcher() as watcher:
            try:
                while self.queue or self.running:
                    self.reap(watcher.drain())
                    self.dispatch()
                    self.report()
                    if self.running:
                        watcher.wait(self.max_wait_seconds)
            except BaseException:
                self.terminate_running()
                raise
            finally:
                self.status.finish()
        log_with_fields(
            self.logger,
            logging.INFO,
            "run_finished",
            blobs=self.completed,
            elapsed_seconds=round(time.monotonic() - started_at, 3),
        )

    def reap(self, events: Iterable[CompletionEvent]) -> None:
        failed: list[tuple[RunningTask, int]] = []
        for event in events:
            task = self.running.pop(event.pid, None)
            if task is None:
                self._log(logging.DEBUG, "unknown_child_exited", pid=event.pid)
                continue
            task.process.returncode = event.returncode
            if event.returncode != 0:
                failed.append((task, event.returncode))
                continue
            task.stderr.close()

            blob = task.blob
            elapsed = event.finished_at - task.started_at
            self.manifest.record_completion(blob, elapsed)
            self.completed += 1
            self._log(
                logging.DEBUG,
                "blob_finished",
                blob_id=blob.blob_id,
                table=blob.qualified_name,
                kind=blob.kind.value,
                elapsed_seconds=round(elapsed, 3),
            )
        if failed:
            self._fail(failed)

    def _fail(self, failed: list[tuple[RunningTask, int]]) -> None:
        errors: list[ExternalToolError] = []
        for task, returncode in failed:
            blob = task.blob
            try:
                output = self._read_stderr(task)
            finally:
                task.stderr.close()
            self._log(
                logging.ERROR,
                "blob_failed",
                blob_id=blob.blob_id,
                table=blob.qualified_name,
                returncode=returncode,
                error=output,
            )
            errors.append(
                ExternalToolError(
                    f"{blob.kind.value} dump (#{blob.blob_id}) of {blob.schema}.{blob.table}",
                    output,
                    returncode,
                )
            )
        raise errors[0]

    def dispatch(self) -> None:
        while len(self.running) < self.jobs and self.queue:
            blob = self.queue.popleft()
            cmd = self.command_builder(blob)
            stderr = tempfile.TemporaryFile()
            started_at = time.monotonic()
            try:
                process = subprocess.Popen(
                    cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.DEVNULL,
                    stderr=stderr,
                    start_new_session=True,
                )
            except OSError as exc:
                stderr.close()
                raise ExternalToolError(f"spawn worker for #{blob.blob_id} ({blob.qualified_name})", str(exc)) from exc
            self.running[process.pid] = RunningTask(process=process, blob=blob, started_at=started_at, stderr=stderr)
            self.peak_running = max(self.peak_running, len(self.running))
            self._log(
                logging.DEBUG,
                "blob_started",
                blob_id=blob.blob_id,
                table=blob.qualified_name,
                kind=blob.kind.value,
                pid=process.pid,
            )

    def report(self) -> None:
        running = [task.blob for task in self.running.values()]
        self.status.update(format_status(running, self.queue))

    def terminate_running(self) -> None:
        for task in self.running.values():
            try:
                os.killpg(task.process.pid, signal.SIGTERM)
            except ProcessLookupError:
                pass
            task.stderr.close()
        self.running = {}

    def _log(self, level: int, event: str, **fields: object) -> None:
        self.status.clear()
        log_with_fields(self.logger, level, event, **fields)

    @staticmethod
    def _read_stderr(task: RunningTask) -> str:
        task.stderr.seek(0)
        return task.stderr.read().decode("utf-8", errors="replace").strip()
