from __future__ import annotations

import codecs
import logging
import subprocess
import threading
from typing import Callable, Dict, List, Optional, Sequence

from ..context import AgentContext


OutputCallback = Callable[[str], None]
ArgvFactory = Callable[[str], Sequence[str]]

_READ_SIZE = 1024


def docker_logs_argv(container_id: str) -> List[str]:
    return ["docker", "logs", "-f", "--tail", "100", container_id]


def docker_terminal_argv(container_id: str) -> List[str]:
    return ["docker", "exec", "-i", container_id, "/bin/sh"]


class ManagedProcess:
    """A child process with a supervised reader thread and explicit start/stop.

    stdout and stderr are merged; output is handed to `on_output` as text in
    the order it arrives. `stop()` terminates the child and joins the reader,
    so nothing calls `on_output` after it returns.
    """

    def __init__(
        self,
        argv: Sequence[str],
        on_output: OutputCallback,
        *,
        log: logging.Logger,
        interactive: bool = False,
    ) -> None:
        self.argv = list(argv)
        self.on_output = on_output
        self.log = log
        self.interactive = interactive
        self._proc: Optional[subprocess.Popen[bytes]] = None
        self._reader: Optional[threading.Thread] = None
        self._write_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def start(self) -> None:
        if self._proc is not None:
            raise RuntimeError("process already started")
        self._proc = subprocess.Popen(
            self.argv,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.PIPE if self.interactive else subprocess.DEVNULL,
            bufsize=0,
        )
        self._reader = threading.Thread(target=self._pump, name=f"reader-{self._proc.pid}", daemon=True)
        self._reader.start()

    def _pump(self) -> None:
        assert self._proc is not None and self._proc.stdout is not None
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        stream = self._proc.stdout
        while True:
            try:
                data = stream.read(_READ_SIZE)
            except (OSError, ValueError):
                break
            if not data:
                break
            text = decoder.decode(data)
            if text:
                self._deliver(text)
        tail = decoder.decode(b"", final=True)
        if tail:
            self._deliver(tail)

    def _deliver(self, text: str) -> None:
        try:
            self.on_output(text)
        except Exception:
            self.log.exception("Output handler failed for %s", self.argv[0])

    def write(self, data: str) -> bool:
        proc = self._proc
        if proc is None or proc.stdin is None or proc.poll() is not None:
            return False
        with self._write_lock:
            try:
                proc.stdin.write(data.encode("utf-8"))
                proc.stdin.flush()
            except (BrokenPipeError, OSError, ValueError) as e:
                self.log.warning("Write to %s failed: %s", self.argv[0], e)
                return False
        return True

    def stop(self, timeout: float = 3.0) -> None:
        proc = self._proc
        if proc is None:
            return
        if proc.stdin is not None:
            try:
                proc.stdin.close()
            except OSError:
                pass
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
        if self._reader is not None:
            self._reader.join(timeout=timeout)
        if proc.stdout is not None:
            proc.stdout.close()


class ProcessRegistry:
    """One ManagedProcess per container id (log streams, terminal sessions)."""

    def __init__(self, ctx: AgentContext, argv_factory: ArgvFactory, *, kind: str, interactive: bool = False) -> None:
        self.log = ctx.logger(f"docker.{kind}")
        self.kind = kind
        self.argv_factory = argv_factory
        self.interactive = interactive
        self._procs: Dict[str, ManagedProcess] = {}
        self._lock = threading.Lock()

    def start(self, container_id: str, on_output: Callable[[str, str], None]) -> bool:
        self.stop(container_id)
        proc = ManagedProcess(
            self.argv_factory(container_id),
            lambda text: on_output(container_id, text),
            log=self.log,
            interactive=self.interactive,
        )
        try:
            proc.start()
        except OSError as e:
            self.log.error("Failed to start %s for %s: %s", self.kind, container_id, e)
            return False
        with self._lock:
            self._procs[container_id] = proc
        self.log.info("Started %s for container %s", self.kind, container_id)
        return True

    def write(self, container_id: str, data: str) -> bool:
        with self._lock:
            proc = self._procs.get(container_id)
        if proc is None:
            return False
        return proc.write(data)

    def stop(self, container_id: str) -> bool:
        with self._lock:
            proc = self._procs.pop(container_id, None)
        if proc is None:
            return False
        proc.stop()
        self.log.info("Stopped %s for container %s", self.kind, container_id)
        return True

    def stop_all(self) -> None:
        with self._lock:
            ids = list(self._procs)
        for container_id in ids:
            self.stop(container_id)

    def active(self) -> List[str]:
        with self._lock:
            return sorted(self._procs)


def log_streams(ctx: AgentContext, argv_factory: ArgvFactory = docker_logs_argv) -> ProcessRegistry:
    return ProcessRegistry(ctx, argv_factory, kind="logs")


def terminal_sessions(ctx: AgentContext, argv_factory: ArgvFactory = docker_terminal_argv) -> ProcessRegistry:
    return ProcessRegistry(ctx, argv_factory, kind="terminal", interactive=True)
