from __future__ import annotations

import signal
import threading
import time
from typing import Any, Dict, List, Optional

from .backend import BackendClient
from .collectors import SystemMetrics, collect_agent_info
from .commands import CommandDispatcher
from .context import AgentContext
from .docker import DockerControl, DockerMonitor, ProcessRegistry, log_streams, terminal_sessions
from .files import list_directory
from .models import AgentInfo
from .payloads import metrics_payload
from .transport import (
    ContainerEvent,
    DeployComposeEvent,
    DockerControlEvent,
    DuplexTransport,
    EventKind,
    FsListEvent,
    TerminalDataEvent,
)
from .transport.protocol import (
    DEPLOY_COMPOSE_RESULT,
    DOCKER_CONTROL_RESULT,
    FS_LIST_RESULT,
    LOGS_DATA,
    TERMINAL_OUTPUT,
)

# docker actions still running at shutdown get this long to post their result
WORKER_JOIN_SECONDS = 10.0


class Agent:
    """Wires collectors, the backend client, the duplex transport and the
    command dispatcher together and runs the collection cycle.

    Collaborators can be passed in; anything left out is built from
    `ctx.settings`.
    """

    def __init__(
        self,
        ctx: AgentContext,
        *,
        info: Optional[AgentInfo] = None,
        backend: Optional[BackendClient] = None,
        system: Optional[SystemMetrics] = None,
        docker_monitor: Optional[DockerMonitor] = None,
        docker_control: Optional[DockerControl] = None,
        logs: Optional[ProcessRegistry] = None,
        terminals: Optional[ProcessRegistry] = None,
        transport: Optional[DuplexTransport] = None,
        dispatcher: Optional[CommandDispatcher] = None,
    ) -> None:
        s = ctx.settings
        self.ctx = ctx
        self.log = ctx.logger("agent")
        self.info = info or collect_agent_info(s.agent_name)
        if s.agent_token:
            self.info = self.info.model_copy(update={"token": s.agent_token})

        self.backend = backend or BackendClient(ctx)
        self.system = system or SystemMetrics(ctx)
        self.docker_monitor = docker_monitor
        if self.docker_monitor is None and s.docker_enabled:
            self.docker_monitor = DockerMonitor(ctx)
        self.docker_control = docker_control or DockerControl(ctx)
        self.logs = logs or log_streams(ctx)
        self.terminals = terminals or terminal_sessions(ctx)
        self.dispatcher = dispatcher or CommandDispatcher(ctx, self.backend, self.docker_control)

        self.transport = transport
        if self.transport is None and s.transport_enabled:
            self.transport = DuplexTransport(ctx, self.identity())
        if self.transport is not None:
            self._register_handlers(self.transport)

        self.started_at = time.monotonic()
        self._shutdown = threading.Event()
        self._stopped = False
        self._workers: List[threading.Thread] = []
        self._workers_lock = threading.Lock()

    def identity(self) -> Dict[str, Any]:
        return self.info.model_dump(by_alias=True, exclude_none=True)

    # --- transport handlers -------------------------------------------------

    def _register_handlers(self, transport: DuplexTransport) -> None:
        transport.on(EventKind.DOCKER_CONTROL, self.on_docker_control)
        transport.on(EventKind.LOGS_START, self.on_logs_start)
        transport.on(EventKind.LOGS_STOP, self.on_logs_stop)
        transport.on(EventKind.TERMINAL_START, self.on_terminal_start)
        transport.on(EventKind.TERMINAL_STOP, self.on_terminal_stop)
        transport.on(EventKind.TERMINAL_DATA, self.on_terminal_data)
        transport.on(EventKind.FS_LIST, self.on_fs_list)
        transport.on(EventKind.DEPLOY_COMPOSE, self.on_deploy_compose)
        transport.on_disconnect(self._on_transport_lost)

    def _emit(self, event: str, data: Dict[str, Any]) -> None:
        if self.transport is None or not self.transport.emit(event, data):
            self.log.debug("Dropped %s: transport not connected", event)

    def _background(self, name: str, fn: Any, *args: Any) -> None:
        # docker CLI calls can take minutes; keep the transport thread reading.
        worker = threading.Thread(target=fn, args=args, name=name, daemon=True)
        with self._workers_lock:
            self._workers = [w for w in self._workers if w.is_alive()]
            self._workers.append(worker)
        worker.start()

    def _join_workers(self, timeout: float) -> None:
        with self._workers_lock:
            workers, self._workers = self._workers, []
        deadline = time.monotonic() + timeout
        for w in workers:
            w.join(timeout=max(0.0, deadline - time.monotonic()))
            if w.is_alive():
                self.log.warning("%s still running at shutdown", w.name)

    def on_docker_control(self, event: DockerControlEvent) -> None:
        self._background("docker-control", self._run_docker_control, event)

    def _run_docker_control(self, event: DockerControlEvent) -> None:
        result = self.docker_control.execute(event.action, event.container_id, event.payload)
        self._emit(
            DOCKER_CONTROL_RESULT,
            {
                "success": result.success,
                "action": event.action,
                "containerId": event.container_id,
                "message": result.message,
                "output": result.output,
            },
        )

    def on_logs_start(self, event: ContainerEvent) -> None:
        self.logs.start(event.container_id, lambda cid, text: self._emit(LOGS_DATA, {"containerId": cid, "data": text}))

    def on_logs_stop(self, event: ContainerEvent) -> None:
        self.logs.stop(event.container_id)

    def on_terminal_start(self, event: ContainerEvent) -> None:
        self.terminals.start(
            event.container_id, lambda cid, text: self._emit(TERMINAL_OUTPUT, {"containerId": cid, "data": text})
        )

    def on_terminal_stop(self, event: ContainerEvent) -> None:
        self.terminals.stop(event.container_id)

    def on_terminal_data(self, event: TerminalDataEvent) -> None:
        if not self.terminals.write(event.container_id, event.data):
            self.log.debug("No open terminal for %s", event.container_id)

    def on_fs_list(self, event: FsListEvent) -> None:
        listing = list_directory(event.path, logger=self.log)
        payload: Dict[str, Any] = {
            "requestId": event.request_id,
            "success": "error" not in listing,
            "files": listing["files"],
        }
        if "error" in listing:
            payload["error"] = listing["error"]
        self._emit(FS_LIST_RESULT, payload)

    def on_deploy_compose(self, event: DeployComposeEvent) -> None:
        self._background("deploy-compose", self._run_deploy, event)

    def _run_deploy(self, event: DeployComposeEvent) -> None:
        result = self.docker_control.deploy_compose(event.compose_content)
        self._emit(DEPLOY_COMPOSE_RESULT, result.model_dump())

    def _on_transport_lost(self) -> None:
        active = self.logs.active() + self.terminals.active()
        if active:
            self.log.info("Transport lost, closing %d stream(s)", len(active))
        self.logs.stop_all()
        self.terminals.stop_all()

    # --- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        if self.backend.register_agent(self.info):
            self.log.info("Registered with backend as %s", self.info.name)
        else:
            self.log.warning("Registration failed, running in offline mode")
        if self.transport is not None:
            self.transport.connect()
        self.dispatcher.start()

    def collect_cycle(self) -> bool:
        ok, snap = self.system.collect()
        docker = None
        if self.docker_monitor is not None:
            ok = self.docker_monitor.collect() and ok
            docker = self.docker_monitor.last
        payload = metrics_payload(self.info, snap, docker, agent_uptime=time.monotonic() - self.started_at)
        if self.backend.send_metrics(payload):
            self.log.debug("Metrics sent")
        else:
            self.log.warning("Failed to send metrics")
        return ok

    def request_shutdown(self) -> None:
        self._shutdown.set()

    def _handle_signal(self, signum: int, frame: Any) -> None:
        self.log.info("Received signal %d, shutting down...", signum)
        self.request_shutdown()

    def run(self, install_signals: bool = True) -> None:
        s = self.ctx.settings
        if install_signals:
            signal.signal(signal.SIGTERM, self._handle_signal)
            signal.signal(signal.SIGINT, self._handle_signal)

        self.log.info("Agent %s reporting to %s every %.0fs", self.info.name, s.backend_url, s.collection_interval_seconds)
        self.start()
        next_heartbeat = 0.0
        try:
            while not self._shutdown.is_set():
                try:
                    self.collect_cycle()
                    now = time.monotonic()
                    if now >= next_heartbeat:
                        if not self.backend.send_heartbeat(self.info.name):
                            self.log.debug("Heartbeat not acknowledged")
                        next_heartbeat = now + s.heartbeat_interval_seconds
                except Exception:
                    self.log.exception("Collection cycle failed")
                self._shutdown.wait(s.collection_interval_seconds)
        finally:
            self.stop()

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self.dispatcher.stop()
        self._join_workers(WORKER_JOIN_SECONDS)
        self.logs.stop_all()
        self.terminals.stop_all()
        if self.transport is not None:
            self.transport.disconnect()
        self.backend.close()
        self.log.info("Agent stopped")
