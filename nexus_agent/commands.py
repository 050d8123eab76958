from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from .backend import BackendClient
from .context import AgentContext
from .docker.control import DOCKER_ACTIONS, DockerControl
from .files import list_directory
from .models import CommandResult, PendingCommand


FileLister = Callable[[str], Dict[str, Any]]


def _failed(error: str) -> CommandResult:
    return CommandResult(status="failed", result={"error": error})


class CommandDispatcher:
    """Polls the backend for queued commands and executes each one at most once.

    One poll is in flight at a time; a long-running command delays the next
    poll. Results are posted back once and never retried, so a lost result
    never causes a command to run twice.
    """

    def __init__(
        self,
        ctx: AgentContext,
        backend: BackendClient,
        docker_control: DockerControl,
        *,
        file_lister: FileLister = list_directory,
    ) -> None:
        self.log = ctx.logger("commands")
        self.agent_name = ctx.settings.agent_name
        self.interval = ctx.settings.command_poll_seconds
        self.backend = backend
        self.docker_control = docker_control
        self.file_lister = file_lister
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="command-dispatcher", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        self.log.info("Polling for commands every %.1fs", self.interval)
        while not self._stop.is_set():
            try:
                self.poll_once()
            except Exception:
                self.log.exception("Command poll failed")
            self._stop.wait(self.interval)

    def fetch(self) -> Optional[PendingCommand]:
        status, body = self.backend.get(f"/api/agent/commands/{self.agent_name}")
        if status == 404:
            return None
        if status != 200:
            self.log.warning("Command poll returned status %d", status)
            return None
        if body.get("success") is False:
            return None
        raw = body.get("command")
        if raw is None:
            return None
        try:
            return PendingCommand.model_validate(raw)
        except ValidationError as e:
            self.log.error("Malformed command from backend: %s", e)
            command_id = raw.get("id") if isinstance(raw, dict) else None
            if isinstance(command_id, str) and command_id:
                self.send_result(command_id, _failed("Malformed command"))
            return None

    def poll_once(self) -> bool:
        """Fetch, run and report one command. Returns True when one was handled."""
        command = self.fetch()
        if command is None:
            return False
        self.log.info("Received command %s: %s %s", command.id, command.type, command.action)
        try:
            result = self.dispatch(command)
        except Exception as e:
            self.log.exception("Command %s failed", command.id)
            result = _failed(f"Command execution failed: {e}")
        self.send_result(command.id, result)
        return True

    def dispatch(self, command: PendingCommand) -> CommandResult:
        if command.type == "docker":
            return self._docker(command)
        if command.type == "file":
            return self._file(command)
        self.log.warning("Unknown command type: %s", command.type)
        return _failed("Unknown command type")

    def _docker(self, command: PendingCommand) -> CommandResult:
        if command.action not in DOCKER_ACTIONS:
            return _failed("Unknown docker action")
        params = command.params
        target = str(params.get("containerId") or params.get("id") or "")
        outcome = self.docker_control.execute(command.action, target, params)
        return CommandResult(
            status="completed" if outcome.success else "failed",
            result={"message": outcome.message, "output": outcome.output, "success": outcome.success},
        )

    def _file(self, command: PendingCommand) -> CommandResult:
        if command.action != "list":
            return _failed("Unknown file action")
        listing = self.file_lister(str(command.params.get("path") or "."))
        if listing.get("error"):
            return CommandResult(status="failed", result=listing)
        return CommandResult(status="completed", result=listing)

    def send_result(self, command_id: str, result: CommandResult) -> bool:
        status, _ = self.backend.post(f"/api/agent/commands/{command_id}/result", result.model_dump())
        if not 200 <= status < 300:
            self.log.error("Failed to report result for command %s (status %d)", command_id, status)
            return False
        self.log.info("Command %s %s", command_id, result.status)
        return True
