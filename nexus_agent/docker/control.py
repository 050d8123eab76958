from __future__ import annotations

import os
import shutil
import subprocess
import tempfile
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from ..context import AgentContext
from ..models import ControlResult


Runner = Callable[[List[str], float], Tuple[int, str]]

DOCKER_ACTIONS = ("start", "stop", "restart", "remove", "removeNetwork", "create", "deploy")

_LIFECYCLE_TIMEOUT = 60.0
_DEPLOY_TIMEOUT = 600.0


def run_cmd(args: List[str], timeout: float) -> Tuple[int, str]:
    """Run a command, return (rc, combined stdout+stderr)."""
    try:
        p = subprocess.run(
            args,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
        )
        return int(p.returncode), (p.stdout or "")
    except FileNotFoundError:
        return 127, f"Error: {args[0]} executable not found"
    except subprocess.TimeoutExpired:
        return 124, f"Error: {args[0]} timed out after {timeout:.0f}s"


def _split_csv(value: Union[str, Iterable[str], int, None]) -> List[str]:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple, set)):
        items = list(value)
    else:
        items = [value]
    return [str(i).strip() for i in items if str(i).strip()]


def _has_error_marker(output: str, *markers: str) -> bool:
    return any(m in output for m in markers)


class DockerControl:
    """Container write path, shelled out to the docker CLI.

    Success is judged from the captured text, not the exit status: the
    output is checked for the CLI's error markers.
    """

    def __init__(self, ctx: AgentContext, runner: Optional[Runner] = None, docker_bin: str = "docker") -> None:
        self.log = ctx.logger("docker.control")
        self.runner = runner or run_cmd
        self.docker = shutil.which(docker_bin) or docker_bin

    def _lifecycle(self, verb: List[str], target: str, past: str) -> ControlResult:
        if not target:
            return ControlResult(success=False, message="containerId is required")
        rc, output = self.runner([self.docker, *verb, target], _LIFECYCLE_TIMEOUT)
        if rc != 0:
            self.log.warning("docker %s %s exited with %d", " ".join(verb), target, rc)
        success = not _has_error_marker(output, "Error", "No such container")
        return ControlResult(
            success=success,
            message=f"Container {past} successfully" if success else f"Failed to {verb[0]} container: {output.strip()}",
            output=output,
        )

    def start_container(self, container_id: str) -> ControlResult:
        self.log.info("Starting container: %s", container_id)
        return self._lifecycle(["start"], container_id, "started")

    def stop_container(self, container_id: str) -> ControlResult:
        self.log.info("Stopping container: %s", container_id)
        return self._lifecycle(["stop"], container_id, "stopped")

    def restart_container(self, container_id: str) -> ControlResult:
        self.log.info("Restarting container: %s", container_id)
        return self._lifecycle(["restart"], container_id, "restarted")

    def remove_container(self, container_id: str) -> ControlResult:
        self.log.info("Removing container: %s", container_id)
        return self._lifecycle(["rm", "-f"], container_id, "removed")

    def remove_network(self, network_id: str) -> ControlResult:
        self.log.info("Removing network: %s", network_id)
        if not network_id:
            return ControlResult(success=False, message="network id is required")
        rc, output = self.runner([self.docker, "network", "rm", network_id], _LIFECYCLE_TIMEOUT)
        success = bool(output.strip()) and not _has_error_marker(output, "Error")
        return ControlResult(
            success=success,
            message="Network removed successfully" if success else f"Failed to remove network: {output.strip()}",
            output=output,
        )

    def create_container(
        self,
        image: str,
        *,
        name: str = "",
        ports: Union[str, Iterable[str], None] = None,
        env: Union[str, Iterable[str], None] = None,
        restart: str = "no",
        command: str = "",
    ) -> ControlResult:
        self.log.info("Creating container from image: %s", image)
        if not image:
            return ControlResult(success=False, message="image is required")

        args = [self.docker, "run", "-d"]
        if name:
            args += ["--name", name]
        if restart and restart != "no":
            args += ["--restart", restart]
        for port in _split_csv(ports):
            args += ["-p", port]
        for var in _split_csv(env):
            args += ["-e", var]
        args.append(image)
        if command:
            args += command.split()

        rc, output = self.runner(args, _LIFECYCLE_TIMEOUT)
        # `docker run` prefixes client-side failures with "docker:"
        success = not _has_error_marker(output, "Error", "docker:")
        return ControlResult(
            success=success,
            message="Container created successfully" if success else f"Failed to create container: {output.strip()}",
            output=output,
        )

    def deploy_compose(self, compose_content: str) -> ControlResult:
        self.log.info("Deploying Docker Compose stack")
        if not compose_content.strip():
            return ControlResult(success=False, message="Compose content is empty")

        fd, path = tempfile.mkstemp(prefix="docker-compose-", suffix=".yml")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(compose_content)
            rc, output = self.runner(
                [self.docker, "compose", "-f", path, "up", "-d", "--remove-orphans"],
                _DEPLOY_TIMEOUT,
            )
        except OSError as e:
            return ControlResult(success=False, message=f"Failed to write compose file: {e}")
        finally:
            try:
                os.unlink(path)
            except OSError:
                pass

        success = not _has_error_marker(output.lower(), "error")
        return ControlResult(
            success=success,
            message="Deployed successfully" if success else "Deployment failed",
            output=output,
        )

    def execute(self, action: str, container_id: str = "", payload: Optional[Dict[str, Any]] = None) -> ControlResult:
        params = payload or {}
        if action == "start":
            return self.start_container(container_id)
        if action == "stop":
            return self.stop_container(container_id)
        if action == "restart":
            return self.restart_container(container_id)
        if action == "remove":
            return self.remove_container(container_id)
        if action == "removeNetwork":
            return self.remove_network(container_id or str(params.get("networkId") or ""))
        if action == "create":
            return self.create_container(
                str(params.get("image") or ""),
                name=str(params.get("name") or ""),
                ports=params.get("ports"),
                env=params.get("env"),
                restart=str(params.get("restart") or "no"),
                command=str(params.get("command") or ""),
            )
        if action == "deploy":
            return self.deploy_compose(str(params.get("composeContent") or ""))
        return ControlResult(success=False, message=f"Unknown action: {action}")
