import os

import pytest

from nexus_agent.docker.control import DockerControl, run_cmd


class FakeRunner:
    def __init__(self, output="", rc=0):
        self.output = output
        self.rc = rc
        self.calls = []
        self.compose_text = None

    def __call__(self, args, timeout):
        self.calls.append(list(args))
        if "compose" in args:
            path = args[args.index("-f") + 1]
            with open(path, encoding="utf-8") as f:
                self.compose_text = f.read()
        return self.rc, self.output


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def control(ctx, runner):
    return DockerControl(ctx, runner=runner, docker_bin="docker-not-on-path")


@pytest.mark.parametrize(
    "action, argv",
    [
        ("start", ["start", "abc"]),
        ("stop", ["stop", "abc"]),
        ("restart", ["restart", "abc"]),
        ("remove", ["rm", "-f", "abc"]),
    ],
)
def test_lifecycle_actions(control, runner, action, argv):
    runner.output = "abc\n"
    result = control.execute(action, "abc")
    assert result.success
    assert runner.calls == [["docker-not-on-path", *argv]]


def test_lifecycle_failure_detected_from_output(control, runner):
    runner.output = "Error response from daemon: No such container: abc\n"
    result = control.execute("stop", "abc")
    assert not result.success
    assert "No such container" in result.message
    assert result.output == runner.output


def test_lifecycle_requires_container_id(control, runner):
    assert not control.execute("start", "").success
    assert runner.calls == []


def test_remove_network_needs_output(control, runner):
    assert not control.execute("removeNetwork", "net1").success
    runner.output = "net1\n"
    assert control.execute("removeNetwork", "net1").success
    assert runner.calls[-1] == ["docker-not-on-path", "network", "rm", "net1"]


def test_create_container_builds_run_args(control, runner):
    runner.output = "f00dfeed\n"
    result = control.execute(
        "create",
        payload={
            "image": "nginx:latest",
            "name": "web",
            "ports": "8080:80, 8443:443",
            "env": ["A=1", "B=2"],
            "restart": "always",
            "command": "nginx -g daemon-off",
        },
    )
    assert result.success
    assert runner.calls[0] == [
        "docker-not-on-path", "run", "-d",
        "--name", "web",
        "--restart", "always",
        "-p", "8080:80", "-p", "8443:443",
        "-e", "A=1", "-e", "B=2",
        "nginx:latest",
        "nginx", "-g", "daemon-off",
    ]


def test_create_container_client_error(control, runner):
    runner.output = "docker: invalid reference format.\n"
    assert not control.execute("create", payload={"image": "BAD"}).success


def test_deploy_compose_writes_and_removes_file(control, runner):
    runner.output = "Container app-web-1  Started\n"
    result = control.execute("deploy", payload={"composeContent": "services:\n  web:\n    image: nginx\n"})
    assert result.success
    assert runner.compose_text.startswith("services:")
    args = runner.calls[0]
    assert args[-3:] == ["up", "-d", "--remove-orphans"]
    assert not os.path.exists(args[args.index("-f") + 1])


def test_deploy_compose_failure_is_case_insensitive(control, runner):
    runner.output = "service \"web\" ERROR: pull access denied\n"
    assert not control.deploy_compose("services: {}\n").success


def test_deploy_compose_rejects_empty_content(control, runner):
    result = control.deploy_compose("   ")
    assert not result.success
    assert result.message == "Compose content is empty"
    assert runner.calls == []


def test_unknown_action(control, runner):
    result = control.execute("explode", "abc")
    assert not result.success
    assert result.message == "Unknown action: explode"
    assert runner.calls == []


def test_run_cmd_missing_executable():
    rc, output = run_cmd(["/nonexistent/docker", "ps"], timeout=5)
    assert rc == 127
    assert output.startswith("Error:")
