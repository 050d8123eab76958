import logging
import time

import pytest

from nexus_agent.config import Settings
from nexus_agent.context import AgentContext


@pytest.fixture
def settings():
    return Settings(
        agent_name="test-host",
        agent_token="secret",
        backend_url="http://backend.test",
        command_poll_seconds=0.01,
        reconnect_delay_seconds=0.05,
        docker_socket_path="/nonexistent/docker.sock",
    )


@pytest.fixture
def ctx(settings):
    return AgentContext(settings=settings, log=logging.getLogger("nexus_agent.test"))


@pytest.fixture
def wait_for():
    def _wait(predicate, timeout=3.0, interval=0.01):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return bool(predicate())

    return _wait
