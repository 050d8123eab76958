from __future__ import annotations


class AgentError(RuntimeError):
    """Base class for errors raised inside the agent."""


class ControlPlaneError(AgentError):
    """Talking to the container runtime over its local socket failed."""


class DockerUnavailable(ControlPlaneError):
    pass


class MalformedResponse(ControlPlaneError):
    pass


class TransportError(AgentError):
    """The duplex connection could not be established or broke."""


class BackendError(AgentError):
    pass
