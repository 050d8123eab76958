from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .config import Settings


@dataclass(frozen=True)
class AgentContext:
    """Settings and logger handed to every component at construction time."""

    settings: Settings
    log: logging.Logger = field(default_factory=lambda: logging.getLogger("nexus_agent"))

    def logger(self, name: str) -> logging.Logger:
        return self.log.getChild(name)


def make_context(settings: Optional[Settings] = None, log: Optional[logging.Logger] = None) -> AgentContext:
    return AgentContext(settings=settings or Settings(), log=log or logging.getLogger("nexus_agent"))
