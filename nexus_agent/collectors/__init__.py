from .agent_info import collect_agent_info
from .system import SystemMetrics

__all__ = ["SystemMetrics", "collect_agent_info"]
