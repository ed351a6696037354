from .client import AgentClient
from .roles import AGENT_ROLES, AgentRole, AgentType, get_role

__all__ = ["AGENT_ROLES", "AgentClient", "AgentRole", "AgentType", "get_role"]
