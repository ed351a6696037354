"""Agent personas shown next to their messages."""

from dataclasses import dataclass
from enum import Enum


class AgentType(str, Enum):
    ANALYST = "analyst"
    PM = "pm"
    UX_EXPERT = "ux-expert"
    ARCHITECT = "architect"
    PO = "po"
    DEV = "dev"
    QA = "qa"
    SM = "sm"
    BMAD_MASTER = "bmad-master"


@dataclass(frozen=True)
class AgentRole:
    type: AgentType
    name: str
    title: str


AGENT_ROLES: dict[AgentType, AgentRole] = {
    AgentType.ANALYST: AgentRole(AgentType.ANALYST, "Mary", "Business Analyst"),
    AgentType.PM: AgentRole(AgentType.PM, "John", "Product Manager"),
    AgentType.UX_EXPERT: AgentRole(AgentType.UX_EXPERT, "Sally", "UX Expert"),
    AgentType.ARCHITECT: AgentRole(AgentType.ARCHITECT, "Winston", "Architect"),
    AgentType.PO: AgentRole(AgentType.PO, "Sarah", "Product Owner"),
    AgentType.DEV: AgentRole(AgentType.DEV, "James", "Full Stack Developer"),
    AgentType.QA: AgentRole(AgentType.QA, "Quinn", "Test Architect"),
    AgentType.SM: AgentRole(AgentType.SM, "Bob", "Scrum Master"),
    AgentType.BMAD_MASTER: AgentRole(AgentType.BMAD_MASTER, "BMad Master", "Master Task Executor"),
}


def get_role(agent_type: str) -> AgentRole:
    """Persona for ``agent_type``; unknown types fall back to the developer."""
    try:
        return AGENT_ROLES[AgentType(agent_type)]
    except ValueError:
        return AGENT_ROLES[AgentType.DEV]
