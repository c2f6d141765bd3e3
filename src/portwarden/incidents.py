"""
Incident store seam

The pipeline reads incidents and writes sanitized results through the
IncidentStore protocol. InMemoryIncidentStore backs the CLI and tests.
"""

import logging
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

import yaml

from .models import EscalationPlan, Incident, PlaybookPayload

logger = logging.getLogger(__name__)


@runtime_checkable
class IncidentStore(Protocol):
    async def get_incident(self, incident_id: str) -> Optional[Incident]: ...

    async def save_playbook(self, incident_id: str, payload: PlaybookPayload) -> None: ...

    async def save_escalation(self, incident_id: str, fields: dict[str, Any]) -> None: ...


def flatten_escalation_plan(plan: EscalationPlan) -> dict[str, Any]:
    """Column-style fields written onto the incident record"""
    return {
        "escalation_summary": plan.summary,
        "escalation_likelihood": plan.likelihood,
        "escalation_contact_name": plan.primary_contact.name,
        "escalation_contact_email": plan.primary_contact.email,
        "escalation_contact_role": plan.primary_contact.role,
        "escalation_subject": plan.recommended_subject,
        "escalation_message": plan.recommended_message,
        "escalation_reasoning": plan.reasoning,
        "escalation_category": plan.category,
        "escalation_category_code": plan.category_code,
    }


class InMemoryIncidentStore:
    """Dict-backed incident store"""

    def __init__(self, incidents: Optional[list[Incident]] = None):
        self.incidents: dict[str, Incident] = {i.id: i for i in incidents or []}
        self.playbooks: dict[str, PlaybookPayload] = {}
        self.escalations: dict[str, dict[str, Any]] = {}

    @classmethod
    def from_file(cls, path: Path) -> "InMemoryIncidentStore":
        """Load one incident or a list of incidents from YAML/JSON"""
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or []
        if isinstance(raw, dict):
            raw = [raw]
        return cls([Incident.model_validate(item) for item in raw])

    async def get_incident(self, incident_id: str) -> Optional[Incident]:
        return self.incidents.get(incident_id)

    async def save_playbook(self, incident_id: str, payload: PlaybookPayload) -> None:
        self.playbooks[incident_id] = payload
        logger.debug(f"Stored playbook for incident {incident_id}")

    async def save_escalation(self, incident_id: str, fields: dict[str, Any]) -> None:
        self.escalations[incident_id] = fields
        logger.debug(f"Stored escalation for incident {incident_id}")
