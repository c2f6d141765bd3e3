"""
Prompt construction for playbook and escalation generation

Builds compact incident prompts from Jinja2 templates and supplies the
strict JSON schemas sent as `response_format`.
"""

import logging
from pathlib import Path
from typing import Any, Optional

import jinja2
import yaml

from .models import Incident, Intent
from .roster import ContactRoster, default_roster

logger = logging.getLogger(__name__)

DEFAULT_PROMPTS_DIR = Path(__file__).parent / "prompts"

SYSTEM_TEXT = """You are Portwarden AI, a maritime duty officer co-pilot.
- Generate numbered action steps with clear labels
- Call out where each action runs (database, shell, API, console, etc.)
- Reference KB articles using provided IDs [KB-1749]
- Professional tone, operational focus, prioritize safety
- Follow response format instructions exactly when supplied"""

CONTEXT_LIMIT = 200
EVIDENCE_LIMIT = 80
GUIDANCE_LIMIT = 150


def _string_array() -> dict[str, Any]:
    return {"type": "array", "minItems": 1, "items": {"type": "string", "minLength": 1}}


def _contact_schema() -> dict[str, Any]:
    return {
        "type": "object",
        "additionalProperties": False,
        "required": ["name", "email", "role"],
        "properties": {
            "name": {"type": "string"},
            "email": {"type": "string", "minLength": 1},
            "role": {"type": "string"},
        },
    }


ESCALATION_PLAN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": [
        "category",
        "categoryCode",
        "escalationLikelihood",
        "summary",
        "reasoning",
        "recommendedSubject",
        "recommendedMessage",
        "primaryContact",
        "alternateContacts",
    ],
    "properties": {
        "category": {"type": "string", "minLength": 1},
        "categoryCode": {"type": "string", "minLength": 1},
        "escalationLikelihood": {"type": "string", "enum": ["likely", "unlikely", "uncertain"]},
        "summary": {"type": "string", "minLength": 1},
        "reasoning": {"type": "string"},
        "recommendedSubject": {"type": "string"},
        "recommendedMessage": {"type": "string"},
        "primaryContact": _contact_schema(),
        "alternateContacts": {"type": ["array", "null"], "items": _contact_schema()},
    },
}

# Strict structured outputs need every property listed as required;
# optional fields are expressed as nullable instead.
PLAYBOOK_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": [
        "importantSafetyNotes",
        "actionSteps",
        "verificationSteps",
        "checklists",
        "escalationPlan",
        "aiDescription",
    ],
    "properties": {
        "importantSafetyNotes": _string_array(),
        "actionSteps": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["stepTitle", "executionContext", "procedure", "checklistItems"],
                "properties": {
                    "stepTitle": {"type": "string", "minLength": 1},
                    "executionContext": {"type": "string", "minLength": 1},
                    "procedure": _string_array(),
                    "checklistItems": {"type": ["array", "null"], "items": {"type": "string"}},
                },
            },
        },
        "verificationSteps": _string_array(),
        "checklists": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "additionalProperties": False,
                "required": ["title", "items", "relatedStep"],
                "properties": {
                    "title": {"type": "string", "minLength": 1},
                    "items": _string_array(),
                    "relatedStep": {"type": ["string", "null"]},
                },
            },
        },
        "escalationPlan": ESCALATION_PLAN_SCHEMA,
        "aiDescription": {"type": "string", "minLength": 1},
    },
}

_SCHEMAS: dict[str, tuple[str, dict[str, Any]]] = {
    "playbook": ("portwarden_playbook", PLAYBOOK_SCHEMA),
    "escalation": ("portwarden_escalation", ESCALATION_PLAN_SCHEMA),
}


def response_format_for(intent: Intent) -> dict[str, Any]:
    """Structured-output response_format for an intent"""
    name, schema = _SCHEMAS[intent]
    return {
        "type": "json_schema",
        "json_schema": {"name": name, "strict": True, "schema": schema},
    }


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + "..." if len(text) > limit else text


def build_prompt_context(
    incident: Incident,
    ai_context: str = "",
    roster: ContactRoster = default_roster,
) -> dict[str, Any]:
    """Flatten an incident into the compact fields the templates render"""
    escalation = incident.escalation
    return {
        "incident": incident,
        "kb_refs": ", ".join(
            f"[{entry.reference}] {entry.title}" for entry in incident.knowledge_base
        ),
        "ai_context": _truncate(ai_context, CONTEXT_LIMIT) if ai_context else "",
        "action_summary": "\n".join(
            f"{index}. {action.label} ({action.cite}): {action.explanation}"
            for index, action in enumerate(incident.recommended_actions, start=1)
        ),
        "evidence": "; ".join(
            f"{item.source}: {item.message[:EVIDENCE_LIMIT]}..."
            for item in incident.correlated_evidence
        ),
        "escalation_line": (
            f"Escalation: {escalation.owner} ({escalation.team})"
            if escalation.required
            else "No escalation required"
        ),
        "guidance": (
            f"{incident.rag_extract[:GUIDANCE_LIMIT]}..." if incident.rag_extract else ""
        ),
        "roster_block": roster.format_for_prompt(),
        "category_hint": roster.category_hint(),
    }


class PromptManager:
    """
    Manages Jinja2 templates for LLM prompts

    Templates live at `<prompts_dir>/<name>/<version>/template.jinja2` with
    an optional `meta.yaml` beside them; keys look like `playbook:v1`.
    """

    def __init__(self, prompts_dir: Optional[Path] = None):
        self.prompts_dir = Path(prompts_dir or DEFAULT_PROMPTS_DIR)
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(str(self.prompts_dir)),
            autoescape=jinja2.select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=jinja2.StrictUndefined,
        )

    def get_template(self, template_path: str) -> jinja2.Template:
        try:
            return self.env.get_template(template_path)
        except jinja2.TemplateNotFound:
            logger.error(f"Template not found: {template_path}")
            raise

    def load_template_meta(self, template_key: str) -> dict[str, Any]:
        template_name, version = template_key.split(":")
        meta_path = self.prompts_dir / template_name / version / "meta.yaml"

        if not meta_path.exists():
            logger.warning(f"Template metadata not found: {meta_path}")
            return {}

        with open(meta_path, encoding="utf-8") as f:
            return yaml.safe_load(f) or {}

    def render_template(self, template_key: str, context: dict[str, Any]) -> str:
        template_name, version = template_key.split(":")
        template = self.get_template(f"{template_name}/{version}/template.jinja2")
        return template.render(**context).strip()

    def build_prompt(
        self,
        incident: Incident,
        intent: Intent,
        ai_context: str = "",
        roster: ContactRoster = default_roster,
        version: str = "v1",
    ) -> str:
        """Render the user prompt for an incident and intent"""
        context = build_prompt_context(incident, ai_context, roster)
        return self.render_template(f"{intent}:{version}", context)
