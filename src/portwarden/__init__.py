"""
portwarden - AI output sanitization and validation for maritime incident playbooks

Turns raw LLM output into trusted remediation playbooks and escalation
plans, scores responses against operational procedures and tracks which
knowledge-base articles actually help resolve incidents.
"""

__version__ = "0.1.0"

from .config import PortwardenConfig
from .generation_pipeline import GenerationPipeline
from .models import EscalationPlan, PlaybookPayload, SanitizeError
from .roster import ContactRoster, resolve_contact_roster_entry
from .sanitizer import parse_escalation_json, parse_playbook_json, sanitize_playbook_object
from .services import PortwardenServices
from .tracker import KnowledgeBaseTracker
from .validation import ResponseValidator

__all__ = [
    "PortwardenConfig",
    "PortwardenServices",
    "GenerationPipeline",
    "PlaybookPayload",
    "EscalationPlan",
    "SanitizeError",
    "ContactRoster",
    "resolve_contact_roster_entry",
    "parse_playbook_json",
    "parse_escalation_json",
    "sanitize_playbook_object",
    "KnowledgeBaseTracker",
    "ResponseValidator",
    "__version__",
]
