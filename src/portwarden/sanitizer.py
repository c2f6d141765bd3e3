"""
Structural sanitizer for generated playbooks and escalation plans

Decodes raw LLM text and reshapes the loosely-typed JSON into the strict
PlaybookPayload / EscalationPlan models. Malformed list elements are dropped
individually; an empty required section fails the whole payload.
"""

import json
import logging
import re
from typing import Any, Optional

from .models import (
    ActionStep,
    Checklist,
    EscalationContact,
    EscalationOk,
    EscalationPlan,
    EscalationResult,
    PlaybookPayload,
    SanitizeError,
    SanitizeFailure,
    SanitizeOk,
    SanitizeResult,
)
from .roster import ContactRoster, default_roster
from .text import (
    coerce_string_list,
    normalize_email,
    normalize_escalation_message,
    normalize_heading,
    normalize_likelihood,
    normalize_narrative,
    normalize_subject,
)

logger = logging.getLogger(__name__)

_LEADING_FENCE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```$")


def _first_present(data: dict[str, Any], *keys: str) -> Any:
    """Return the first value that is not missing or null"""
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def _is_object(value: Any) -> bool:
    return isinstance(value, dict)


def strip_json_fences(raw: str) -> str:
    """Remove a wrapping ```json ... ``` Markdown fence"""
    cleaned = _LEADING_FENCE.sub("", raw.strip())
    return _TRAILING_FENCE.sub("", cleaned).strip()


def _decode(raw: Any) -> tuple[Any, Optional[SanitizeFailure]]:
    try:
        return json.loads(strip_json_fences(raw)), None
    except (ValueError, TypeError, AttributeError, RecursionError) as e:
        logger.warning(f"Failed to parse generated payload JSON: {e}")
        return None, SanitizeFailure(error=SanitizeError.INVALID_JSON)


def parse_playbook_json(raw: str, roster: ContactRoster = default_roster) -> SanitizeResult:
    """Decode raw LLM output and sanitize it into a playbook"""
    data, failure = _decode(raw)
    if failure:
        return failure
    return sanitize_playbook_object(data, roster)


def parse_escalation_json(
    raw: str, roster: ContactRoster = default_roster
) -> EscalationResult:
    """Decode raw LLM output and sanitize it into a standalone escalation plan"""
    data, failure = _decode(raw)
    if failure:
        return failure
    if not _is_object(data):
        return SanitizeFailure(error=SanitizeError.INVALID_STRUCTURE)
    # Escalation intent responses may nest the plan or return it bare
    plan_data = data.get("escalationPlan", data)
    plan = sanitize_escalation_plan(plan_data, roster)
    if plan is None:
        return SanitizeFailure(error=SanitizeError.MISSING_FIELDS)
    return EscalationOk(value=plan)


def sanitize_playbook_object(
    value: Any, roster: ContactRoster = default_roster
) -> SanitizeResult:
    """
    Sanitize a decoded JSON value into a PlaybookPayload

    Returns INVALID_STRUCTURE for anything but a JSON object and
    MISSING_FIELDS when any required section is empty after per-element
    sanitization or the escalation plan cannot be resolved.
    """
    if not _is_object(value):
        return SanitizeFailure(error=SanitizeError.INVALID_STRUCTURE)

    important_safety_notes = sanitize_string_array(value.get("importantSafetyNotes"))
    action_steps = sanitize_action_steps(value.get("actionSteps"))
    verification_steps = sanitize_string_array(value.get("verificationSteps"))
    checklists = sanitize_checklists(value.get("checklists"))
    escalation_plan = sanitize_escalation_plan(value.get("escalationPlan"), roster)
    ai_description = normalize_narrative(
        _first_present(value, "aiDescription", "summarySynopsis")
    )

    if (
        not important_safety_notes
        or not action_steps
        or not verification_steps
        or not checklists
        or escalation_plan is None
        or not ai_description
    ):
        return SanitizeFailure(error=SanitizeError.MISSING_FIELDS)

    return SanitizeOk(
        value=PlaybookPayload(
            important_safety_notes=important_safety_notes,
            action_steps=action_steps,
            verification_steps=verification_steps,
            checklists=checklists,
            escalation_plan=escalation_plan,
            ai_description=ai_description,
        )
    )


def sanitize_string_array(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in (normalize_narrative(raw) for raw in value) if item]


def sanitize_action_steps(value: Any) -> list[ActionStep]:
    """Keep steps that have a title, an execution context and a procedure"""
    if not isinstance(value, list):
        return []
    steps = []
    for entry in value:
        if not _is_object(entry):
            continue
        step_title = normalize_heading(entry.get("stepTitle"))
        execution_context = normalize_narrative(entry.get("executionContext"))
        procedure = coerce_string_list(entry.get("procedure"))
        checklist_items = coerce_string_list(entry.get("checklistItems"))

        if not step_title or not execution_context or not procedure:
            continue

        steps.append(
            ActionStep(
                step_title=step_title,
                execution_context=execution_context,
                procedure=procedure,
                checklist_items=checklist_items or None,
            )
        )
    return steps


def sanitize_checklists(value: Any) -> list[Checklist]:
    if not isinstance(value, list):
        return []
    lists = []
    for entry in value:
        if not _is_object(entry):
            continue
        title = normalize_heading(entry.get("title"))
        items = coerce_string_list(entry.get("items"))
        if not title or not items:
            continue
        related_step = normalize_heading(entry.get("relatedStep"))
        lists.append(
            Checklist(title=title, items=items, related_step=related_step or None)
        )
    return lists


def sanitize_escalation_contact(value: Any) -> Optional[EscalationContact]:
    if not _is_object(value):
        return None
    email = normalize_email(_first_present(value, "email", "address"))
    if not email:
        return None
    return EscalationContact(
        name=normalize_heading(_first_present(value, "name", "fullName")),
        email=email,
        role=normalize_heading(_first_present(value, "role", "title")),
    )


def _build_fallback_message(summary: str, reasoning: str) -> str:
    parts = [summary]
    if reasoning:
        parts.append(f"Reasoning: {reasoning}")
    return "\n\n".join(parts)


def sanitize_escalation_plan(
    value: Any, roster: ContactRoster = default_roster
) -> Optional[EscalationPlan]:
    """
    Sanitize an escalation sub-object and resolve it against the roster

    Roster category, code and contact override whatever the LLM proposed
    when a match is found by email, code or category (in that order).
    Returns None when no category, code, contact email or summary can be
    established.
    """
    if not _is_object(value):
        return None

    raw_category = normalize_heading(_first_present(value, "category", "categoryName"))
    raw_code = normalize_heading(_first_present(value, "categoryCode", "code"))
    likelihood = normalize_likelihood(
        _first_present(value, "escalationLikelihood", "likelihood")
    )
    summary = normalize_narrative(value.get("summary"))
    reasoning = normalize_narrative(
        _first_present(value, "reasoning", "likelihoodReasoning")
    )
    subject = normalize_subject(
        _first_present(value, "recommendedSubject", "subject", "emailSubject")
    )
    message = normalize_escalation_message(
        _first_present(value, "recommendedMessage", "message", "emailBody", "body")
    )
    primary_contact = sanitize_escalation_contact(value.get("primaryContact"))

    alternate_contacts: list[EscalationContact] = []
    if isinstance(value.get("alternateContacts"), list):
        for entry in value["alternateContacts"]:
            contact = sanitize_escalation_contact(entry)
            if contact is not None:
                alternate_contacts.append(contact)

    roster_entry = roster.resolve(
        category=raw_category,
        code=raw_code,
        email=primary_contact.email if primary_contact else "",
    )

    if roster_entry is not None:
        effective_category = roster_entry.category
        effective_code = roster_entry.code
        effective_contact: Optional[EscalationContact] = roster_entry.primary_contact
    else:
        effective_category = raw_category
        effective_code = raw_code
        effective_contact = primary_contact

    if not effective_category or not effective_code or effective_contact is None:
        return None

    final_summary = summary or normalize_narrative(message) or reasoning
    if not final_summary:
        return None

    return EscalationPlan(
        category=effective_category,
        category_code=effective_code,
        likelihood=likelihood,
        summary=final_summary,
        reasoning=reasoning,
        recommended_subject=subject or f"Escalation - {effective_category}",
        recommended_message=message or _build_fallback_message(final_summary, reasoning),
        primary_contact=effective_contact.model_copy(),
        alternate_contacts=alternate_contacts or None,
    )
