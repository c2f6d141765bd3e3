"""
Generation pipeline - incident to sanitized playbook or escalation

Builds the prompt, calls the LLM, sanitizes the raw output, persists the
sanitized object and scores the response. Only a sanitized object or an
explicit error ever leaves the pipeline.
"""

import json
import logging
import random
import string
import time
from datetime import datetime, timezone
from typing import Any, Optional, Union

from .config import PortwardenConfig
from .errors import LLMProviderError
from .incidents import IncidentStore, flatten_escalation_plan
from .knowledge import KnowledgeProvider
from .llm_client import LLMResponse, LLMRouter
from .models import (
    EscalationPlan,
    GenerationError,
    GenerationResponse,
    Incident,
    PlaybookPayload,
    SanitizeError,
    SanitizeFailure,
)
from .observability.metrics import get_metrics
from .observability.tracer import add_event, set_attribute, trace_async
from .prompting import SYSTEM_TEXT, PromptManager, response_format_for
from .roster import ContactRoster, default_roster
from .sanitizer import parse_escalation_json, parse_playbook_json
from .tracker import KnowledgeBaseTracker
from .validation import ResponseValidator, classify_module

logger = logging.getLogger(__name__)

INTENTS = ("playbook", "escalation")

FINISH_REASON_MESSAGES = {
    "content_filter": "Content was blocked by safety filters.",
    "length": "Response was truncated due to length limits.",
}

SANITIZE_ERROR_MESSAGES = {
    SanitizeError.INVALID_JSON: "{label} response was not valid JSON.",
    SanitizeError.INVALID_STRUCTURE: "{label} response was not a JSON object.",
    SanitizeError.MISSING_FIELDS: "{label} response was missing required fields.",
}

_SESSION_ALPHABET = string.ascii_lowercase + string.digits


def generate_session_id() -> str:
    suffix = "".join(random.choices(_SESSION_ALPHABET, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


class GenerationPipeline:
    """
    Generation orchestrator

    Every collaborator is passed in; the pipeline holds no module-level
    state. Tracker, knowledge and validator failures are logged and never
    fail the request.
    """

    def __init__(
        self,
        config: PortwardenConfig,
        router: LLMRouter,
        incidents: IncidentStore,
        tracker: Optional[KnowledgeBaseTracker] = None,
        validator: Optional[ResponseValidator] = None,
        knowledge: Optional[KnowledgeProvider] = None,
        prompt_manager: Optional[PromptManager] = None,
        roster: ContactRoster = default_roster,
    ):
        self.config = config
        self.router = router
        self.incidents = incidents
        self.tracker = tracker
        self.validator = validator
        self.knowledge = knowledge
        self.prompt_manager = prompt_manager or PromptManager(config.prompts.prompts_dir)
        self.roster = roster

    async def handle(self, request: Any) -> tuple[int, dict[str, Any]]:
        """
        Entry point for an HTTP handler

        Accepts `{incidentId, intent}` and returns `(status, body)` where body
        is either the generation response or `{error, reason?}`.
        """
        incident_id = request.get("incidentId") if isinstance(request, dict) else None
        intent = request.get("intent") if isinstance(request, dict) else None

        if not incident_id or not intent:
            return 400, {"error": "incidentId and intent are required."}
        if intent not in INTENTS:
            return 400, {"error": "Unsupported intent."}

        result = await self.generate(str(incident_id), intent)
        if isinstance(result, GenerationError):
            return result.status_code, result.to_body()
        return 200, result.to_dict()

    @trace_async("generation.generate")
    async def generate(
        self, incident_id: str, intent: str
    ) -> Union[GenerationResponse, GenerationError]:
        """Run one generation attempt; never retries"""
        set_attribute("incident.id", incident_id)
        set_attribute("generation.intent", intent)

        start_time = time.time()
        result = await self._generate(incident_id, intent)
        status = "error" if isinstance(result, GenerationError) else "ok"

        metrics = get_metrics()
        if metrics:
            metrics.record_generation_request(intent, status)
            metrics.record_generation_duration(intent, time.time() - start_time)
        return result

    async def _generate(
        self, incident_id: str, intent: str
    ) -> Union[GenerationResponse, GenerationError]:
        incident = await self.incidents.get_incident(incident_id)
        if incident is None:
            return GenerationError(error="Incident not found.", status_code=404)

        session_id = generate_session_id()
        await self._track_knowledge_access(incident, intent, session_id)

        prompt = self.prompt_manager.build_prompt(
            incident, intent, self._knowledge_context(incident), self.roster
        )
        logger.info(
            f"Generating {intent} for incident {incident_id} "
            f"(session={session_id}, prompt_length={len(prompt)})"
        )

        try:
            response = await self.router.generate(
                prompt,
                system_prompt=SYSTEM_TEXT,
                response_format=response_format_for(intent),
                template_type=intent,
            )
        except LLMProviderError as e:
            logger.error(f"LLM provider error for incident {incident_id}: {e.message}")
            return GenerationError(error=e.message, reason=e.reason, status_code=e.status_code)

        failure = self._check_completion(response)
        if failure:
            return failure

        output = response.content.strip()
        payload: Optional[PlaybookPayload] = None
        escalation: Optional[EscalationPlan] = None

        if intent == "playbook":
            parsed = parse_playbook_json(output, self.roster)
            if isinstance(parsed, SanitizeFailure):
                return self._sanitize_failure(intent, parsed, output)
            payload = parsed.value
            output = json.dumps(payload.to_dict(), indent=2, ensure_ascii=False)
            await self.incidents.save_playbook(incident_id, payload)
        else:
            parsed = parse_escalation_json(output, self.roster)
            if isinstance(parsed, SanitizeFailure):
                return self._sanitize_failure(intent, parsed, output)
            escalation = parsed.value
            output = json.dumps(escalation.to_dict(), indent=2, ensure_ascii=False)
            await self.incidents.save_escalation(
                incident_id, flatten_escalation_plan(escalation)
            )

        add_event("generation_sanitized", {"intent": intent})

        metadata: dict[str, Any] = {
            "model": response.model,
            "intent": intent,
            "incidentId": incident_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        score = await self._score(incident, intent, output, session_id)
        if score is not None:
            metadata["validationScore"] = score

        return GenerationResponse(
            output=output,
            payload=payload,
            escalation=escalation,
            session_id=session_id,
            metadata=metadata,
        )

    def _check_completion(self, response: LLMResponse) -> Optional[GenerationError]:
        finish_reason = response.finish_reason
        if finish_reason and finish_reason != "stop":
            logger.error(f"LLM finished with reason: {finish_reason}")
            return GenerationError(
                error=FINISH_REASON_MESSAGES.get(
                    finish_reason, "Content generation stopped unexpectedly."
                ),
                reason=finish_reason,
                status_code=502,
            )
        if not response.content.strip():
            logger.error(f"Empty LLM output (finish_reason={finish_reason})")
            return GenerationError(error="LLM response was empty.", status_code=502)
        return None

    def _sanitize_failure(
        self, intent: str, failure: SanitizeFailure, output: str
    ) -> GenerationError:
        reason = failure.error.value
        logger.error(f"{intent.capitalize()} sanitization failed: {reason}")
        logger.debug(f"Rejected output: {output}")

        metrics = get_metrics()
        if metrics:
            metrics.record_sanitize_failure(intent, reason)

        return GenerationError(
            error=SANITIZE_ERROR_MESSAGES[failure.error].format(label=intent.capitalize()),
            reason=reason,
            status_code=502,
        )

    async def _track_knowledge_access(
        self, incident: Incident, intent: str, session_id: str
    ) -> None:
        if self.tracker is None:
            return
        for entry in incident.knowledge_base:
            try:
                await self.tracker.track_article_access(
                    entry.title, f"{intent}_generation", session_id
                )
            except Exception as e:
                logger.warning(f"Failed to track knowledge base access: {e}")

    def _knowledge_context(self, incident: Incident) -> str:
        if self.knowledge is None:
            return ""
        try:
            return self.knowledge.generate_ai_context(
                f"{incident.summary} {incident.title}",
                self.config.prompts.max_kb_articles,
            )
        except Exception as e:
            logger.warning(f"Failed to generate knowledge context: {e}")
            return ""

    async def _score(
        self, incident: Incident, intent: str, output: str, session_id: str
    ) -> Optional[int]:
        """Advisory validation; low scores are logged, never blocking"""
        if self.validator is None:
            return None
        try:
            module = classify_module(f"{incident.summary} {incident.title}")
            query = f"{intent} for {incident.title}: {incident.summary}"
            validation = await self.validator.validate_response(query, output, module)
        except Exception:
            logger.exception(f"Validation failed for {session_id}")
            return None

        logger.info(f"Validation score: {validation.overall_score}% for {session_id}")
        if validation.overall_score < self.config.validation.low_score_threshold:
            issues = {
                name: result.issues
                for name, result in validation.results.items()
                if result.issues
            }
            logger.warning(
                f"Low quality response detected: {session_id} "
                f"(score={validation.overall_score}, issues={issues})"
            )
        return validation.overall_score
