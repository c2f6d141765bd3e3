"""
Test suite for the generation pipeline

Tests request validation, provider failure relay, completion checks,
sanitization outcomes, persistence and advisory scoring.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from portwarden.config import LLMRouterConfig
from portwarden.errors import LLMProviderError
from portwarden.generation_pipeline import GenerationPipeline, generate_session_id
from portwarden.incidents import InMemoryIncidentStore
from portwarden.knowledge import KnowledgeArticle, StaticKnowledgeProvider
from portwarden.llm_client import LLMResponse, LLMRouter
from portwarden.models import GenerationError, GenerationResponse
from portwarden.observability.config import TelemetryConfig
from portwarden.observability.metrics import initialize_metrics
from portwarden.tracker import KnowledgeBaseTracker
from portwarden.validation import ResponseValidator


def _router(content="", finish_reason="stop", error=None):
    router = MagicMock(spec=LLMRouter)
    if error is not None:
        router.generate = AsyncMock(side_effect=error)
    else:
        router.generate = AsyncMock(
            return_value=LLMResponse(
                content=content, model="gpt-4o-mini", finish_reason=finish_reason
            )
        )
    return router


@pytest.fixture
def incidents(sample_incident):
    return InMemoryIncidentStore([sample_incident])


@pytest.fixture
def data_dir(test_config):
    return test_config.storage.data_dir


@pytest.fixture
def make_pipeline(test_config, incidents, data_dir):
    def factory(router, **kwargs):
        kwargs.setdefault("tracker", KnowledgeBaseTracker(data_dir))
        kwargs.setdefault("validator", ResponseValidator(data_dir))
        return GenerationPipeline(test_config, router, incidents, **kwargs)

    return factory


class TestHandleRequestValidation:
    """Test request shape checks"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "request_body",
        [{}, {"incidentId": "INC-1001"}, {"intent": "playbook"}, None, "INC-1001"],
    )
    async def test_missing_fields(self, make_pipeline, request_body):
        router = _router()
        status, body = await make_pipeline(router).handle(request_body)

        assert status == 400
        assert body == {"error": "incidentId and intent are required."}
        router.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_unsupported_intent(self, make_pipeline):
        status, body = await make_pipeline(_router()).handle(
            {"incidentId": "INC-1001", "intent": "summary"}
        )

        assert status == 400
        assert body == {"error": "Unsupported intent."}

    @pytest.mark.asyncio
    async def test_unknown_incident(self, make_pipeline):
        status, body = await make_pipeline(_router()).handle(
            {"incidentId": "INC-404", "intent": "playbook"}
        )

        assert status == 404
        assert body == {"error": "Incident not found."}


class TestProviderAndCompletionFailures:
    """Test LLM failure handling"""

    @pytest.mark.asyncio
    async def test_provider_error_status_is_relayed(self, make_pipeline, incidents):
        error = LLMProviderError(
            "Rate limit reached", status_code=429, reason="rate_limit_exceeded"
        )

        status, body = await make_pipeline(_router(error=error)).handle(
            {"incidentId": "INC-1001", "intent": "playbook"}
        )

        assert status == 429
        assert body == {"error": "Rate limit reached", "reason": "rate_limit_exceeded"}
        assert incidents.playbooks == {}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "finish_reason, message",
        [
            ("length", "Response was truncated due to length limits."),
            ("content_filter", "Content was blocked by safety filters."),
            ("tool_calls", "Content generation stopped unexpectedly."),
        ],
    )
    async def test_non_stop_finish_reason(self, make_pipeline, finish_reason, message):
        router = _router(content='{"partial": ', finish_reason=finish_reason)

        result = await make_pipeline(router).generate("INC-1001", "playbook")

        assert isinstance(result, GenerationError)
        assert result.status_code == 502
        assert result.error == message
        assert result.reason == finish_reason

    @pytest.mark.asyncio
    async def test_empty_output(self, make_pipeline):
        result = await make_pipeline(_router(content="   \n")).generate("INC-1001", "playbook")

        assert result.status_code == 502
        assert result.error == "LLM response was empty."

    @pytest.mark.asyncio
    async def test_missing_finish_reason_is_accepted(self, make_pipeline, sample_playbook_raw):
        result = await make_pipeline(
            _router(content=sample_playbook_raw, finish_reason=None)
        ).generate("INC-1001", "playbook")

        assert isinstance(result, GenerationResponse)


class TestSanitizeOutcomes:
    """Test how sanitization results surface"""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content, reason, message",
        [
            ("not json at all", "INVALID_JSON", "Playbook response was not valid JSON."),
            ("[1, 2]", "INVALID_STRUCTURE", "Playbook response was not a JSON object."),
            (
                '{"importantSafetyNotes": []}',
                "MISSING_FIELDS",
                "Playbook response was missing required fields.",
            ),
        ],
    )
    async def test_playbook_sanitize_failure(
        self, make_pipeline, incidents, content, reason, message
    ):
        status, body = await make_pipeline(_router(content=content)).handle(
            {"incidentId": "INC-1001", "intent": "playbook"}
        )

        assert status == 502
        assert body == {"error": message, "reason": reason}
        assert incidents.playbooks == {}

    @pytest.mark.asyncio
    async def test_playbook_success(self, make_pipeline, incidents, sample_playbook_raw):
        router = _router(content=sample_playbook_raw)

        status, body = await make_pipeline(router).handle(
            {"incidentId": "INC-1001", "intent": "playbook"}
        )

        assert status == 200
        assert body["payload"]["escalationPlan"]["primaryContact"] == {
            "name": "Tom Tan",
            "email": "tom.tan@psa123.com",
            "role": "EDI/API Support Lead",
        }
        assert json.loads(body["output"]) == body["payload"]
        assert body["sessionId"].startswith("session_")
        assert body["metadata"]["model"] == "gpt-4o-mini"
        assert body["metadata"]["intent"] == "playbook"
        assert body["metadata"]["incidentId"] == "INC-1001"
        assert 0 <= body["metadata"]["validationScore"] <= 100
        assert "escalation" not in body

        saved = incidents.playbooks["INC-1001"]
        assert saved.escalation_plan.category_code == "EA"

        kwargs = router.generate.call_args.kwargs
        assert kwargs["template_type"] == "playbook"
        assert kwargs["response_format"]["json_schema"]["name"] == "portwarden_playbook"
        assert kwargs["system_prompt"].startswith("You are Portwarden AI")

    @pytest.mark.asyncio
    async def test_escalation_success_is_flattened(self, make_pipeline, incidents):
        content = json.dumps(
            {
                "category": "vessel",
                "likelihood": "Yes",
                "summary": "Berth conflict",
                "primaryContact": {"email": "someone@example.com"},
            }
        )

        status, body = await make_pipeline(_router(content=content)).handle(
            {"incidentId": "INC-1001", "intent": "escalation"}
        )

        assert status == 200
        assert body["escalation"]["categoryCode"] == "VS"
        assert "payload" not in body

        fields = incidents.escalations["INC-1001"]
        assert fields["escalation_category"] == "Vessel"
        assert fields["escalation_likelihood"] == "likely"
        assert fields["escalation_contact_email"] == "jaden.smith@psa123.com"
        assert fields["escalation_subject"] == "Escalation - Vessel"

    @pytest.mark.asyncio
    async def test_escalation_sanitize_failure_label(self, make_pipeline):
        result = await make_pipeline(_router(content='{"summary": "x"}')).generate(
            "INC-1001", "escalation"
        )

        assert result.error == "Escalation response was missing required fields."


class TestSideEffects:
    """Test tracking, knowledge context and scoring collaborators"""

    @pytest.mark.asyncio
    async def test_tracks_incident_articles(self, make_pipeline, data_dir, sample_playbook_raw):
        await make_pipeline(_router(content=sample_playbook_raw)).generate("INC-1001", "playbook")

        metrics = json.loads((data_dir / "kb-metrics.json").read_text())
        assert set(metrics["articles"]) == {"EDI queue replay", "Partner connectivity checks"}
        assert metrics["articles"]["EDI queue replay"]["contexts"] == {"playbook_generation": 1}

    @pytest.mark.asyncio
    async def test_scores_are_persisted(self, make_pipeline, data_dir, sample_playbook_raw):
        result = await make_pipeline(_router(content=sample_playbook_raw)).generate(
            "INC-1001", "playbook"
        )

        stored = json.loads((data_dir / "validation-results.json").read_text())
        (record,) = stored["results"].values()
        assert record["module"] == "EDI"
        assert record["overallScore"] == result.metadata["validationScore"]

    @pytest.mark.asyncio
    async def test_collaborator_failures_do_not_fail_request(
        self, make_pipeline, sample_playbook_raw
    ):
        tracker = MagicMock()
        tracker.track_article_access = AsyncMock(side_effect=RuntimeError("disk"))
        validator = MagicMock()
        validator.validate_response = AsyncMock(side_effect=RuntimeError("boom"))
        knowledge = MagicMock()
        knowledge.generate_ai_context.side_effect = RuntimeError("index")

        result = await make_pipeline(
            _router(content=sample_playbook_raw),
            tracker=tracker,
            validator=validator,
            knowledge=knowledge,
        ).generate("INC-1001", "playbook")

        assert isinstance(result, GenerationResponse)
        assert "validationScore" not in result.metadata

    @pytest.mark.asyncio
    async def test_knowledge_context_reaches_prompt(self, make_pipeline, sample_playbook_raw):
        knowledge = StaticKnowledgeProvider(
            [KnowledgeArticle(id="KB-1749", title="EDI partner queue", overview="Replay")]
        )
        router = _router(content=sample_playbook_raw)

        await make_pipeline(router, knowledge=knowledge).generate("INC-1001", "playbook")

        prompt = router.generate.call_args.args[0]
        assert "Context: Relevant Knowledge Base Articles:" in prompt

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_articles", [2, 4])
    async def test_knowledge_context_article_limit(
        self, make_pipeline, test_config, sample_playbook_raw, max_articles
    ):
        test_config.prompts.max_kb_articles = max_articles
        knowledge = MagicMock()
        knowledge.generate_ai_context.return_value = "No directly relevant articles."

        await make_pipeline(_router(content=sample_playbook_raw), knowledge=knowledge).generate(
            "INC-1001", "playbook"
        )

        assert knowledge.generate_ai_context.call_args.args[1] == max_articles

    @pytest.mark.asyncio
    async def test_metrics_recorded(self, make_pipeline):
        collector = initialize_metrics(TelemetryConfig())

        await make_pipeline(_router(content="nope")).generate("INC-1001", "playbook")

        sample = collector.registry.get_sample_value
        assert sample(
            "portwarden_sanitize_failures_total", {"intent": "playbook", "reason": "INVALID_JSON"}
        ) == 1
        assert sample(
            "portwarden_generation_requests_total", {"intent": "playbook", "status": "error"}
        ) == 1


    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "router_config",
        [
            LLMRouterConfig(provider="openai"),
            LLMRouterConfig(provider="azure", api_key="key"),
            LLMRouterConfig(provider="local"),
        ],
    )
    async def test_unconfigured_provider_returns_error_body(
        self, test_config, incidents, monkeypatch, router_config
    ):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("AZURE_OPENAI_API_KEY", raising=False)
        test_config.llm.default = "broken"
        test_config.llm.routers = {"broken": router_config}
        pipeline = GenerationPipeline(test_config, LLMRouter(test_config), incidents)

        status, body = await pipeline.handle({"incidentId": "INC-1001", "intent": "playbook"})

        assert status == 500
        assert body["reason"] == "configuration"
        assert body["error"].startswith("LLM provider is not configured:")
        assert incidents.playbooks == {}


class TestMockProviderEndToEnd:
    """Test the pipeline against the bundled mock provider"""

    @pytest.mark.asyncio
    async def test_playbook_and_escalation(self, test_config, incidents, data_dir):
        pipeline = GenerationPipeline(
            test_config,
            LLMRouter(test_config),
            incidents,
            validator=ResponseValidator(data_dir),
        )

        playbook_status, playbook = await pipeline.handle(
            {"incidentId": "INC-1001", "intent": "playbook"}
        )
        escalation_status, escalation = await pipeline.handle(
            {"incidentId": "INC-1001", "intent": "escalation"}
        )

        assert playbook_status == 200
        assert playbook["payload"]["actionSteps"][0]["stepTitle"] == (
            "Check EDI message queue status"
        )
        assert playbook["metadata"]["model"] == "mock-test-model"

        assert escalation_status == 200
        assert escalation["escalation"]["category"] == "Vessel"
        assert escalation["escalation"]["likelihood"] == "likely"
        assert escalation["escalation"]["recommendedMessage"].startswith("Berth allocation")


def test_session_id_format():
    prefix, millis, suffix = generate_session_id().split("_")

    assert prefix == "session"
    assert millis.isdigit()
    assert len(suffix) == 9
    assert suffix.isalnum() and suffix.lower() == suffix
