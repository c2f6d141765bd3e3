"""
Pytest configuration and shared fixtures for portwarden tests

Provides configuration pointing at temporary storage, sample incidents and
raw LLM outputs.
"""

import json

import pytest

from portwarden.config import LLMRouterConfig, PortwardenConfig, set_config
from portwarden.models import Incident
from portwarden.observability import metrics as metrics_module
from portwarden.observability import tracer as tracer_module


@pytest.fixture(autouse=True)
def reset_globals():
    """Keep process-wide config and telemetry from leaking between tests"""
    yield
    set_config(None)
    metrics_module.reset_metrics()
    tracer_module.reset_tracing()


@pytest.fixture
def test_config(tmp_path):
    """Configuration with a mock LLM router and temporary storage"""
    config = PortwardenConfig()
    config.llm.default = "mock"
    config.llm.routers = {"mock": LLMRouterConfig(provider="mock", model="test-model")}
    config.storage.data_dir = tmp_path / "data"
    return config


@pytest.fixture
def sample_playbook_data():
    """Decoded playbook JSON as the LLM would return it"""
    return {
        "importantSafetyNotes": ["Wear PPE"],
        "actionSteps": [
            {
                "stepTitle": "Check queue",
                "executionContext": "database",
                "procedure": ["Run SELECT"],
            }
        ],
        "verificationSteps": ["Confirm queue empty"],
        "checklists": [{"title": "Ready", "items": ["Verified"]}],
        "escalationPlan": {
            "category": "EDI/API",
            "primaryContact": {"email": "tom.tan@psa123.com"},
            "summary": "Resolved",
        },
        "aiDescription": "Summary",
    }


@pytest.fixture
def sample_playbook_raw(sample_playbook_data):
    """Fenced raw LLM output for the sample playbook"""
    return "```json\n" + json.dumps(sample_playbook_data) + "\n```"


@pytest.fixture
def sample_incident():
    """Provide a sample EDI incident"""
    return Incident.model_validate(
        {
            "id": "INC-1001",
            "displayId": "INC-1001",
            "title": "EDI messages stuck in partner queue",
            "summary": "COARRI messages to a shipping line are not being acknowledged.",
            "channel": "Email",
            "severity": "High",
            "persona": "Duty Officer",
            "knowledgeBase": [
                {"reference": "KB-1749", "title": "EDI queue replay", "summary": "Replay steps"},
                {"reference": "KB-2001", "title": "Partner connectivity checks"},
            ],
            "recommendedActions": [
                {
                    "label": "Check queue depth",
                    "explanation": "Confirm the backlog size",
                    "cite": "KB-1749",
                }
            ],
            "correlatedEvidence": [
                {"source": "edi-gateway", "message": "ACK timeout for partner MAEU after 300s"}
            ],
            "escalation": {"required": True, "owner": "Tom Tan", "team": "EDI/API"},
            "ragExtract": "Replay messages in batches of 50 and verify acknowledgements.",
        }
    )
