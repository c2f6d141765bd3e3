"""
Test suite for prompt construction

Tests prompt context flattening, template rendering and structured output
formats.
"""

import jinja2
import pytest

from portwarden.models import Incident
from portwarden.prompting import (
    PLAYBOOK_SCHEMA,
    PromptManager,
    build_prompt_context,
    response_format_for,
)


class TestBuildPromptContext:
    """Test build_prompt_context"""

    def test_flattened_fields(self, sample_incident):
        context = build_prompt_context(sample_incident)

        assert context["kb_refs"] == (
            "[KB-1749] EDI queue replay, [KB-2001] Partner connectivity checks"
        )
        assert context["action_summary"] == (
            "1. Check queue depth (KB-1749): Confirm the backlog size"
        )
        assert context["evidence"] == (
            "edi-gateway: ACK timeout for partner MAEU after 300s..."
        )
        assert context["escalation_line"] == "Escalation: Tom Tan (EDI/API)"
        assert context["guidance"].endswith("verify acknowledgements....")
        assert context["ai_context"] == ""

    def test_truncation(self, sample_incident):
        incident = sample_incident.model_copy(
            update={"rag_extract": "g" * 400}
        )
        context = build_prompt_context(incident, ai_context="c" * 250)

        assert context["ai_context"] == "c" * 200 + "..."
        assert context["guidance"] == "g" * 150 + "..."

    def test_short_ai_context_is_not_truncated(self, sample_incident):
        assert build_prompt_context(sample_incident, "short")["ai_context"] == "short"

    def test_no_escalation(self):
        context = build_prompt_context(Incident(id="INC-1", title="Gate slow"))

        assert context["escalation_line"] == "No escalation required"
        assert context["evidence"] == ""
        assert context["guidance"] == ""


class TestPromptManager:
    """Test PromptManager rendering"""

    def setup_method(self):
        """Setup test fixtures"""
        self.manager = PromptManager()

    def test_playbook_prompt(self, sample_incident):
        prompt = self.manager.build_prompt(sample_incident, "playbook", ai_context="KB context")
        lines = prompt.splitlines()

        assert lines[0] == "INC-1001: EDI messages stuck in partner queue (High)"
        assert "Channel: Email | Persona: Duty Officer" in lines
        assert "Context: KB context" in lines
        assert "Escalation: Tom Tan (EDI/API)" in lines
        assert any(line.startswith("Guidance: Replay messages") for line in lines)
        assert "EDI/API (EA)" in lines
        assert "Choose category from: Container, Vessel" in prompt
        assert prompt.endswith("outside the JSON object.")

    def test_escalation_prompt(self, sample_incident):
        prompt = self.manager.build_prompt(sample_incident, "escalation")

        assert "Assess whether this incident needs escalation." in prompt
        assert "Context:" not in prompt

    def test_minimal_incident_renders(self):
        prompt = self.manager.build_prompt(Incident(id="INC-2", title="Gate slow"), "playbook")

        assert prompt.startswith(": Gate slow (Medium)")
        assert "Evidence:" not in prompt
        assert "Guidance:" not in prompt

    def test_template_meta(self):
        meta = self.manager.load_template_meta("playbook:v1")

        assert meta["response_format"] == "portwarden_playbook"

    def test_missing_meta_is_empty(self, tmp_path):
        assert PromptManager(tmp_path).load_template_meta("playbook:v1") == {}

    def test_missing_template_raises(self, sample_incident):
        with pytest.raises(jinja2.TemplateNotFound):
            self.manager.build_prompt(sample_incident, "playbook", version="v9")

    def test_custom_prompts_dir(self, tmp_path, sample_incident):
        template_dir = tmp_path / "playbook" / "v2"
        template_dir.mkdir(parents=True)
        (template_dir / "template.jinja2").write_text("{{ incident.id }} / {{ category_hint }}\n")

        prompt = PromptManager(tmp_path).build_prompt(sample_incident, "playbook", version="v2")

        assert prompt.startswith("INC-1001 / Choose category from:")


class TestResponseFormat:
    """Test response_format_for"""

    def test_playbook_schema(self):
        response_format = response_format_for("playbook")

        assert response_format["type"] == "json_schema"
        assert response_format["json_schema"]["name"] == "portwarden_playbook"
        assert response_format["json_schema"]["strict"] is True
        assert response_format["json_schema"]["schema"] is PLAYBOOK_SCHEMA

    def test_strict_schemas_require_every_property(self):
        def check(schema):
            if schema.get("type") == "object":
                assert set(schema["required"]) == set(schema["properties"])
                for child in schema["properties"].values():
                    check(child)
            items = schema.get("items")
            if isinstance(items, dict):
                check(items)

        check(response_format_for("playbook")["json_schema"]["schema"])
        check(response_format_for("escalation")["json_schema"]["schema"])
