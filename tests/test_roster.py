"""
Test suite for the escalation contact roster

Tests lookup priority, case handling and prompt formatting.
"""

import pytest
from pydantic import ValidationError

from portwarden.roster import (
    PRODUCT_ESCALATION_CONTACTS,
    ContactRoster,
    default_roster,
    resolve_contact_roster_entry,
)


class TestContactRoster:
    """Test ContactRoster.resolve"""

    def test_email_beats_category(self):
        entry = default_roster.resolve(category="Container", email="tom.tan@psa123.com")

        assert entry.code == "EA"

    def test_code_beats_category(self):
        entry = default_roster.resolve(category="Container", code="VS")

        assert entry.category == "Vessel"

    def test_unknown_email_falls_through_to_code(self):
        entry = default_roster.resolve(code="INFRA", email="someone@elsewhere.com")

        assert entry.primary_contact.name == "Jacky Chan"

    def test_lookups_are_case_insensitive(self):
        assert default_roster.resolve(category="edi/api").code == "EA"
        assert default_roster.resolve(code="helpdesk").category == "Helpdesk"
        assert default_roster.resolve(email=" MARK.LEE@PSA123.COM ").code == "CNTR"

    def test_no_match(self):
        assert default_roster.resolve(category="Security") is None
        assert default_roster.resolve() is None

    def test_module_level_resolver(self):
        entry = resolve_contact_roster_entry(category="Infrastructure / SRE")

        assert entry.code == "INFRA"

    def test_entries_are_frozen(self):
        with pytest.raises(ValidationError):
            PRODUCT_ESCALATION_CONTACTS[0].code = "X"


class TestRosterPromptHelpers:
    """Test prompt formatting helpers"""

    def test_categories(self):
        assert default_roster.categories() == [
            "Container",
            "Vessel",
            "EDI/API",
            "Infrastructure / SRE",
            "Helpdesk",
        ]

    def test_category_hint(self):
        assert default_roster.category_hint().startswith("Choose category from: Container, ")

    def test_format_for_prompt(self):
        block = ContactRoster(PRODUCT_ESCALATION_CONTACTS[:1]).format_for_prompt()

        assert block.splitlines()[0] == "Container (CNTR)"
        assert "Primary: Mark Lee <mark.lee@psa123.com> (Product Ops Manager)" in block
        assert "Guidelines: Notify the Product Duty contact immediately. | " in block
