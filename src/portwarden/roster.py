"""
Escalation contact roster

Static, authoritative mapping of operational categories to the people who
own them. Escalation plans proposed by the LLM are resolved against this
roster so that free-text category labels land on canonical contacts.
"""

from collections.abc import Iterable
from typing import Optional

from .models import ContactRosterEntry, EscalationContact
from .text import normalize_email

PRODUCT_ESCALATION_CONTACTS: tuple[ContactRosterEntry, ...] = (
    ContactRosterEntry(
        category="Container",
        code="CNTR",
        primary_contact=EscalationContact(
            name="Mark Lee", email="mark.lee@psa123.com", role="Product Ops Manager"
        ),
        responsibilities="Oversees all container-related product incidents and operational issues.",
        guidelines=(
            "Notify the Product Duty contact immediately.",
            "If unresolved quickly escalate to the on-call manager.",
            "Engage the SRE/Infra team when platform-level intervention is required.",
        ),
    ),
    ContactRosterEntry(
        category="Vessel",
        code="VS",
        primary_contact=EscalationContact(
            name="Jaden Smith",
            email="jaden.smith@psa123.com",
            role="Vessel Operations Lead",
        ),
        responsibilities="Coordinates vessel management issues and complex troubleshooting.",
        guidelines=(
            "Page the Vessel Duty team first.",
            "If there is no response, escalate to the Senior Ops Manager.",
            "Loop in the Vessel Static team for deeper diagnostics as needed.",
        ),
    ),
    ContactRosterEntry(
        category="EDI/API",
        code="EA",
        primary_contact=EscalationContact(
            name="Tom Tan", email="tom.tan@psa123.com", role="EDI/API Support Lead"
        ),
        responsibilities=(
            "Handles EDI/API incidents covering message validation, partner "
            "communication, and integration errors."
        ),
        guidelines=(
            "Contact the EDI/API on-call channel immediately.",
            "Escalate to the Infra/SRE team for sustained API failures.",
            "Coordinate with partner organizations if issues continue.",
        ),
    ),
    ContactRosterEntry(
        category="Infrastructure / SRE",
        code="INFRA",
        primary_contact=EscalationContact(
            name="Jacky Chan",
            email="jacky.chan@psa123.com",
            role="Infra/SRE Support Lead",
        ),
        responsibilities=(
            "Responds to system infrastructure problems such as latency or "
            "network instability."
        ),
        guidelines=(
            "Engage the Infra team immediately for any platform outage symptoms.",
            "Highlight urgent cases directly to Jacky Chan (SRE lead).",
        ),
    ),
    ContactRosterEntry(
        category="Helpdesk",
        code="HELPDESK",
        primary_contact=EscalationContact(
            name="PSA Helpdesk", email="support@psa123.com", role="General Support"
        ),
        responsibilities="Frontline for general inquiries and non-technical escalations.",
        guidelines=(
            "Route non-urgent queries to the helpdesk team lead.",
            "For emergencies, trigger the on-call operations team immediately.",
        ),
    ),
)


class ContactRoster:
    """
    Read-only lookup over roster entries

    Builds three indices (lowercased email, code and category) once at
    construction. Resolution tries them in that order and the first hit wins.
    """

    def __init__(self, entries: Iterable[ContactRosterEntry] = PRODUCT_ESCALATION_CONTACTS):
        self.entries: tuple[ContactRosterEntry, ...] = tuple(entries)
        self._by_category = {entry.category.lower(): entry for entry in self.entries}
        self._by_code = {entry.code.lower(): entry for entry in self.entries}
        self._by_email = {
            entry.primary_contact.email.lower(): entry for entry in self.entries
        }

    def resolve(
        self, category: str = "", code: str = "", email: str = ""
    ) -> Optional[ContactRosterEntry]:
        """Find the roster entry for a proposed email, code or category"""
        email_key = normalize_email(email)
        if email_key and email_key in self._by_email:
            return self._by_email[email_key]
        if code:
            match = self._by_code.get(code.lower())
            if match:
                return match
        if category:
            match = self._by_category.get(category.lower())
            if match:
                return match
        return None

    def categories(self) -> list[str]:
        return [entry.category for entry in self.entries]

    def category_hint(self) -> str:
        return f"Choose category from: {', '.join(self.categories())}"

    def format_for_prompt(self) -> str:
        """Render the roster as prompt context, one block per category"""
        blocks = []
        for entry in self.entries:
            contact = entry.primary_contact
            blocks.append(
                "\n".join(
                    [
                        f"{entry.category} ({entry.code})",
                        f"Primary: {contact.name} <{contact.email}> ({contact.role})",
                        f"Responsibilities: {entry.responsibilities}",
                        f"Guidelines: {' | '.join(entry.guidelines)}",
                    ]
                )
            )
        return "\n\n".join(blocks)


default_roster = ContactRoster()


def resolve_contact_roster_entry(
    category: str = "", code: str = "", email: str = ""
) -> Optional[ContactRosterEntry]:
    """Resolve against the built-in product roster"""
    return default_roster.resolve(category=category, code=code, email=email)
