"""
Core data models for portwarden

Defines the playbook and escalation contract, the contact roster records,
validation results and knowledge-base usage metrics using Pydantic for
strict typing and camelCase wire serialization.
"""

from enum import Enum
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, RootModel
from pydantic.alias_generators import to_camel

Likelihood = Literal["likely", "unlikely", "uncertain"]
Intent = Literal["playbook", "escalation"]


class WireModel(BaseModel):
    """Base model serialized with camelCase keys, accepting either form on input"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        """Dump using wire (camelCase) names, omitting unset optionals"""
        return self.model_dump(by_alias=True, exclude_none=True)


class EscalationContact(WireModel):
    """A person or mailbox an incident can be escalated to"""

    name: str = ""
    email: str
    role: str = ""


class ContactRosterEntry(WireModel):
    """Authoritative category-to-contact mapping, immutable at runtime"""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    category: str
    code: str
    primary_contact: EscalationContact
    responsibilities: str = ""
    guidelines: tuple[str, ...] = ()


class ActionStep(WireModel):
    """A single remediation step and where it executes"""

    step_title: str
    execution_context: str
    procedure: list[str] = Field(min_length=1)
    checklist_items: Optional[list[str]] = None


class Checklist(WireModel):
    """Checklist, optionally tied to an action step by title"""

    title: str
    items: list[str] = Field(min_length=1)
    related_step: Optional[str] = None


class EscalationPlan(WireModel):
    """Escalation recommendation resolved against the contact roster"""

    category: str
    category_code: str
    likelihood: Likelihood = "uncertain"
    summary: str
    reasoning: str = ""
    recommended_subject: str
    recommended_message: str
    primary_contact: EscalationContact
    alternate_contacts: Optional[list[EscalationContact]] = None


class PlaybookPayload(WireModel):
    """Sanitized playbook returned for a playbook generation request"""

    important_safety_notes: list[str] = Field(min_length=1)
    action_steps: list[ActionStep] = Field(min_length=1)
    verification_steps: list[str] = Field(min_length=1)
    checklists: list[Checklist] = Field(min_length=1)
    escalation_plan: EscalationPlan
    ai_description: str = Field(min_length=1)


class SanitizeError(str, Enum):
    """Reasons a generated payload is rejected"""

    INVALID_JSON = "INVALID_JSON"
    INVALID_STRUCTURE = "INVALID_STRUCTURE"
    MISSING_FIELDS = "MISSING_FIELDS"


class SanitizeOk(BaseModel):
    """Successful playbook sanitization"""

    ok: Literal[True] = True
    value: PlaybookPayload


class EscalationOk(BaseModel):
    """Successful standalone escalation sanitization"""

    ok: Literal[True] = True
    value: EscalationPlan


class SanitizeFailure(BaseModel):
    """Failed sanitization with the reason"""

    ok: Literal[False] = False
    error: SanitizeError


SanitizeResult = Union[SanitizeOk, SanitizeFailure]
EscalationResult = Union[EscalationOk, SanitizeFailure]


class CategoryScore(BaseModel):
    """Score and issues for a single validation category"""

    score: int = Field(ge=0, le=100)
    issues: list[str] = Field(default_factory=list)
    category: str


class ValidationResult(WireModel):
    """Advisory quality assessment of one AI response"""

    test_id: str
    timestamp: str
    query: str
    ai_response: str
    module: str
    expected_outcome: Optional[str] = None
    results: dict[str, CategoryScore] = Field(default_factory=dict)
    overall_score: int = Field(default=0, ge=0, le=100)
    passed: bool = False

    def to_dict(self) -> dict[str, Any]:
        # expectedOutcome is kept even when null so stored records are uniform
        return self.model_dump(by_alias=True)


class ResolutionSample(WireModel):
    """Outcome of an incident resolution in which an article was involved"""

    timestamp: str
    successful: bool
    resolution_time: float
    feedback: Optional[str] = None


class ArticleUsageMetric(WireModel):
    """Aggregate usage and effectiveness for a knowledge-base article"""

    title: str
    access_count: int = 0
    contexts: dict[str, int] = Field(default_factory=dict)
    effectiveness: int = Field(default=0, ge=0, le=100)
    resolution_correlation: list[ResolutionSample] = Field(default_factory=list)
    first_accessed: str
    last_accessed: str

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class UsageEvent(WireModel):
    """Single article access event in the usage log"""

    timestamp: str
    article_title: str
    context: str
    session_id: Optional[str] = None
    day: str

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class DailyStats(WireModel):
    """Per-day access aggregate"""

    articles: dict[str, int] = Field(default_factory=dict)
    total_access: int = 0
    unique_articles: int = 0


class TrackerSummary(WireModel):
    """Aggregates kept alongside the per-article metrics"""

    total_articles: int = 0
    total_usage: int = 0
    avg_effectiveness: float = 0
    last_updated: str = ""


class ArticleMetricsDocument(WireModel):
    """Shape of kb-metrics.json"""

    articles: dict[str, ArticleUsageMetric] = Field(default_factory=dict)
    summary: TrackerSummary = Field(default_factory=TrackerSummary)


class UsageLogDocument(WireModel):
    """Shape of kb-usage.json"""

    sessions: list[dict[str, Any]] = Field(default_factory=list)
    daily_stats: dict[str, DailyStats] = Field(default_factory=dict)
    last_reset: str = ""


class ValidationResultsDocument(WireModel):
    """Shape of validation-results.json"""

    results: dict[str, ValidationResult] = Field(default_factory=dict)
    summary: dict[str, Any] = Field(default_factory=dict)


class SuiteTestCase(WireModel):
    """Canned query replayed by the test-suite runner"""

    name: str = ""
    query: str
    category: str = ""
    expected_outcome: Optional[str] = None


class ModuleSuite(WireModel):
    """Canned queries for one module"""

    tests: list[SuiteTestCase] = Field(default_factory=list)


class SuiteDocument(RootModel[dict[str, ModuleSuite]]):
    """Shape of test-suites.json, keyed by module code"""


class IncidentKnowledge(WireModel):
    """Knowledge-base article attached to an incident"""

    reference: str
    title: str
    summary: str = ""


class IncidentAction(WireModel):
    """Operator-curated recommended action"""

    label: str
    explanation: str = ""
    cite: str = ""


class IncidentEvidence(WireModel):
    """Correlated log or data evidence"""

    source: str
    message: str
    type: str = "log"


class IncidentEscalation(WireModel):
    """Escalation hint recorded on the incident"""

    required: bool = False
    summary: str = ""
    owner: Optional[str] = None
    team: Optional[str] = None


class Incident(WireModel):
    """Incident record as consumed by prompt construction"""

    id: str
    display_id: str = ""
    title: str
    summary: str = ""
    channel: str = ""
    severity: str = "Medium"
    persona: str = ""
    knowledge_base: list[IncidentKnowledge] = Field(default_factory=list)
    recommended_actions: list[IncidentAction] = Field(default_factory=list)
    correlated_evidence: list[IncidentEvidence] = Field(default_factory=list)
    escalation: IncidentEscalation = Field(default_factory=IncidentEscalation)
    rag_extract: str = ""


class GenerationResponse(WireModel):
    """Successful generation returned to the HTTP layer"""

    output: str
    payload: Optional[PlaybookPayload] = None
    escalation: Optional[EscalationPlan] = None
    session_id: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class GenerationError(WireModel):
    """Structured generation failure with an HTTP-style status"""

    error: str
    reason: Optional[str] = None
    status_code: int = 502

    def to_body(self) -> dict[str, Any]:
        """Response body without the transport status"""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"status_code"})
