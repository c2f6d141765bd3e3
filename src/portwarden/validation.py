"""
Response validation framework

Scores AI responses against a rubric of maritime operational procedures:
procedure compliance, accuracy, safety, completeness and clarity. Scores
are advisory. A failing response is logged by the caller, never blocked.
"""

import logging
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from .models import (
    CategoryScore,
    SuiteDocument,
    ValidationResult,
    ValidationResultsDocument,
)
from .observability.metrics import get_metrics
from .scoring import round_half_up
from .store import JsonStateStore

logger = logging.getLogger(__name__)

VALIDATION_FILE = "validation-results.json"
TEST_SUITES_FILE = "test-suites.json"

DEFAULT_PASS_THRESHOLD = 70

# Checked in order; the first module whose keyword appears wins
MODULE_KEYWORDS: list[tuple[str, tuple[str, ...]]] = [
    ("CNTR", ("container", "cntr")),
    ("EDI", ("edi", "edifact")),
    ("VSL", ("vessel", "vsl")),
    ("AUTH", ("auth", "token")),
    ("BOOKING", ("booking",)),
]

_ACTIONABLE_STEPS = re.compile(r"\d+\.|step|first|then|next|finally", re.IGNORECASE)
_STRUCTURE_MARKUP = re.compile(r"##|###|\*\*|1\.|2\.|step", re.IGNORECASE)


def classify_module(text: str) -> str:
    """Route incident text (title + summary) to an operational module"""
    lowered = text.lower()
    for module, keywords in MODULE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return module
    return "GENERAL"


class AccuracyPattern(BaseModel):
    regex: str
    required: bool = True
    description: str
    penalty: int = 15


class SafetyCheck(BaseModel):
    keyword: str
    must_include: bool = True
    description: str


class ModuleRubric(BaseModel):
    """Procedure, accuracy and safety expectations for one module"""

    required_steps: list[str] = Field(default_factory=list)
    prohibited_actions: list[str] = Field(default_factory=list)
    accuracy_patterns: list[AccuracyPattern] = Field(default_factory=list)
    safety_checks: list[SafetyCheck] = Field(default_factory=list)


def _default_modules() -> dict[str, ModuleRubric]:
    general_safety = [
        SafetyCheck(keyword="verify", must_include=False, description="verification step")
    ]
    return {
        "EDI": ModuleRubric(
            required_steps=[
                "verify message format",
                "check partner connectivity",
                "validate mapping",
            ],
            prohibited_actions=["manual data entry", "skip validation"],
            accuracy_patterns=[
                AccuracyPattern(
                    regex="message.*queue|queue.*status",
                    description="message queue reference",
                    penalty=15,
                ),
                AccuracyPattern(
                    regex="partner|connectivity",
                    description="partner connectivity check",
                    penalty=10,
                ),
            ],
            safety_checks=general_safety,
        ),
        "VSL": ModuleRubric(
            required_steps=["check vessel schedule", "verify berth allocation", "confirm ETA"],
            prohibited_actions=["override safety checks", "bypass port authority"],
            accuracy_patterns=[
                AccuracyPattern(
                    regex="ETA|ETB|schedule",
                    description="vessel timing reference",
                    penalty=15,
                ),
                AccuracyPattern(
                    regex="berth|allocation",
                    description="berth allocation check",
                    penalty=10,
                ),
            ],
            safety_checks=[
                SafetyCheck(keyword="safety", description="vessel safety protocols"),
                SafetyCheck(keyword="clearance", description="port clearance procedures"),
            ],
        ),
        "CNTR": ModuleRubric(
            required_steps=[
                "validate container status",
                "check location data",
                "verify ownership",
            ],
            prohibited_actions=[
                "release without documentation",
                "override yard management",
            ],
            accuracy_patterns=[
                AccuracyPattern(
                    regex="container.*status|status.*container",
                    description="container status check",
                    penalty=15,
                ),
                AccuracyPattern(
                    regex="TOS|yard",
                    required=False,
                    description="TOS system reference",
                    penalty=5,
                ),
            ],
            safety_checks=[
                SafetyCheck(keyword="documentation", description="proper documentation"),
                SafetyCheck(keyword="verify", description="verification steps"),
            ],
        ),
        "AUTH": ModuleRubric(
            required_steps=["verify credentials", "check permissions", "log access"],
            prohibited_actions=["share credentials", "bypass authentication"],
            safety_checks=[
                SafetyCheck(keyword="secure", description="security considerations"),
                SafetyCheck(keyword="permission", description="permission validation"),
            ],
        ),
        "GENERAL": ModuleRubric(
            required_steps=["assess situation", "follow protocol"],
            prohibited_actions=["ignore safety", "skip documentation"],
            safety_checks=general_safety,
        ),
    }


class ValidationRubric(BaseModel):
    """Complete scoring rubric; modules without an entry use GENERAL"""

    modules: dict[str, ModuleRubric] = Field(default_factory=_default_modules)
    unsafe_terms: list[str] = Field(
        default_factory=lambda: [
            "bypass",
            "skip verification",
            "ignore warning",
            "override safety",
        ]
    )
    jargon_terms: list[str] = Field(
        default_factory=lambda: ["EDI", "ETA", "ETB", "TOS", "BL", "SOC", "COC"]
    )
    max_jargon_terms: int = 2
    pass_threshold: int = DEFAULT_PASS_THRESHOLD

    def for_module(self, module: str) -> ModuleRubric:
        return self.modules.get(module) or self.modules.get("GENERAL") or ModuleRubric()


def _default_test_suites() -> dict[str, Any]:
    return {
        "EDI": {
            "tests": [
                {
                    "name": "EDI Message Queue Status",
                    "query": "How do I check the EDI message queue status?",
                    "category": "procedure",
                    "expectedOutcome": "Clear steps to check queue with proper verification",
                },
                {
                    "name": "Partner Connectivity Issues",
                    "query": "EDI partner is not responding, what should I do?",
                    "category": "troubleshooting",
                    "expectedOutcome": "Diagnostic steps with escalation path",
                },
            ]
        },
        "VSL": {
            "tests": [
                {
                    "name": "Vessel Schedule Validation",
                    "query": "How do I validate vessel schedule data?",
                    "category": "procedure",
                    "expectedOutcome": "Step-by-step validation with safety checks",
                }
            ]
        },
    }


def _java_string_hash(text: str) -> int:
    """31-multiplier string hash over UTF-16 code units, as a signed 32-bit int"""
    encoded = text.encode("utf-16-le")
    value = 0
    for i in range(0, len(encoded), 2):
        value = (value * 31 + int.from_bytes(encoded[i : i + 2], "little")) & 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def generate_test_id(query: str, module: str) -> str:
    return f"{module}_{abs(_java_string_hash(query))}_{int(time.time() * 1000)}"


class ResponseValidator:
    """
    Scores AI responses and keeps an append-only record of results

    Scoring (`score_response`) is synchronous and pure; `validate_response` adds
    persistence to validation-results.json, recomputing the summary on
    every write.
    """

    def __init__(
        self,
        storage_dir: Path,
        rubric: Optional[ValidationRubric] = None,
    ):
        self.rubric = rubric or ValidationRubric()
        self.results_store = JsonStateStore(
            Path(storage_dir) / VALIDATION_FILE,
            self._default_results,
            ValidationResultsDocument,
        )
        self.suites_store = JsonStateStore(
            Path(storage_dir) / TEST_SUITES_FILE, _default_test_suites, SuiteDocument
        )

    @staticmethod
    def _default_results() -> dict[str, Any]:
        return {
            "results": {},
            "summary": {
                "totalTests": 0,
                "passedTests": 0,
                "failedTests": 0,
                "avgAccuracy": 0,
                "lastRun": datetime.now(timezone.utc).isoformat(),
            },
        }

    def validate_procedure_compliance(self, response: str, module: str) -> CategoryScore:
        rubric = self.rubric.for_module(module)
        lowered = response.lower()
        score = 100
        issues = []

        for step in rubric.required_steps:
            if step.lower() not in lowered:
                score -= 10
                issues.append(f"Missing required step: {step}")

        for action in rubric.prohibited_actions:
            if action.lower() in lowered:
                score -= 20
                issues.append(f"Contains prohibited action: {action}")

        return CategoryScore(
            score=max(0, score), issues=issues, category="procedure_compliance"
        )

    def validate_accuracy(self, response: str, query: str, module: str) -> CategoryScore:
        rubric = self.rubric.for_module(module)
        score = 100
        issues = []

        for pattern in rubric.accuracy_patterns:
            if pattern.required and not re.search(pattern.regex, response, re.IGNORECASE):
                score -= pattern.penalty
                issues.append(f"Missing {pattern.description}")

        tech_errors = self.check_technical_errors(response)
        if tech_errors:
            score -= len(tech_errors) * 10
            issues.extend(tech_errors)

        return CategoryScore(score=max(0, score), issues=issues, category="accuracy")

    def validate_safety(self, response: str, module: str) -> CategoryScore:
        rubric = self.rubric.for_module(module)
        lowered = response.lower()
        score = 100
        issues = []

        for check in rubric.safety_checks:
            if check.must_include and check.keyword.lower() not in lowered:
                score -= 25
                issues.append(f"Missing safety consideration: {check.description}")

        for term in self.rubric.unsafe_terms:
            if term in lowered:
                score -= 30
                issues.append(f"Contains potentially unsafe recommendation: {term}")

        return CategoryScore(score=max(0, score), issues=issues, category="safety")

    def validate_completeness(self, response: str, query: str) -> CategoryScore:
        lowered_query = query.lower()
        lowered = response.lower()
        score = 100
        issues = []

        if len(response) < 100:
            score -= 20
            issues.append("Response may be too brief for complex query")

        if "how" in lowered_query and not _ACTIONABLE_STEPS.search(response):
            score -= 15
            issues.append('Missing clear actionable steps for "how" query')

        if "troubleshoot" in lowered_query or "fix" in lowered_query:
            if "verify" not in lowered and "confirm" not in lowered:
                score -= 10
                issues.append("Missing verification steps for troubleshooting query")

        return CategoryScore(score=max(0, score), issues=issues, category="completeness")

    def validate_clarity(self, response: str) -> CategoryScore:
        score = 100
        issues = []

        if len(response) > 200 and not _STRUCTURE_MARKUP.search(response):
            score -= 15
            issues.append("Long response lacks clear structure or formatting")

        jargon_count = sum(1 for term in self.rubric.jargon_terms if term in response)
        if jargon_count > self.rubric.max_jargon_terms:
            score -= 10
            issues.append("May contain too much technical jargon without explanation")

        return CategoryScore(score=max(0, score), issues=issues, category="clarity")

    @staticmethod
    def check_technical_errors(response: str) -> list[str]:
        errors = []
        if "always" in response and "never" in response:
            errors.append("Contains contradictory absolute statements")
        if "Step 1" in response and "Step 2" not in response:
            errors.append("Incomplete step sequence")
        return errors

    def score_response(
        self,
        query: str,
        ai_response: str,
        module: str = "GENERAL",
        expected_outcome: Optional[str] = None,
    ) -> ValidationResult:
        """Score a response without persisting it"""
        results = {
            "procedureCompliance": self.validate_procedure_compliance(ai_response, module),
            "accuracyCheck": self.validate_accuracy(ai_response, query, module),
            "safetyValidation": self.validate_safety(ai_response, module),
            "completenessCheck": self.validate_completeness(ai_response, query),
            "clarityScore": self.validate_clarity(ai_response),
        }
        overall = round_half_up(
            sum(result.score for result in results.values()) / len(results)
        )
        return ValidationResult(
            test_id=generate_test_id(query, module),
            timestamp=datetime.now(timezone.utc).isoformat(),
            query=query,
            ai_response=ai_response,
            module=module,
            expected_outcome=expected_outcome,
            results=results,
            overall_score=overall,
            passed=overall >= self.rubric.pass_threshold,
        )

    async def validate_response(
        self,
        query: str,
        ai_response: str,
        module: str = "GENERAL",
        expected_outcome: Optional[str] = None,
    ) -> ValidationResult:
        """Score a response and append the result to the validation log"""
        validation = self.score_response(query, ai_response, module, expected_outcome)

        metrics = get_metrics()
        if metrics:
            metrics.record_validation(module, validation.overall_score, validation.passed)

        await self.results_store.update(lambda data: self._append_result(data, validation))
        return validation

    @staticmethod
    def _append_result(data: dict[str, Any], validation: ValidationResult) -> None:
        results = data.setdefault("results", {})
        results[validation.test_id] = validation.to_dict()

        all_results = list(results.values())
        summary = data.setdefault("summary", {})
        summary["totalTests"] = len(all_results)
        summary["passedTests"] = sum(1 for r in all_results if r.get("passed"))
        summary["failedTests"] = sum(1 for r in all_results if not r.get("passed"))
        summary["avgAccuracy"] = round_half_up(
            sum(r.get("overallScore", 0) for r in all_results) / len(all_results)
        )
        summary["lastRun"] = validation.timestamp

    async def get_summary(self) -> dict[str, Any]:
        data = await self.results_store.read()
        return data.get("summary", {})

    @staticmethod
    def generate_mock_response(query: str, module: str) -> str:
        return (
            f"Mock response for {query} in {module} module. "
            "This includes verification steps and follows proper procedures."
        )

    async def run_test_suite(self, module: str = "ALL") -> dict[str, Any]:
        """Run stored test suites against canned responses and summarize"""
        suites = await self.suites_store.read()
        if not self.suites_store.path.exists():
            await self.suites_store.update(lambda data: None)

        modules = list(suites) if module == "ALL" else [m for m in [module] if m in suites]

        tests = []
        for suite_module in modules:
            for test in suites[suite_module].get("tests", []):
                validation = await self.validate_response(
                    test["query"],
                    self.generate_mock_response(test["query"], suite_module),
                    suite_module,
                    test.get("expectedOutcome"),
                )
                tests.append(
                    {
                        **validation.to_dict(),
                        "testName": test.get("name"),
                        "category": test.get("category"),
                    }
                )

        passed = sum(1 for t in tests if t["passed"])
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "module": module,
            "tests": tests,
            "summary": {
                "totalTests": len(tests),
                "passed": passed,
                "failed": len(tests) - passed,
                "avgScore": (
                    round_half_up(sum(t["overallScore"] for t in tests) / len(tests))
                    if tests
                    else 0
                ),
            },
        }
