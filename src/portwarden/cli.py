"""
Command-line interface for portwarden

Provides CLI commands for:
- Sanitizing raw LLM output: portwarden sanitize --input-file raw.txt
- Scoring a response: portwarden validate --query Q --response-file answer.txt
- Running the built-in validation suites: portwarden run-suite
- Generating a playbook: portwarden generate --incident-file incident.yml
- Knowledge-base usage: portwarden kb-report / portwarden kb-outcome
- Managing configuration: portwarden config --show
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import click
import yaml

from . import __version__
from .config import DEFAULT_CONFIG_FILE, PortwardenConfig, get_config, set_config
from .incidents import InMemoryIncidentStore
from .knowledge import StaticKnowledgeProvider
from .models import SanitizeFailure
from .sanitizer import parse_escalation_json, parse_playbook_json
from .services import PortwardenServices
from .tracker import KnowledgeBaseTracker
from .validation import ResponseValidator, ValidationRubric, classify_module


def _validator(config: PortwardenConfig) -> ResponseValidator:
    return ResponseValidator(
        config.storage.data_dir,
        ValidationRubric(pass_threshold=config.validation.pass_threshold),
    )


def _tracker(config: PortwardenConfig) -> KnowledgeBaseTracker:
    return KnowledgeBaseTracker(
        config.storage.data_dir,
        retention_days=config.tracker.retention_days,
        effectiveness_window=config.tracker.effectiveness_window,
    )


@click.group()
@click.version_option(version=__version__, prog_name="portwarden")
@click.option(
    "--config-file",
    default=DEFAULT_CONFIG_FILE,
    show_default=True,
    help="YAML configuration file (ignored when missing)",
)
def cli(config_file: str):
    """portwarden - AI playbook sanitization and validation for maritime incidents"""
    config = PortwardenConfig.load_from_file(config_file)
    logging.getLogger("portwarden").setLevel(config.log_level.upper())
    set_config(config)


@cli.command()
@click.option(
    "--input-file",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
    help="File containing raw LLM output",
)
@click.option(
    "--intent",
    type=click.Choice(["playbook", "escalation"]),
    default="playbook",
    show_default=True,
)
def sanitize(input_file: str, intent: str):
    """Sanitize raw LLM output into a playbook or escalation plan"""
    raw = Path(input_file).read_text(encoding="utf-8")
    result = parse_playbook_json(raw) if intent == "playbook" else parse_escalation_json(raw)

    if isinstance(result, SanitizeFailure):
        click.echo(f"❌ Sanitization failed: {result.error.value}", err=True)
        raise SystemExit(1)

    click.echo(json.dumps(result.value.to_dict(), indent=2, ensure_ascii=False))


@cli.command()
@click.option("--query", required=True, help="Question or request the response answers")
@click.option(
    "--response-file",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
    help="File containing the AI response",
)
@click.option("--module", default=None, help="Operational module (derived from the query if omitted)")
def validate(query: str, response_file: str, module: Optional[str]):
    """Score an AI response against operational procedures"""
    response = Path(response_file).read_text(encoding="utf-8")
    module = module or classify_module(query)

    validation = asyncio.run(_validator(get_config()).validate_response(query, response, module))

    status = "✅ PASSED" if validation.passed else "❌ FAILED"
    click.echo(f"🧪 Validation for module {module}: {validation.overall_score}% {status}")
    click.echo("=" * 50)
    for name, result in validation.results.items():
        click.echo(f"{name}: {result.score}")
        for issue in result.issues:
            click.echo(f"  - {issue}")


@cli.command("run-suite")
@click.option("--module", default="ALL", show_default=True, help="Suite to run (EDI, VSL or ALL)")
def run_suite(module: str):
    """Run the stored validation test suites"""
    report = asyncio.run(_validator(get_config()).run_test_suite(module))
    summary = report["summary"]

    click.echo(f"🧪 Test suite {module}")
    click.echo("=" * 40)
    for test in report["tests"]:
        mark = "✅" if test["passed"] else "❌"
        click.echo(f"{mark} [{test['module']}] {test['testName']}: {test['overallScore']}%")
    click.echo(
        f"\nTotal: {summary['totalTests']}  Passed: {summary['passed']}  "
        f"Failed: {summary['failed']}  Avg score: {summary['avgScore']}"
    )


@cli.command()
@click.option(
    "--incident-file",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
    help="YAML/JSON file with one incident or a list of incidents",
)
@click.option("--incident-id", default=None, help="Incident to use (defaults to the first)")
@click.option(
    "--intent",
    type=click.Choice(["playbook", "escalation"]),
    default="playbook",
    show_default=True,
)
@click.option(
    "--knowledge-file",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="YAML list of knowledge-base articles for prompt context",
)
def generate(
    incident_file: str, incident_id: Optional[str], intent: str, knowledge_file: Optional[str]
):
    """Generate a sanitized playbook or escalation plan for an incident"""
    incidents = InMemoryIncidentStore.from_file(Path(incident_file))
    if not incidents.incidents:
        click.echo(f"❌ No incidents found in {incident_file}", err=True)
        raise SystemExit(1)

    knowledge = StaticKnowledgeProvider.from_file(Path(knowledge_file)) if knowledge_file else None
    request = {"incidentId": incident_id or next(iter(incidents.incidents)), "intent": intent}

    async def _run():
        async with PortwardenServices.from_config(get_config(), incidents, knowledge) as services:
            return await services.pipeline.handle(request)

    status, body = asyncio.run(_run())

    if status != 200:
        reason = f" ({body['reason']})" if body.get("reason") else ""
        click.echo(f"❌ Generation failed [{status}]: {body['error']}{reason}", err=True)
        raise SystemExit(1)

    click.echo(f"📋 {intent.capitalize()} for {request['incidentId']} (session {body['sessionId']})")
    click.echo("=" * 50)
    click.echo(body["output"])
    score = body["metadata"].get("validationScore")
    if score is not None:
        click.echo(f"\n🧪 Validation score: {score}%")


@cli.command("kb-report")
@click.option("--days", default=7, show_default=True, type=click.IntRange(min=1))
def kb_report(days: int):
    """Show knowledge-base usage analytics and recommendations"""
    tracker = _tracker(get_config())

    async def _collect():
        return (
            await tracker.get_usage_analytics(days),
            await tracker.get_articles_needing_review(),
            await tracker.generate_recommendations(),
        )

    analytics, review, recommendations = asyncio.run(_collect())

    click.echo(f"📊 Knowledge base usage ({analytics['period']})")
    click.echo("=" * 40)
    click.echo(f"Total access: {analytics['totalAccess']}")
    click.echo(f"Unique articles: {analytics['uniqueArticles']}")
    buckets = analytics["effectiveness"]
    click.echo(
        f"Effectiveness: high={buckets['high']} medium={buckets['medium']} low={buckets['low']}"
    )

    if analytics["topArticles"]:
        click.echo("\nTop articles:")
        for article in analytics["topArticles"]:
            click.echo(f"  - {article['title']} ({article['count']})")

    if review:
        click.echo("\n⚠️  Articles needing review:")
        for article in review:
            click.echo(
                f"  - {article['title']} (effectiveness {article['effectiveness']}): "
                f"{', '.join(article['issues']) or 'no specific issues'}"
            )

    if recommendations:
        click.echo("\n💡 Recommendations:")
        for rec in recommendations:
            click.echo(f"  [{rec['priority']}] {rec['description']}")


@cli.command("kb-outcome")
@click.option("--article", required=True, help="Knowledge-base article title")
@click.option("--success/--failure", default=True, help="Whether the incident was resolved")
@click.option("--minutes", required=True, type=click.FloatRange(min=0), help="Resolution time")
@click.option("--feedback", default=None, help="Free-text feedback")
def kb_outcome(article: str, success: bool, minutes: float, feedback: Optional[str]):
    """Record how an incident that used an article was resolved"""
    tracker = _tracker(get_config())
    effectiveness = asyncio.run(
        tracker.track_resolution_outcome(article, success, minutes, feedback)
    )
    if effectiveness is None:
        click.echo(f"⚠️  Article '{article}' has no recorded usage; outcome ignored")
        return
    click.echo(f"✅ Recorded outcome for '{article}', effectiveness now {effectiveness}")


@cli.command()
@click.option("--show", is_flag=True, help="Show current configuration")
@click.option("--format", type=click.Choice(["yaml", "json"]), default="yaml", help="Output format")
def config(show: bool, format: str):
    """Manage portwarden configuration"""
    if not show:
        click.echo("Use --show to display current configuration")
        click.echo("Available options:")
        click.echo("  --show          Show current configuration")
        click.echo("  --format yaml   Output in YAML format (default)")
        click.echo("  --format json   Output in JSON format")
        return

    config_dict = get_config().model_dump(mode="json")
    for router in config_dict["llm"]["routers"].values():
        if router.get("api_key"):
            router["api_key"] = "***"

    click.echo("🔧 Current portwarden Configuration")
    click.echo("=" * 40)
    if format == "yaml":
        click.echo(yaml.safe_dump(config_dict, default_flow_style=False, indent=2))
    else:
        click.echo(json.dumps(config_dict, indent=2))


def main():
    """Entry point for the CLI"""
    cli()


if __name__ == "__main__":
    main()
