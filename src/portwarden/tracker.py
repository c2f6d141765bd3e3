"""
Knowledge-base usage and effectiveness tracker

Records which articles were used to build prompts and how the incidents
they were involved in were resolved, and answers aggregate questions
(most effective articles, articles needing review, usage analytics).
"""

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from .models import (
    ArticleMetricsDocument,
    ArticleUsageMetric,
    DailyStats,
    ResolutionSample,
    UsageEvent,
    UsageLogDocument,
)
from .observability.metrics import get_metrics
from .scoring import (
    EFFECTIVENESS_WINDOW,
    average_resolution_minutes,
    calculate_effectiveness,
    round_half_up,
    success_rate_percent,
)
from .store import JsonStateStore

logger = logging.getLogger(__name__)

METRICS_FILE = "kb-metrics.json"
USAGE_FILE = "kb-usage.json"

REVIEW_MIN_ACCESS = 3
REVIEW_MAX_EFFECTIVENESS = 50
UPDATE_MIN_ACCESS = 5
UPDATE_MAX_EFFECTIVENESS = 60
HIGH_EFFECTIVENESS = 70
MEDIUM_EFFECTIVENESS = 40


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class KnowledgeBaseTracker:
    """
    Article usage tracker backed by two JSON documents

    kb-metrics.json holds per-article aggregates, kb-usage.json holds the
    access event log and daily aggregates. Each write goes through the
    owning store's serialized update, so concurrent tracking calls never
    lose increments.
    """

    def __init__(
        self,
        storage_dir: Path,
        retention_days: int = 30,
        effectiveness_window: int = EFFECTIVENESS_WINDOW,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.storage_dir = Path(storage_dir)
        self.retention_days = retention_days
        self.effectiveness_window = effectiveness_window
        self._clock = clock
        self.metrics_store = JsonStateStore(
            self.storage_dir / METRICS_FILE, self._default_metrics, ArticleMetricsDocument
        )
        self.usage_store = JsonStateStore(
            self.storage_dir / USAGE_FILE, self._default_usage, UsageLogDocument
        )

    def _default_metrics(self) -> dict[str, Any]:
        return {
            "articles": {},
            "summary": {
                "totalArticles": 0,
                "totalUsage": 0,
                "avgEffectiveness": 0,
                "lastUpdated": self._clock().isoformat(),
            },
        }

    def _default_usage(self) -> dict[str, Any]:
        return {
            "sessions": [],
            "dailyStats": {},
            "lastReset": self._clock().isoformat(),
        }

    @staticmethod
    def _articles(metrics: dict[str, Any]) -> dict[str, ArticleUsageMetric]:
        return {
            title: ArticleUsageMetric.model_validate(raw)
            for title, raw in metrics.get("articles", {}).items()
        }

    def _refresh_summary(self, metrics: dict[str, Any], timestamp: str) -> None:
        summary = metrics.setdefault("summary", {})
        articles = metrics.get("articles", {})
        summary["totalArticles"] = len(articles)
        summary["avgEffectiveness"] = (
            round_half_up(
                sum(a.get("effectiveness", 0) for a in articles.values()) / len(articles)
            )
            if articles
            else 0
        )
        summary["lastUpdated"] = timestamp

    async def track_article_access(
        self,
        article_title: str,
        context: str = "search",
        session_id: Optional[str] = None,
    ) -> None:
        """Record one access of an article and prune stale usage events"""
        now = self._clock()
        timestamp = now.isoformat()
        today = now.date().isoformat()

        def record_metrics(metrics: dict[str, Any]) -> None:
            articles = metrics.setdefault("articles", {})
            raw = articles.get(article_title)
            article = (
                ArticleUsageMetric.model_validate(raw)
                if raw
                else ArticleUsageMetric(
                    title=article_title, first_accessed=timestamp, last_accessed=timestamp
                )
            )
            article.access_count += 1
            article.last_accessed = timestamp
            article.contexts[context] = article.contexts.get(context, 0) + 1
            articles[article_title] = article.to_dict()

            summary = metrics.setdefault("summary", {})
            summary["totalUsage"] = summary.get("totalUsage", 0) + 1
            self._refresh_summary(metrics, timestamp)

        def record_usage(usage: dict[str, Any]) -> None:
            sessions = usage.setdefault("sessions", [])
            sessions.append(
                UsageEvent(
                    timestamp=timestamp,
                    article_title=article_title,
                    context=context,
                    session_id=session_id,
                    day=today,
                ).to_dict()
            )

            daily = usage.setdefault("dailyStats", {})
            stats = DailyStats.model_validate(daily.get(today, {}))
            stats.total_access += 1
            if article_title not in stats.articles:
                stats.articles[article_title] = 0
                stats.unique_articles += 1
            stats.articles[article_title] += 1
            daily[today] = stats.to_dict()

            cutoff = now - timedelta(days=self.retention_days)
            usage["sessions"] = [
                event
                for event in sessions
                if (ts := _parse_timestamp(event.get("timestamp"))) and ts > cutoff
            ]

        await self.metrics_store.update(record_metrics)
        await self.usage_store.update(record_usage)

        metrics = get_metrics()
        if metrics:
            metrics.record_article_access(context)
        logger.debug(f"Tracked access of '{article_title}' ({context})")

    async def track_resolution_outcome(
        self,
        article_title: str,
        was_successful: bool,
        resolution_time_minutes: float,
        feedback: Optional[str] = None,
    ) -> Optional[int]:
        """
        Correlate an incident resolution with an article

        Unknown articles are ignored. Returns the recomputed effectiveness
        score, or None when the article has never been accessed.
        """
        timestamp = self._clock().isoformat()

        def record(metrics: dict[str, Any]) -> Optional[int]:
            articles = metrics.setdefault("articles", {})
            raw = articles.get(article_title)
            if not raw:
                return None
            article = ArticleUsageMetric.model_validate(raw)
            article.resolution_correlation.append(
                ResolutionSample(
                    timestamp=timestamp,
                    successful=was_successful,
                    resolution_time=resolution_time_minutes,
                    feedback=feedback,
                )
            )
            article.effectiveness = calculate_effectiveness(
                article.resolution_correlation, self.effectiveness_window
            )
            articles[article_title] = article.to_dict()
            self._refresh_summary(metrics, timestamp)
            return article.effectiveness

        effectiveness = await self.metrics_store.update(record)
        if effectiveness is None:
            logger.debug(f"Ignoring resolution outcome for unknown article '{article_title}'")
        return effectiveness

    async def get_most_effective_articles(
        self, context: Optional[str] = None, limit: int = 5
    ) -> list[dict[str, Any]]:
        articles = list(self._articles(await self.metrics_store.read()).values())
        if context:
            articles = [a for a in articles if a.contexts.get(context, 0) > 0]
        articles.sort(key=lambda a: a.effectiveness, reverse=True)
        return [
            {
                "title": a.title,
                "effectiveness": a.effectiveness,
                "accessCount": a.access_count,
                "successRate": success_rate_percent(a.resolution_correlation),
                "avgResolutionTime": average_resolution_minutes(a.resolution_correlation),
            }
            for a in articles[:limit]
        ]

    async def get_articles_needing_review(self) -> list[dict[str, Any]]:
        """Frequently used articles (3+ accesses) with effectiveness below 50"""
        articles = [
            a
            for a in self._articles(await self.metrics_store.read()).values()
            if a.access_count >= REVIEW_MIN_ACCESS
            and a.effectiveness < REVIEW_MAX_EFFECTIVENESS
        ]
        articles.sort(key=lambda a: a.effectiveness)
        return [
            {
                "title": a.title,
                "effectiveness": a.effectiveness,
                "accessCount": a.access_count,
                "successRate": success_rate_percent(a.resolution_correlation),
                "issues": self.identify_article_issues(a),
            }
            for a in articles
        ]

    async def get_usage_analytics(self, days: int = 7) -> dict[str, Any]:
        usage = await self.usage_store.read()
        articles = self._articles(await self.metrics_store.read()).values()

        cutoff = self._clock() - timedelta(days=days)
        recent = [
            event
            for event in usage.get("sessions", [])
            if (ts := _parse_timestamp(event.get("timestamp"))) and ts > cutoff
        ]

        top_articles = Counter(event.get("articleTitle") for event in recent)
        context_breakdown = Counter(event.get("context") for event in recent)

        return {
            "period": f"{days} days",
            "totalAccess": len(recent),
            "uniqueArticles": len(top_articles),
            "topArticles": [
                {"title": title, "count": count}
                for title, count in top_articles.most_common(10)
            ],
            "contextBreakdown": dict(context_breakdown),
            "effectiveness": {
                "high": sum(1 for a in articles if a.effectiveness >= HIGH_EFFECTIVENESS),
                "medium": sum(
                    1
                    for a in articles
                    if MEDIUM_EFFECTIVENESS <= a.effectiveness < HIGH_EFFECTIVENESS
                ),
                "low": sum(1 for a in articles if a.effectiveness < MEDIUM_EFFECTIVENESS),
            },
        }

    async def generate_recommendations(self) -> list[dict[str, Any]]:
        """Suggest article updates and missing content from usage patterns"""
        articles = self._articles(await self.metrics_store.read()).values()
        usage = await self.usage_store.read()
        recommendations: list[dict[str, Any]] = []

        problematic = [
            a
            for a in articles
            if a.access_count >= UPDATE_MIN_ACCESS
            and a.effectiveness < UPDATE_MAX_EFFECTIVENESS
        ]
        if problematic:
            recommendations.append(
                {
                    "type": "update_articles",
                    "priority": "high",
                    "description": (
                        f"{len(problematic)} frequently accessed articles have low effectiveness"
                    ),
                    "articles": [a.title for a in problematic],
                }
            )

        contexts = Counter(event.get("context") for event in usage.get("sessions", []))
        for context, count in contexts.most_common(5):
            effective = await self.get_most_effective_articles(context, 1)
            if not effective or effective[0]["effectiveness"] < HIGH_EFFECTIVENESS:
                recommendations.append(
                    {
                        "type": "create_article",
                        "priority": "medium",
                        "description": (
                            f"High demand for {context} content but no highly effective articles"
                        ),
                        "context": context,
                        "searchCount": count,
                    }
                )

        return recommendations

    @staticmethod
    def identify_article_issues(article: ArticleUsageMetric) -> list[str]:
        issues = []
        if success_rate_percent(article.resolution_correlation) < 60:
            issues.append("Low resolution success rate")
        if average_resolution_minutes(article.resolution_correlation) > 90:
            issues.append("Long average resolution time")
        if any(
            sample.feedback and "outdated" in sample.feedback
            for sample in article.resolution_correlation
        ):
            issues.append("Feedback indicates outdated information")
        return issues
