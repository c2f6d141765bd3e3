"""
Knowledge-base context for prompts

The generation pipeline asks a KnowledgeProvider for a short text block of
relevant articles. StaticKnowledgeProvider is a keyword-scored provider
over an in-memory article list, enough for the CLI and tests.
"""

import re
from pathlib import Path
from typing import Protocol, runtime_checkable

import yaml
from pydantic import Field

from .models import WireModel

STOP_WORDS = frozenset(
    "the and or but in on at to for of with by is are was were been have has had "
    "will would could should".split()
)

TITLE_WEIGHT = 3
OVERVIEW_WEIGHT = 2
KEYWORD_WEIGHT = 1


@runtime_checkable
class KnowledgeProvider(Protocol):
    def generate_ai_context(self, text: str, max_articles: int = 3) -> str: ...


class KnowledgeArticle(WireModel):
    id: str
    title: str
    module: str = "Unknown"
    overview: str = ""
    resolution_steps: list[str] = Field(default_factory=list)
    verification_steps: list[str] = Field(default_factory=list)


def extract_keywords(text: str) -> list[str]:
    """Lowercased words longer than two characters, minus stop words"""
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    seen: dict[str, None] = {}
    for word in words:
        if len(word) > 2 and word not in STOP_WORDS:
            seen.setdefault(word, None)
    return list(seen)


class StaticKnowledgeProvider:
    """Scores articles by keyword overlap with title, overview and body"""

    def __init__(self, articles: list[KnowledgeArticle]):
        self.articles = articles
        self._keywords = {
            article.id: set(
                extract_keywords(
                    " ".join([article.title, article.overview, *article.resolution_steps])
                )
            )
            for article in articles
        }

    @classmethod
    def from_file(cls, path: Path) -> "StaticKnowledgeProvider":
        """Load articles from a YAML (or JSON) list"""
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f) or []
        return cls([KnowledgeArticle.model_validate(item) for item in raw])

    def search(self, query: str, limit: int = 5) -> list[KnowledgeArticle]:
        keywords = extract_keywords(query)
        if not keywords:
            return self.articles[:limit]

        scored = []
        for article in self.articles:
            title = article.title.lower()
            overview = article.overview.lower()
            score = 0
            for keyword in keywords:
                if keyword in title:
                    score += TITLE_WEIGHT
                if keyword in overview:
                    score += OVERVIEW_WEIGHT
                if keyword in self._keywords[article.id]:
                    score += KEYWORD_WEIGHT
            if score > 0:
                scored.append((score, article))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        return [article for _, article in scored[:limit]]

    def generate_ai_context(self, text: str, max_articles: int = 3) -> str:
        articles = self.search(text, max_articles)
        if not articles:
            return "No directly relevant knowledge base articles found."

        lines = ["Relevant Knowledge Base Articles:", ""]
        for index, article in enumerate(articles, start=1):
            lines.append(f"{index}. **{article.title}** ({article.id})")
            lines.append(f"Module: {article.module}")
            lines.append(f"Overview: {article.overview[:200]}...")
            lines.append("Key Resolution Steps:")
            for step_index, step in enumerate(article.resolution_steps[:3], start=1):
                lines.append(f"   {step_index}. {step[:100]}...")
            lines.append("")
        return "\n".join(lines)
