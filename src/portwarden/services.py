"""
Service handle

Owns the long-lived collaborators (router, tracker, validator, pipeline)
for one process. Create it at startup, close it at shutdown; nothing here
is a module-level singleton.
"""

import logging
from pathlib import Path
from typing import Optional

from .config import PortwardenConfig
from .generation_pipeline import GenerationPipeline
from .incidents import IncidentStore, InMemoryIncidentStore
from .knowledge import KnowledgeProvider
from .llm_client import LLMRouter
from .observability import initialize_observability, shutdown_observability
from .roster import ContactRoster, default_roster
from .tracker import KnowledgeBaseTracker
from .validation import ResponseValidator, ValidationRubric

logger = logging.getLogger(__name__)


class PortwardenServices:
    """
    Explicit container for tracker, validator, router and pipeline

    Usable as an async context manager:

        async with PortwardenServices.from_config(config, incidents) as services:
            status, body = await services.pipeline.handle(request)
    """

    def __init__(
        self,
        config: PortwardenConfig,
        incidents: Optional[IncidentStore] = None,
        knowledge: Optional[KnowledgeProvider] = None,
        roster: ContactRoster = default_roster,
        router: Optional[LLMRouter] = None,
    ):
        self.config = config
        data_dir = Path(config.storage.data_dir)

        self.router = router or LLMRouter(config)
        self.tracker = KnowledgeBaseTracker(
            data_dir,
            retention_days=config.tracker.retention_days,
            effectiveness_window=config.tracker.effectiveness_window,
        )
        self.validator = ResponseValidator(
            data_dir,
            ValidationRubric(pass_threshold=config.validation.pass_threshold),
        )
        self.incidents = incidents or InMemoryIncidentStore()
        self.pipeline = GenerationPipeline(
            config,
            self.router,
            self.incidents,
            tracker=self.tracker,
            validator=self.validator,
            knowledge=knowledge,
            roster=roster,
        )
        self._started = False

    @classmethod
    def from_config(
        cls,
        config: PortwardenConfig,
        incidents: Optional[IncidentStore] = None,
        knowledge: Optional[KnowledgeProvider] = None,
    ) -> "PortwardenServices":
        return cls(config, incidents=incidents, knowledge=knowledge)

    async def start(self) -> None:
        if self._started:
            return
        initialize_observability(self.config.telemetry)
        logger.info(f"Portwarden services started (data_dir={self.config.storage.data_dir})")
        self._started = True

    async def close(self) -> None:
        if not self._started:
            return
        await self.router.close()
        shutdown_observability()
        self._started = False
        logger.info("Portwarden services stopped")

    async def __aenter__(self) -> "PortwardenServices":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
