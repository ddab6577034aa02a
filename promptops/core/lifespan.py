"""Engine lifecycle management."""

from contextlib import asynccontextmanager
from typing import Optional

import structlog

from promptops.analytics.performance import PerformanceAnalytics
from promptops.analytics.recorder import ExecutionRecorder
from promptops.analytics.scheduler import AggregationScheduler
from promptops.core.config import Settings, get_settings
from promptops.events.bus import EventBus
from promptops.events.webhook_manager import WebhookManager
from promptops.models.prompt_template import CompilationOptions
from promptops.prompts.compiler import TemplateCompiler
from promptops.prompts.template_manager import TemplateManager
from promptops.storage.redis_repository import RedisRepository
from promptops.storage.repository import Repository, create_repository

logger = structlog.get_logger(__name__)


class PromptOpsEngine:
    """Template store, telemetry and analytics wired to one bus and repository"""

    def __init__(
        self,
        settings: Settings,
        repository: Repository,
        bus: EventBus,
        templates: TemplateManager,
        recorder: ExecutionRecorder,
        analytics: PerformanceAnalytics,
        scheduler: AggregationScheduler,
        webhooks: Optional[WebhookManager] = None,
    ):
        self.settings = settings
        self.repository = repository
        self.bus = bus
        self.templates = templates
        self.recorder = recorder
        self.analytics = analytics
        self.scheduler = scheduler
        self.webhooks = webhooks
        self.started = False

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Settings] = None,
        repository: Optional[Repository] = None,
    ) -> "PromptOpsEngine":
        settings = settings or get_settings()
        repository = repository if repository is not None else create_repository(settings)
        bus = EventBus()

        compiler = TemplateCompiler(CompilationOptions(
            strict_mode=settings.strict_mode,
            missing_value=settings.missing_value,
            preserve_whitespace=settings.preserve_whitespace,
            escape_html=settings.escape_html,
        ))
        recorder = ExecutionRecorder(
            repository=repository,
            bus=bus,
            max_executions=settings.max_executions_per_template,
            enabled=settings.enable_metrics,
        )
        templates = TemplateManager(
            repository=repository,
            compiler=compiler,
            bus=bus,
            recorder=recorder,
            enable_versioning=settings.enable_versioning,
            max_versions_per_template=settings.max_versions_per_template,
        )
        analytics = PerformanceAnalytics(recorder=recorder, bus=bus, settings=settings)
        scheduler = AggregationScheduler(analytics, intervals=settings.aggregation_intervals)

        webhooks = None
        if settings.webhook_url:
            webhooks = WebhookManager(
                url=settings.webhook_url,
                secret=settings.webhook_secret,
                max_retries=settings.webhook_max_retries,
            )
            webhooks.attach(bus)

        return cls(
            settings=settings,
            repository=repository,
            bus=bus,
            templates=templates,
            recorder=recorder,
            analytics=analytics,
            scheduler=scheduler,
            webhooks=webhooks,
        )

    async def start(self):
        """Connect storage, load persisted state and start rollup timers"""
        if self.started:
            return

        if isinstance(self.repository, RedisRepository):
            await self.repository.connect()

        await self.templates.load()
        await self.recorder.load()

        if self.settings.aggregation_intervals:
            self.scheduler.start()

        self.started = True
        logger.info(
            "PromptOps engine started",
            storage_backend=self.settings.storage_backend,
            templates=len(self.templates.templates_cache),
            webhooks=self.webhooks is not None,
        )

    async def close(self):
        await self.scheduler.stop()

        if self.webhooks:
            await self.webhooks.flush()
            await self.webhooks.close()

        await self.analytics.close()
        await self.templates.close()
        await self.repository.close()

        self.started = False
        logger.info("PromptOps engine stopped")

    async def __aenter__(self) -> "PromptOpsEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


@asynccontextmanager
async def lifespan(settings: Optional[Settings] = None):
    """Run an engine for the duration of the block."""
    engine = PromptOpsEngine.from_settings(settings)
    await engine.start()
    try:
        yield engine
    finally:
        await engine.close()
