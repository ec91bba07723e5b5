"""
RunScheduler: reads pipeline.yaml, wires the pipeline, runs it on a fixed cadence.

This is the core orchestrator for the long-running scanner process:
1. Loads config/pipeline.yaml (+ env + SSM overrides) via ConfigLoader
2. Instantiates the configured plug-ins into a PipelineRegistry
3. Builds the cache, aggregator, optional escalation controller and router
4. Awaits one PipelineRunner.run() per tick, so runs never overlap

The event loop is owned by main.py; shutdown() stops the loop between ticks.
"""

import asyncio
import logging
from typing import Optional

from edgescan.escalation.analyzer import OpenAIAnalyzer
from edgescan.escalation.controller import EscalationController
from edgescan.escalation.cooldown_store import build_cooldown_store
from edgescan.framework.cache import SourceCache
from edgescan.framework.config_loader import ConfigLoader, PipelineConfig
from edgescan.framework.edge_router import EdgeRouter
from edgescan.framework.pipeline_runner import PipelineRunner
from edgescan.framework.registry import PipelineRegistry
from edgescan.framework.types import RunResult

logger = logging.getLogger(__name__)


class RunScheduler:
    """
    Runs the pipeline every interval_seconds until shutdown() is called.

    Usage:
        scheduler = RunScheduler()
        asyncio.run(scheduler.run())     # called from main.py
        scheduler.shutdown()             # called from signal handler
    """

    DEFAULT_CONFIG_PATH = ConfigLoader.DEFAULT_CONFIG_PATH

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH) -> None:
        self._config_path = config_path
        self._config: Optional[PipelineConfig] = None
        self._runner: Optional[PipelineRunner] = None
        self._router: Optional[EdgeRouter] = None
        self._stop: asyncio.Event = asyncio.Event()

    @property
    def runner(self) -> Optional[PipelineRunner]:
        return self._runner

    def build(self) -> PipelineRunner:
        """
        Load configuration and wire every pipeline component.

        Returns:
            The PipelineRunner used for every tick

        Raises:
            ConfigError: If the configuration is missing or invalid
            PluginError: If a configured plug-in cannot be loaded
        """
        loader = ConfigLoader(self._config_path)
        config = loader.get_config()
        registry = PipelineRegistry()
        registry.load_plugins(loader.get_plugins())
        registry.validate()

        escalation = None
        settings = loader.get_escalation_settings()
        if settings.enabled:
            analyzer = OpenAIAnalyzer()
            if not analyzer.is_configured():
                logger.warning("Escalation enabled but OPENAI_API_KEY is not set; escalation disabled")
            store = build_cooldown_store(settings.cooldown_store, settings.dynamodb_table, config.pipeline.aws_region)
            escalation = EscalationController(settings, analyzer, cooldown_store=store)

        self._config = config
        self._runner = PipelineRunner(registry, cache=SourceCache(), config=config, escalation=escalation)
        self._router = EdgeRouter(
            calibration_log_path=config.pipeline.calibration_log_path,
            dynamodb_table=config.pipeline.edges_table,
            region=config.pipeline.aws_region,
        )

        stats = registry.stats()
        logger.info(
            "RunScheduler ready | sources=%d | processors=%d | detectors=%d | escalation=%s | interval=%.0fs",
            stats["source_count"],
            stats["processor_count"],
            stats["detector_count"],
            "on" if escalation is not None and escalation.enabled else "off",
            config.pipeline.interval_seconds,
        )
        return self._runner

    async def run_once(self) -> RunResult:
        """Run the pipeline once and route its output."""
        if self._runner is None:
            self.build()
        result = await self._runner.run()
        self._router.route(result)
        return result

    async def run(self) -> None:
        """
        Main async entry point: tick until shutdown() is called.

        Each tick awaits a full run before the interval wait starts, so a slow
        run delays the next tick instead of overlapping it.
        """
        if self._runner is None:
            self.build()
        interval = self._config.pipeline.interval_seconds

        while not self._stop.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

        logger.info("RunScheduler stopped")

    def shutdown(self) -> None:
        """Signal run() to exit after the current tick."""
        logger.info("RunScheduler shutdown initiated")
        self._stop.set()
