"""Analysis manager — the start / progress / results / cancel surface.

Jobs live in memory for the life of the process.  ``start`` validates the
config, registers the job, and spawns its runner with
``asyncio.create_task()``; every other call is a synchronous read or flag
flip that never awaits in-flight work.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING

from xobcat.engine.runner import run_analysis_job
from xobcat.engine.state import AnalysisJob, JobStateMachine
from xobcat.errors import AnalysisNotFoundError, ResultsNotReadyError
from xobcat.models import AnalysisConfig, AnalysisProgress, AnalysisResults, Phase
from xobcat.validation import validate_analysis_config

if TYPE_CHECKING:
    from xobcat.config import XobcatSettings
    from xobcat.engine.extractor import FactExtractor
    from xobcat.llm.client import LLMClient
    from xobcat.sources import SessionSource

logger = logging.getLogger(__name__)

ExtractorFactory = Callable[[AnalysisConfig, "LLMClient | None"], "FactExtractor"]
ClientFactory = Callable[[AnalysisConfig], "LLMClient | None"]


class AnalysisManager:
    """In-memory registry of Auto-Analyze jobs.

    Args:
        settings: Application settings (time zone, stream plan, cutoffs).
        source: Where sessions are sampled from.
        client_factory: Builds the LLM client for a job's model and key.
            Defaults to :class:`~xobcat.llm.client.LLMClient`.
        extractor_factory: Builds the fact extractor for a job.  Defaults
            to an :class:`~xobcat.engine.extractor.LLMFactExtractor` around
            the job's client.
        rng_factory: Seeded randomness for sampling and discovery (tests).
    """

    def __init__(
        self,
        settings: XobcatSettings,
        source: SessionSource,
        *,
        client_factory: ClientFactory | None = None,
        extractor_factory: ExtractorFactory | None = None,
        rng_factory: Callable[[], random.Random] | None = None,
    ) -> None:
        self.settings = settings
        self.source = source
        self._client_factory = client_factory or self._default_client
        self._extractor_factory = extractor_factory or self._default_extractor
        self._rng_factory = rng_factory or random.Random
        self._jobs: dict[str, JobStateMachine] = {}

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    def _default_client(self, config: AnalysisConfig) -> LLMClient:
        from xobcat.llm.client import LLMClient

        return LLMClient(self.settings, model=config.model_id, api_key=config.openai_api_key)

    def _default_extractor(self, config: AnalysisConfig, client: LLMClient | None) -> FactExtractor:
        from xobcat.engine.extractor import LLMFactExtractor

        if client is None:
            raise ValueError("The LLM fact extractor needs an LLM client")
        return LLMFactExtractor(
            client,
            additional_context=config.additional_context,
            max_transcript_chars=self.settings.max_transcript_chars,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _machine(self, analysis_id: str) -> JobStateMachine:
        machine = self._jobs.get(analysis_id)
        if machine is None:
            raise AnalysisNotFoundError(analysis_id)
        return machine

    def job(self, analysis_id: str) -> AnalysisJob:
        return self._machine(analysis_id).job

    def __contains__(self, analysis_id: object) -> bool:
        return analysis_id in self._jobs

    def __len__(self) -> int:
        return len(self._jobs)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, raw_config: Mapping[str, object]) -> str:
        """Validate ``raw_config``, register a job, and start it.

        Must be called with a running event loop.

        Raises:
            ConfigValidationError: the config is invalid; no job is created.
        """
        loop = asyncio.get_running_loop()
        config = validate_analysis_config(raw_config, tz=self.settings.timezone)
        client = self._client_factory(config)
        extractor = self._extractor_factory(config, client)

        analysis_id = str(uuid.uuid4())
        job = AnalysisJob(
            analysis_id=analysis_id,
            config=config,
            progress=AnalysisProgress(
                analysis_id=analysis_id,
                model_id=config.model_id,
                current_step="Initializing parallel analysis",
            ),
        )
        machine = JobStateMachine(job)
        self._jobs[analysis_id] = machine

        job.task = loop.create_task(
            run_analysis_job(
                machine,
                source=self.source,
                extractor=extractor,
                settings=self.settings,
                llm_client=client,
                rng=self._rng_factory(),
            ),
            name=f"analysis-{analysis_id}",
        )
        logger.info(
            "Started analysis %s: %d sessions from %s %s, model %s",
            analysis_id,
            config.session_count,
            config.start_date,
            config.start_time,
            config.model_id,
        )
        return analysis_id

    def progress(self, analysis_id: str) -> AnalysisProgress:
        """Snapshot of the job's progress with percentage and display text."""
        return self._machine(analysis_id).snapshot()

    def results(self, analysis_id: str) -> AnalysisResults:
        """Labelled sessions, taxonomy, and summary of a completed job.

        Raises:
            AnalysisNotFoundError: unknown id.
            ResultsNotReadyError: the job is still running or ended in error.
        """
        machine = self._machine(analysis_id)
        job = machine.job
        phase = machine.progress.phase
        if phase is not Phase.COMPLETE:
            raise ResultsNotReadyError(analysis_id, phase.value)
        return AnalysisResults(
            analysis_id=analysis_id,
            sessions=job.sessions,
            taxonomy=job.taxonomy,
            analysis_summary=job.summary,
            message=job.message,
        )

    def cancel(self, analysis_id: str) -> bool:
        """Cooperatively cancel a job.  False if it had already finished."""
        cancelled = self._machine(analysis_id).cancel()
        if cancelled:
            logger.info("Cancellation requested for analysis %s", analysis_id)
        return cancelled

    async def wait(self, analysis_id: str) -> AnalysisProgress:
        """Wait for a job's runner to exit and return its final progress."""
        task = self.job(analysis_id).task
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.progress(analysis_id)

    async def shutdown(self) -> None:
        """Cancel every running job and wait for the runners to exit."""
        tasks = [m.job.task for m in self._jobs.values() if m.job.task and not m.job.task.done()]
        for machine in self._jobs.values():
            machine.cancel()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
