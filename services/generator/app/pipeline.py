"""Generation state machine for one project.

``loading -> story -> illustrations -> done``, with ``failed`` reachable from
``story`` and ``illustrations``. Run state is never persisted: counters are
rebuilt from page and illustration rows every time the pipeline enters a
phase, which is what makes a crashed or reloaded run resumable.
"""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Optional
from uuid import UUID, uuid4

from photobook_observability import (
    log_context,
    observe_phase_duration,
    observe_remote_call,
    track_active,
)
from photobook_providers import BackendError, GenerationBackend, StoryRequest
from photobook_schemas import (
    BuildLogLevel,
    GenerationPhase,
    GenerationSnapshot,
    Page,
    PhaseEvent,
    ProjectStatus,
    ResumeState,
)

from .batching import BatchedTaskRunner, BatchResult
from .build_log import BuildLog
from .errors import InvalidTransition, PipelineBusyError
from .events import TERMINAL_PHASES, EventChannel
from .illustrations import IllustrationService
from .progress import IllustrationProgress, IllustrationProgressTracker
from .resume import ResumeInspector, ResumePlan
from .settings import SERVICE_NAME, PipelineSettings
from .store import ProjectStore
from .variants import BackgroundVariantScheduler

logger = logging.getLogger(__name__)

Phase = GenerationPhase

TRANSITIONS: dict[GenerationPhase, frozenset[GenerationPhase]] = {
    Phase.LOADING: frozenset({Phase.STORY, Phase.ILLUSTRATIONS, Phase.DONE, Phase.FAILED}),
    Phase.STORY: frozenset({Phase.ILLUSTRATIONS, Phase.FAILED}),
    Phase.ILLUSTRATIONS: frozenset({Phase.DONE, Phase.FAILED}),
    # retry re-enters a working phase; continue_anyway accepts partial results
    Phase.FAILED: frozenset({Phase.LOADING, Phase.STORY, Phase.ILLUSTRATIONS, Phase.DONE}),
    Phase.DONE: frozenset({Phase.LOADING}),
}


class GenerationPipeline:
    """Drives story and illustration generation for a single project.

    Only one run may be active at a time; :meth:`run` and :meth:`retry` raise
    :class:`PipelineBusyError` otherwise. :meth:`stop` is cooperative and
    takes effect between illustration chunks. :meth:`skip` releases callers
    waiting on :meth:`wait` while generation carries on.
    """

    def __init__(
        self,
        project_id: UUID,
        *,
        store: ProjectStore,
        backend: GenerationBackend,
        illustrations: IllustrationService,
        variants: BackgroundVariantScheduler,
        settings: PipelineSettings,
        build_log: BuildLog | None = None,
        light: bool = False,
    ) -> None:
        self.project_id = project_id
        self._store = store
        self._backend = backend
        self._illustrations = illustrations
        self._variants = variants
        self._settings = settings
        self._build_log = build_log or BuildLog(store)
        self._inspector = ResumeInspector(store, variant_target=settings.variant_target)
        self.light = light
        self.events = EventChannel()

        self._lock = asyncio.Lock()
        self._task: asyncio.Task[GenerationSnapshot] | None = None
        self._settled = asyncio.Event()
        self._phase = Phase.LOADING
        self._phase_started = perf_counter()
        self._cancelled = False
        self._detached = False
        self._total_pages = 0
        self._illustrated_count = 0
        self._failed_count = 0
        self._retryable: Optional[bool] = None
        self._failure_step: Optional[GenerationPhase] = None
        self._error: Optional[str] = None
        self._run_id = uuid4()

    # state

    @property
    def phase(self) -> GenerationPhase:
        return self._phase

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def concurrency(self) -> int:
        if self.light:
            return self._settings.light_illustration_concurrency
        return self._settings.illustration_concurrency

    def snapshot(self) -> GenerationSnapshot:
        return GenerationSnapshot(
            project_id=self.project_id,
            phase=self._phase,
            total_pages=self._total_pages,
            illustrated_count=self._illustrated_count,
            failed_count=self._failed_count,
            retryable=self._retryable,
            failure_step=self._failure_step,
            error=self._error,
            detached=self._detached,
            cancelled=self._cancelled,
        )

    def _publish(self, message: str | None = None, previous: GenerationPhase | None = None) -> None:
        self.events.publish(
            PhaseEvent(
                project_id=self.project_id,
                previous=previous,
                phase=self._phase,
                snapshot=self.snapshot(),
                message=message,
            )
        )

    def _transition(self, target: GenerationPhase, message: str | None = None) -> None:
        current = self._phase
        if target not in TRANSITIONS[current]:
            raise InvalidTransition(f"Cannot move from {current.value} to {target.value}")
        now = perf_counter()
        if current not in TERMINAL_PHASES:
            observe_phase_duration(
                current.value,
                now - self._phase_started,
                service_name=SERVICE_NAME,
                status="error" if target == Phase.FAILED else "success",
            )
        self._phase = target
        self._phase_started = now
        logger.info(
            "Phase transition",
            extra={"from_phase": current.value, "to_phase": target.value},
        )
        self._publish(message, previous=current)
        if target in TERMINAL_PHASES:
            self._settled.set()

    def _reset_failure(self) -> None:
        self._failed_count = 0
        self._retryable = None
        self._failure_step = None
        self._error = None

    def _fail(self, step: GenerationPhase, error: str, *, retryable: bool) -> None:
        self._failure_step = step
        self._error = error
        self._retryable = retryable
        self._transition(Phase.FAILED, error)

    # controls

    def start(self) -> asyncio.Task[GenerationSnapshot]:
        """Launch :meth:`run` in the background, or return the active task."""

        if self._task is not None and not self._task.done():
            return self._task
        if self.is_running:
            raise PipelineBusyError(f"Generation already running for project {self.project_id}")
        self._settled = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run_reporting_errors(self.run))
        return self._task

    def start_retry(self) -> asyncio.Task[GenerationSnapshot]:
        if self._phase != Phase.FAILED:
            raise InvalidTransition("Retry is only available after a failure")
        if self.is_running:
            raise PipelineBusyError(f"Generation already running for project {self.project_id}")
        self._settled = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run_reporting_errors(self.retry))
        return self._task

    async def _run_reporting_errors(self, runner) -> GenerationSnapshot:
        try:
            return await runner()
        except Exception:
            # already logged and reflected in the failed phase by _execute
            return self.snapshot()

    async def wait(self, timeout: float | None = None) -> GenerationSnapshot:
        """Block until the run settles (done, failed) or the caller skipped."""

        try:
            await asyncio.wait_for(self._settled.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        return self.snapshot()

    def stop(self) -> GenerationSnapshot:
        """Stop starting new illustration chunks; produced work is kept."""

        if not self._cancelled:
            self._cancelled = True
            logger.info("Stop requested", extra={"project_id": str(self.project_id)})
            self._publish("Stopping after the current batch")
        return self.snapshot()

    async def skip(self) -> GenerationSnapshot:
        """Release waiters and move the project to review; generation continues."""

        self._detached = True
        await self._advance_status(ProjectStatus.REVIEW)
        self._publish("Skipped to review; generation continues in the background")
        self._settled.set()
        return self.snapshot()

    async def continue_anyway(self) -> GenerationSnapshot:
        """Accept partial results after a failure."""

        if self._phase != Phase.FAILED:
            raise InvalidTransition("Continue is only available after a failure")
        await self._advance_status(ProjectStatus.REVIEW)
        self._transition(Phase.DONE, "Continuing with the pages that are ready")
        return self.snapshot()

    async def run(self) -> GenerationSnapshot:
        """Start (or resume) generation from whatever is persisted."""

        if self.is_running:
            raise PipelineBusyError(f"Generation already running for project {self.project_id}")
        async with self._lock:
            if self._settled.is_set():
                self._settled = asyncio.Event()
            self._run_id = uuid4()
            self._cancelled = False
            self._detached = False
            self._reset_failure()
            if self._phase != Phase.LOADING:
                self._transition(Phase.LOADING)
            return await self._execute()

    async def retry(self) -> GenerationSnapshot:
        """Re-enter the failed step, recomputing work from persisted state."""

        if self._phase != Phase.FAILED:
            raise InvalidTransition("Retry is only available after a failure")
        if self.is_running:
            raise PipelineBusyError(f"Generation already running for project {self.project_id}")
        async with self._lock:
            if self._settled.is_set():
                self._settled = asyncio.Event()
            self._run_id = uuid4()
            self._cancelled = False
            self._reset_failure()
            return await self._execute()

    # phases

    async def _execute(self) -> GenerationSnapshot:
        track_active("pipeline", service_name=SERVICE_NAME, delta=1)
        with log_context(project_id=self.project_id, run_id=self._run_id):
            try:
                await self._store.require_project(self.project_id)
                plan = await self._inspector.inspect(self.project_id)
                if plan.state == ResumeState.FRESH:
                    if not await self._run_story():
                        return self.snapshot()
                    plan = None
                await self._run_illustrations(plan)
            except Exception as err:
                logger.exception("Generation run failed unexpectedly")
                if self._phase not in TERMINAL_PHASES:
                    self._fail(self._phase, str(err) or type(err).__name__, retryable=True)
                raise
            finally:
                track_active("pipeline", service_name=SERVICE_NAME, delta=-1)
        return self.snapshot()

    async def _run_story(self) -> bool:
        self._transition(Phase.STORY, "Reading everything you shared...")
        await self._advance_status(ProjectStatus.GENERATING)
        start = perf_counter()
        try:
            response = await self._backend.generate_story(StoryRequest(project_id=self.project_id))
        except BackendError as err:
            observe_remote_call(
                kind="story",
                outcome=type(err).__name__,
                service_name=SERVICE_NAME,
                latency_seconds=perf_counter() - start,
            )
            logger.warning("Story generation failed", extra={"retryable": err.retryable})
            await self._build_log.record(
                self.project_id,
                "story",
                "Something went wrong with the story.",
                level=BuildLogLevel.ERROR,
                technical_message=str(err),
                retryable=err.retryable,
            )
            self._fail(Phase.STORY, str(err), retryable=err.retryable)
            return False

        elapsed = perf_counter() - start
        observe_remote_call(
            kind="story", outcome="success", service_name=SERVICE_NAME, latency_seconds=elapsed
        )
        if not response.pages:
            await self._build_log.record(
                self.project_id,
                "story",
                "The story came back empty.",
                level=BuildLogLevel.ERROR,
                technical_message=f"model: {response.model}",
            )
            self._fail(Phase.STORY, "Story generation returned no pages", retryable=True)
            return False
        pages = [generated.to_page(self.project_id) for generated in response.pages]
        stored = await self._store.replace_pages(self.project_id, pages)
        self._total_pages = len(stored)
        await self._build_log.milestone(
            self.project_id,
            "story",
            f"Story complete! {len(stored)} pages written in {round(elapsed)}s.",
            technical_message=f"Generated {len(stored)} pages in {int(elapsed * 1000)}ms | model: {response.model}",
            pages=len(stored),
            elapsed_ms=int(elapsed * 1000),
        )
        return True

    async def _run_illustrations(self, plan: ResumePlan | None) -> None:
        if plan is None:
            plan = await self._inspector.inspect(self.project_id)
        self._total_pages = plan.total_pages
        self._illustrated_count = plan.illustrated_count
        self._failed_count = 0

        if not plan.initial_work:
            # nothing blocks completion; extra variants are best-effort
            self._variants.schedule(self.project_id, plan.variant_work)
            if self._phase == Phase.LOADING:
                self._transition(Phase.DONE, "The book is ready!")
                await self._advance_status(ProjectStatus.REVIEW)
            else:
                self._transition(Phase.ILLUSTRATIONS)
                await self._complete()
            return

        self._transition(Phase.ILLUSTRATIONS, "Painting the story...")
        tracker = IllustrationProgressTracker(
            self._store, self.project_id, on_update=self._on_progress
        )
        tracker.start()
        references = await self._illustrations.reference_paths(self.project_id)
        runner: BatchedTaskRunner[Page] = BatchedTaskRunner(
            "illustrations",
            self.concurrency,
            delay_seconds=self._settings.illustration_delay_seconds,
            on_chunk=self._on_chunk,
        )

        first_logged = False

        async def illustrate(page: Page):
            nonlocal first_logged
            illustration = await self._illustrations.request(page, variant=False, reference_paths=references)
            if not first_logged:
                first_logged = True
                await self._build_log.milestone(
                    self.project_id,
                    "illustration",
                    f"First illustration ready! Page {page.page_number} is painted.",
                    page_number=page.page_number,
                )
            return illustration

        try:
            result = await runner.run(plan.initial_work, illustrate, is_cancelled=lambda: self._cancelled)
        finally:
            await tracker.stop()
        await tracker.recompute()

        self._failed_count = len(plan.initial_work) - len(result.succeeded)
        if not result.succeeded:
            await self._build_log.record(
                self.project_id,
                "illustration",
                "None of the illustrations came out right.",
                level=BuildLogLevel.ERROR,
                technical_message=_first_error(result),
            )
            self._fail(
                Phase.ILLUSTRATIONS,
                "Stopped before any illustration was produced" if result.cancelled else "No illustrations were produced",
                retryable=True,
            )
            return

        if result.cancelled:
            self._fail(
                Phase.ILLUSTRATIONS,
                f"Stopped with {self._failed_count} pages left to illustrate",
                retryable=True,
            )
            return

        if result.failed:
            logger.warning(
                "Some illustrations failed",
                extra={"failed_count": self._failed_count, "succeeded": len(result.succeeded)},
            )
            await self._build_log.record(
                self.project_id,
                "illustration",
                f"{self._failed_count} illustrations didn't come out right.",
                level=BuildLogLevel.WARNING,
                technical_message=_first_error(result),
                failed_count=self._failed_count,
            )

        extra_variants = max(0, self._settings.variant_target - 1)
        variant_work = list(plan.variant_work)
        for page in result.succeeded:
            variant_work.extend([page] * extra_variants)
        self._variants.schedule(self.project_id, variant_work)
        await self._complete()

    async def _complete(self) -> None:
        self._transition(
            Phase.DONE,
            "The book is ready!"
            if not self._failed_count
            else f"The book is ready; {self._failed_count} pages still need an illustration.",
        )
        await self._advance_status(ProjectStatus.REVIEW)
        await self._build_log.milestone(
            self.project_id,
            "system",
            "Book ready for review.",
            total_pages=self._total_pages,
            illustrated_count=self._illustrated_count,
            failed_count=self._failed_count,
        )

    def _on_progress(self, progress: IllustrationProgress) -> None:
        self._total_pages = progress.total_pages
        self._illustrated_count = progress.illustrated_count

    def _on_chunk(self, index: int, result: BatchResult[Page]) -> None:
        self._failed_count = len(result.failed)
        self._publish(f"Finished batch {index + 1}")

    async def _advance_status(self, status: ProjectStatus) -> None:
        project = await self._store.require_project(self.project_id)
        if project.status.rank < status.rank:
            await self._store.update_project_status(self.project_id, status)


def _first_error(result: BatchResult[Page]) -> str | None:
    if not result.failed:
        return None
    return str(result.failed[0].error) or type(result.failed[0].error).__name__
