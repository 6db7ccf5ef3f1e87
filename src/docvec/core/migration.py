"""Embedding model consistency checks and background regeneration sweeps.

When the configured embedding model changes, previously stored vectors carry
a stale model tag and are no longer comparable with new ones. The
EmbeddingMigrationController detects that and re-drives generation for the
affected documents in bounded, concurrent batches.

Sweep lifecycle:
    IDLE -> RUNNING -> IDLE

Only one sweep runs per controller. A start request while RUNNING is a
no-op that reports current progress. The transition back to IDLE happens in
a ``finally`` block, so it survives errors and task cancellation.

Example:
    controller = EmbeddingMigrationController.from_settings(store, service, settings)

    status = await controller.check_consistency()
    if status.migration_required:
        await controller.start_regeneration("outdated")

    print(controller.get_progress())
"""

import asyncio
import enum
import logging
import threading
from collections.abc import Awaitable, Callable
from typing import Any, Literal

from docvec.clients.settings import Settings
from docvec.core.errors import EmbeddingError
from docvec.core.models import (
    DEFAULT_FORMAT_VERSION,
    ConsistencyStatus,
    ProgressSnapshot,
    RegenerationProgress,
    RegenerationScope,
    RegenerationStartResult,
    StartupOutcome,
)
from docvec.core.service import EmbeddingService
from docvec.core.store import DocumentStore

logger = logging.getLogger(__name__)

_Outcome = Literal["completed", "failed", "skipped"]


class SweepState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"


class EmbeddingMigrationController:
    """Detects stale vectors and regenerates them in the background.

    Progress is published as an immutable RegenerationProgress snapshot that
    is swapped once per finished batch. Readers therefore see
    ``completed + failed`` only ever grow, and never a half-applied batch.
    The last finished sweep's progress stays visible until the next sweep
    starts.
    """

    def __init__(
        self,
        store: DocumentStore,
        service: EmbeddingService,
        batch_size: int = 5,
        batch_delay: float = 1.0,
        auto_migrate: bool = True,
        placeholder_fallback: bool = True,
        format_version: str = DEFAULT_FORMAT_VERSION,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize EmbeddingMigrationController.

        Args:
            store: Persistence collaborator for document text and vectors.
            service: Embedding generation service.
            batch_size: Documents regenerated concurrently per batch (>= 1).
            batch_delay: Seconds to wait between batches.
            auto_migrate: Run the consistency check in on_startup().
            placeholder_fallback: When strict generation fails for a document,
                fall back to lenient generation (placeholder vector) instead
                of counting the document as failed.
            format_version: Format version written with each vector.
            sleep: Awaitable sleep used for the inter-batch delay.
        """
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if batch_delay < 0:
            raise ValueError("batch_delay must be >= 0")

        self.store = store
        self.service = service
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.auto_migrate = auto_migrate
        self.placeholder_fallback = placeholder_fallback
        self.format_version = format_version
        self._sleep = sleep

        self._state = SweepState.IDLE
        self._state_lock = threading.Lock()
        self._progress = RegenerationProgress()
        self._task: asyncio.Task[Exception | None] | None = None

    @classmethod
    def from_settings(
        cls,
        store: DocumentStore,
        service: EmbeddingService,
        settings: Settings | None = None,
    ) -> "EmbeddingMigrationController":
        if settings is None:
            settings = Settings()
        return cls(
            store=store,
            service=service,
            batch_size=settings.migration_batch_size,
            batch_delay=settings.migration_batch_delay,
            auto_migrate=settings.embedding_auto_migrate,
            placeholder_fallback=settings.migration_placeholder_fallback,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def check_consistency(self) -> ConsistencyStatus:
        """Compare stored model tags against the configured model."""
        current_model = self.service.model_name
        counts = await self.store.list_vectors_by_model()

        total = sum(c.count for c in counts)
        outdated = sum(c.count for c in counts if c.model_tag != current_model)

        return ConsistencyStatus(
            total_vectors=total,
            outdated_vectors=outdated,
            current_model=current_model,
            models_found=[c.model_tag for c in counts],
            migration_required=outdated > 0,
        )

    async def start_regeneration(self, scope: RegenerationScope = "outdated") -> RegenerationStartResult:
        """Start a background sweep and return immediately.

        Args:
            scope: "outdated" for vectors with a stale model tag, "all" for
                every stored vector.

        Returns:
            ``started=False`` with current progress if a sweep is already
            running (or the target list could not be read); otherwise
            ``started=True`` with the freshly initialised progress.
        """
        rejected, targets = await self._begin(scope)
        if rejected is not None:
            return rejected

        self._task = asyncio.create_task(self._sweep(targets))
        return RegenerationStartResult(
            started=True,
            message=f"Started regenerating {len(targets)} embeddings",
            progress=self._progress,
        )

    async def run_regeneration(self, scope: RegenerationScope = "all") -> RegenerationStartResult:
        """Run a sweep to completion and return its final progress."""
        rejected, targets = await self._begin(scope)
        if rejected is not None:
            return rejected

        error = await self._sweep(targets)
        progress = self._progress
        if error is not None:
            return RegenerationStartResult(
                started=True, message=f"Regeneration failed: {error}", progress=progress
            )
        return RegenerationStartResult(
            started=True,
            message=f"Regenerated {progress.completed}/{progress.total} embeddings",
            progress=progress,
        )

    def get_progress(self) -> ProgressSnapshot:
        """Return whether a sweep is running and the most recent progress."""
        with self._state_lock:
            running = self._state is SweepState.RUNNING
        return ProgressSnapshot(running=running, progress=self._progress)

    @property
    def is_running(self) -> bool:
        return self.get_progress().running

    async def wait(self) -> None:
        """Wait for the current background sweep, if any, to finish."""
        task = self._task
        if task is not None:
            await task

    async def on_startup(self) -> StartupOutcome:
        """Best-effort consistency check for process start.

        Never raises. When auto-migration is enabled and a provider is
        configured, checks consistency and starts an "outdated" sweep in the
        background if needed. Failures are logged and reported in the
        returned outcome.
        """
        if not self.auto_migrate:
            logger.info("Embedding auto-migration disabled")
            return StartupOutcome(checked=False)
        if not self.service.is_configured:
            logger.info("Embedding provider not configured, skipping consistency check")
            return StartupOutcome(checked=False)

        try:
            status = await self.check_consistency()
            started = False
            if status.migration_required:
                logger.info(
                    "Found %d/%d embeddings from other models, starting regeneration to %s",
                    status.outdated_vectors,
                    status.total_vectors,
                    status.current_model,
                )
                result = await self.start_regeneration("outdated")
                started = result.started
            return StartupOutcome(checked=True, migration_started=started, status=status)
        except Exception as e:
            logger.warning("Startup embedding consistency check failed: %s", e, exc_info=True)
            return StartupOutcome(checked=False, error=str(e))

    async def regenerate_document(self, document_id: str) -> bool:
        """Regenerate and save the vector of one document.

        Returns:
            True if a vector was saved, False if the document has no
            embeddable text.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            EmbeddingError: If generation fails and placeholder fallback is off.
        """
        document = await self.store.fetch_document_text(document_id)
        text = document.to_embedding_text()
        if not text.strip():
            logger.debug("Document %s has no embeddable text, skipping", document_id)
            return False

        try:
            vector = await self.service.generate_strict(text)
        except EmbeddingError as e:
            if not self.placeholder_fallback:
                raise
            logger.warning(
                "Strict embedding failed for %s, falling back to lenient mode: %s", document_id, e
            )
            vector = await self.service.generate(text)

        await self.store.save_vector(
            document_id, vector.tolist(), self.service.model_name, self.format_version
        )
        return True

    # ------------------------------------------------------------------
    # Sweep internals
    # ------------------------------------------------------------------

    def _try_acquire(self) -> bool:
        with self._state_lock:
            if self._state is SweepState.RUNNING:
                return False
            self._state = SweepState.RUNNING
            return True

    def _release(self) -> None:
        with self._state_lock:
            self._state = SweepState.IDLE

    async def _begin(self, scope: RegenerationScope) -> tuple[RegenerationStartResult | None, list[str]]:
        if scope not in ("outdated", "all"):
            raise ValueError(f"Unknown regeneration scope: {scope!r}")

        if not self._try_acquire():
            return (
                RegenerationStartResult(
                    started=False, message="Regeneration already running", progress=self._progress
                ),
                [],
            )

        try:
            if scope == "outdated":
                targets = await self.store.list_stale_vectors(self.service.model_name)
            else:
                targets = await self.store.list_vector_document_ids()
        except Exception as e:
            self._release()
            logger.error("Could not list documents for regeneration: %s", e)
            return (
                RegenerationStartResult(
                    started=False, message=f"Could not list documents: {e}", progress=self._progress
                ),
                [],
            )

        self._progress = RegenerationProgress(total=len(targets))
        logger.info("Regeneration sweep started: scope=%s, documents=%d", scope, len(targets))
        return None, list(targets)

    async def _sweep(self, targets: list[str]) -> Exception | None:
        try:
            for start in range(0, len(targets), self.batch_size):
                batch = targets[start : start + self.batch_size]
                outcomes = await asyncio.gather(*(self._regenerate_counted(doc_id) for doc_id in batch))

                self._progress = self._progress.advance(
                    completed=outcomes.count("completed"),
                    failed=outcomes.count("failed"),
                    skipped=outcomes.count("skipped"),
                )
                logger.info(
                    "Regeneration progress: %d/%d (%d failed, %d%%)",
                    self._progress.completed + self._progress.failed,
                    self._progress.total,
                    self._progress.failed,
                    self._progress.percentage,
                )

                if start + self.batch_size < len(targets):
                    await self._sleep(self.batch_delay)

            logger.info(
                "Regeneration sweep finished: %d completed, %d failed, %d skipped",
                self._progress.completed,
                self._progress.failed,
                self._progress.skipped,
            )
            return None
        except Exception as e:
            logger.exception("Regeneration sweep aborted")
            return e
        finally:
            self._release()

    async def _regenerate_counted(self, document_id: str) -> _Outcome:
        try:
            saved = await self.regenerate_document(document_id)
        except Exception as e:
            logger.warning("Failed to regenerate embedding for %s: %s", document_id, e)
            return "failed"
        return "completed" if saved else "skipped"
