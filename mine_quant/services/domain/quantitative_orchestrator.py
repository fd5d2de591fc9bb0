"""
Domain service: quantitative analysis lifecycle for one analysis id.

States::

    NO_BASELINE -> NEEDS_COMPUTE -> COMPUTING -> READY | ERROR

READY additionally carries a derived stale flag and an independent persist
sub-state (idle, saving, saved, error). All mutation goes through this class;
the three suspension points are the injected fetch, compute and persist
callables.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Optional

from mine_quant.domain.models import (
    AnalysisBaseline,
    OrchestratorState,
    OrchestratorView,
    PersistState,
    QuantitativeSnapshot,
)
from mine_quant.services.domain.snapshot_normalizer import (
    MAX_STEP_DETAILS,
    build_persist_payload,
    is_fresh,
    normalize_snapshot,
)

logger = logging.getLogger(__name__)

FetchBaseline = Callable[[str], Awaitable[AnalysisBaseline]]
RunCompute = Callable[[str, Optional[dict[str, Any]]], Awaitable[dict[str, Any]]]
PersistSnapshot = Callable[[str, dict[str, Any]], Awaitable[Any]]


class BaselineNotLoadedError(RuntimeError):
    """Raised when a recompute is requested before the baseline is loaded."""


class SessionClosedError(RuntimeError):
    """Raised when a torn-down orchestrator is used again."""


class QuantitativeOrchestrator:
    """
    Owns the quantitative state of a single analysis.

    Compute is single-flight: a trigger while COMPUTING is a no-op. A READY
    snapshot that is not fresh triggers exactly one automatic recompute; the
    latch resets once a fresh snapshot arrives. Every snapshot that did not
    come from storage is persisted once, after normalization.

    Teardown bumps a generation counter; calls started under an older
    generation have their results dropped without touching state.
    """

    def __init__(
        self,
        analysis_id: str,
        fetch_baseline: FetchBaseline,
        run_compute: RunCompute,
        persist_snapshot: PersistSnapshot,
        auto_compute: bool = True,
        max_step_details: int = MAX_STEP_DETAILS,
    ):
        """
        Args:
            analysis_id: Analysis this orchestrator owns
            fetch_baseline: Loads the detection baseline (and stored snapshot)
            run_compute: Runs the quantitative compute for the detection results
            persist_snapshot: Stores a camelCase snapshot payload
            auto_compute: Start a compute automatically once per baseline
            max_step_details: Cap on detail lines kept per pipeline step
        """
        self.analysis_id = analysis_id
        self._fetch_baseline = fetch_baseline
        self._run_compute = run_compute
        self._persist_snapshot = persist_snapshot
        self.auto_compute = auto_compute
        self.max_step_details = max_step_details

        self.state = OrchestratorState.NO_BASELINE
        self.baseline: Optional[AnalysisBaseline] = None
        self.snapshot: Optional[QuantitativeSnapshot] = None
        self.error: Optional[str] = None
        self.is_stale = False
        self.persist_state = PersistState.IDLE
        self.persist_error: Optional[str] = None

        self._generation = 0
        self._closed = False
        self._stale_latch = False
        self._auto_computed = False
        self._load_task: Optional[asyncio.Task] = None
        self._compute_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @property
    def is_computing(self) -> bool:
        return self._compute_task is not None and not self._compute_task.done()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def has_results(self) -> bool:
        """Whether detection results are loaded; computes need them."""
        return self.baseline is not None and self.baseline.results is not None

    async def ensure_baseline(self) -> None:
        """Load the baseline unless it is loaded; concurrent callers share one fetch."""
        if self.baseline is not None:
            return
        if self._load_task is None or self._load_task.done():
            self._load_task = self._spawn(self.load_baseline())
        await self._load_task

    async def load_baseline(self) -> None:
        """
        Fetch the baseline and enter READY or NEEDS_COMPUTE.

        A stored snapshot that is fresh is used as-is (persisted). Otherwise
        the orchestrator needs a compute, started automatically once per
        baseline when auto_compute is enabled.

        Raises:
            SessionClosedError: If the orchestrator was torn down
            Exception: Whatever the fetch collaborator raised; state stays NO_BASELINE
        """
        self._check_open()
        generation = self._generation
        try:
            baseline = await self._fetch_baseline(self.analysis_id)
        except Exception as e:
            if self._is_live(generation):
                self.error = str(e)
                logger.error(f"Baseline fetch failed for {self.analysis_id}: {e}")
            raise

        if not self._is_live(generation):
            logger.info(f"Discarding baseline for {self.analysis_id}: session closed")
            return

        self.baseline = baseline
        self.error = None
        self._auto_computed = False
        self._stale_latch = False
        logger.info(f"Baseline for {self.analysis_id} loaded from {baseline.source}")

        if baseline.quantitative:
            stored = normalize_snapshot(
                self.analysis_id,
                baseline.quantitative,
                persisted=True,
                max_step_details=self.max_step_details,
            )
            if is_fresh(stored):
                self._enter_ready(stored)
                return
            logger.info(f"Stored snapshot for {self.analysis_id} is incomplete; recompute required")
            self.snapshot = stored
            self.is_stale = True

        self.state = OrchestratorState.NEEDS_COMPUTE
        if not self.has_results:
            logger.warning(f"Baseline for {self.analysis_id} has no detection results; compute unavailable")
        elif self.auto_compute and not self._auto_computed:
            self._auto_computed = True
            self._start_compute("auto")

    def request_recompute(self) -> bool:
        """
        Manually trigger a compute.

        Returns:
            True if a compute was started, False if one is already in flight

        Raises:
            BaselineNotLoadedError: If no baseline with detection results has been loaded
            SessionClosedError: If the orchestrator was torn down
        """
        self._check_open()
        if not self.has_results:
            raise BaselineNotLoadedError(f"Detection results for analysis {self.analysis_id} are not loaded")
        return self._start_compute("manual")

    def teardown(self) -> None:
        """
        Abandon the session.

        In-flight calls are not aborted; their results are discarded when they
        complete. The single-flight guard is released.
        """
        if self._closed:
            return
        self._closed = True
        self._generation += 1
        self._compute_task = None
        logger.info(f"Quantitative session for {self.analysis_id} torn down")

    async def wait_idle(self) -> None:
        """Wait until no fetch, compute or persist call is pending, including follow-ups they start."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def snapshot_view(self) -> OrchestratorView:
        return OrchestratorView(
            analysis_id=self.analysis_id,
            state=self.state,
            is_stale=self.is_stale,
            persist_state=self.persist_state,
            persist_error=self.persist_error,
            error=self.error,
            baseline_source=self.baseline.source if self.baseline else None,
            snapshot=self.snapshot,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _is_live(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    def _check_open(self) -> None:
        if self._closed:
            raise SessionClosedError(f"Quantitative session for {self.analysis_id} is closed")

    def _start_compute(self, reason: str) -> bool:
        if self.is_computing:
            logger.debug(f"Compute for {self.analysis_id} already in flight; ignoring {reason} trigger")
            return False
        logger.info(f"Starting quantitative compute for {self.analysis_id} ({reason})")
        self.state = OrchestratorState.COMPUTING
        self.error = None
        self._compute_task = self._spawn(self._compute(self._generation))
        return True

    async def _compute(self, generation: int) -> None:
        results = self.baseline.results if self.baseline else None
        try:
            payload = await self._run_compute(self.analysis_id, results)
        except Exception as e:
            if not self._is_live(generation):
                logger.info(f"Discarding failed compute for {self.analysis_id}: session closed")
                return
            self._compute_task = None
            self.state = OrchestratorState.ERROR
            self.error = str(e) or e.__class__.__name__
            logger.error(f"Quantitative compute failed for {self.analysis_id}: {self.error}")
            return

        if not self._is_live(generation):
            logger.info(f"Discarding compute result for {self.analysis_id}: session closed")
            return
        self._compute_task = None

        snapshot = normalize_snapshot(
            self.analysis_id,
            payload,
            persisted=False,
            max_step_details=self.max_step_details,
        )
        self._enter_ready(snapshot)

    def _enter_ready(self, snapshot: QuantitativeSnapshot) -> None:
        self.snapshot = snapshot
        self.state = OrchestratorState.READY
        self.error = None

        fresh = is_fresh(snapshot)
        self.is_stale = not fresh
        logger.info(
            f"Quantitative snapshot ready for {self.analysis_id}: "
            f"{snapshot.block_count} blocks, fresh={fresh}, persisted={snapshot.is_persisted}"
        )

        if snapshot.is_persisted:
            self.persist_state = PersistState.SAVED
            self.persist_error = None
        else:
            self._start_persist(snapshot)

        if fresh:
            self._stale_latch = False
        elif not self._stale_latch and self.has_results:
            self._stale_latch = True
            logger.warning(f"Snapshot for {self.analysis_id} lacks DEM or grid data; recomputing once")
            self._start_compute("stale")

    def _start_persist(self, snapshot: QuantitativeSnapshot) -> None:
        self.persist_state = PersistState.SAVING
        self.persist_error = None
        self._spawn(self._persist(self._generation, snapshot))

    async def _persist(self, generation: int, snapshot: QuantitativeSnapshot) -> None:
        payload = build_persist_payload(snapshot)
        try:
            await self._persist_snapshot(self.analysis_id, payload)
        except Exception as e:
            if not self._is_live(generation):
                return
            logger.error(f"Persisting snapshot for {self.analysis_id} failed: {e}")
            if self.snapshot is snapshot:
                self.persist_state = PersistState.ERROR
                self.persist_error = str(e) or e.__class__.__name__
            return

        if not self._is_live(generation):
            return
        snapshot.is_persisted = True
        if self.snapshot is snapshot:
            self.persist_state = PersistState.SAVED
        logger.info(f"Quantitative snapshot for {self.analysis_id} persisted")
