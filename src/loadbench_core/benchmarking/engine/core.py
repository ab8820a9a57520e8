"""
Run coordinator.

Orchestrates: setup (once) -> scheduled body (scheduler + VU pool) -> teardown
(once) -> threshold evaluation -> report.

State machine: Idle -> SettingUp -> Running -> TearingDown -> Evaluating -> Done.
A setup failure skips Running and TearingDown but still evaluates thresholds
so the report shows what was (not) recorded.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from ...config import EngineSettings, RunOptions
from ...exceptions import FatalAbort, SetupError, TeardownError
from ...utils.asyncio_compat import ensure_task, maybe_await, run_coroutine_sync
from ...workload import Workload, freeze_shared, load_workload
from ..checks import CheckEvaluator
from ..metrics.registry import MetricRegistry
from ..metrics.thresholds import ThresholdResult, evaluate_thresholds, parse_thresholds
from .context import VUContext, activate
from .http import HttpClient
from .models import (
    EXIT_CODES,
    EngineReport,
    MetricSummary,
    PhaseTransition,
    RunPhase,
    RunStatus,
    resolve_status,
)
from .pool import VUPool
from .scheduler import StageScheduler
from .vu import IterationBudget

logger = logging.getLogger(__name__)

SETUP_VU_ID = 0


def _short_error(msg: str, max_len: int = 300) -> str:
    return msg if len(msg) <= max_len else msg[: max_len - 3] + "..."


def _describe(exc: BaseException) -> str:
    if isinstance(exc, FatalAbort):
        return exc.message
    if isinstance(exc, asyncio.TimeoutError):
        return "timed out"
    return f"{type(exc).__name__}: {exc}"


class Engine:
    """
    Runs one workload to completion.

    `transport` is handed to the underlying httpx.AsyncClient (tests pass an
    httpx.MockTransport); `registry` may be supplied to observe samples live.
    """

    def __init__(
        self,
        workload: Union[Workload, str],
        settings: Optional[EngineSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        registry: Optional[MetricRegistry] = None,
    ):
        self.workload = load_workload(workload)
        self.settings = settings or EngineSettings()
        self.registry = registry or MetricRegistry()
        self.checks = CheckEvaluator(self.registry)
        self._transport = transport
        self.phase = RunPhase.IDLE
        self._phases: List[PhaseTransition] = []
        self._pool: Optional[VUPool] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._stop_requested = False
        self._errors: List[str] = []
        self.shared: Any = None
        # Fail at construction on malformed thresholds, not after a long run.
        parse_thresholds(self.options.thresholds)

    @property
    def options(self) -> RunOptions:
        return self.workload.options

    @property
    def pool(self) -> Optional[VUPool]:
        return self._pool

    # Control ---------------------------------------------------------------------
    def stop(self) -> None:
        """Request an early end of the Running phase. Safe to call from any thread."""
        self._stop_requested = True
        loop, event = self._loop, self._stop_event
        if loop is None or event is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(event.set)

    def run_sync(self) -> EngineReport:
        return run_coroutine_sync(self.run())

    async def run(self) -> EngineReport:
        if self.phase != RunPhase.IDLE:
            raise RuntimeError("Engine instances are single-use; create a new Engine to run again")
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        if self._stop_requested:
            self._stop_event.set()

        started_at = time.time()
        started = time.perf_counter()
        self._phases.append(PhaseTransition(phase=RunPhase.IDLE, at=started_at))
        logger.info(f"Starting workload '{self.workload.name}'")

        setup_error: Optional[str] = None
        teardown_error: Optional[str] = None
        aborted = False

        async with self._make_client() as client:
            http = HttpClient(
                client,
                self.registry,
                timeout=self.settings.http_timeout,
                expected_statuses=(
                    self.settings.expected_status_min,
                    self.settings.expected_status_max,
                ),
            )

            self._set_phase(RunPhase.SETTING_UP)
            try:
                self.shared = await self._run_setup(http)
            except SetupError as e:
                setup_error = str(e)
                logger.error(f"Setup failed, no VUs will start: {setup_error}")

            if setup_error is None:
                self._set_phase(RunPhase.RUNNING)
                aborted = await self._run_body(http)

                self._set_phase(RunPhase.TEARING_DOWN)
                try:
                    await self._run_teardown(http)
                except TeardownError as e:
                    teardown_error = str(e)
                    logger.error(f"Teardown failed: {teardown_error}")

        self._set_phase(RunPhase.EVALUATING)
        elapsed = time.perf_counter() - started
        thresholds = evaluate_thresholds(self.registry, self.options.thresholds, elapsed)
        for t in thresholds:
            if not t.passed:
                logger.warning(
                    f"Threshold failed: {t.metric} '{t.expression}' (observed={t.observed})"
                    + (f" [{t.error}]" if t.error else "")
                )

        status = resolve_status(
            setup_failed=setup_error is not None,
            thresholds_passed=all(t.passed for t in thresholds),
            teardown_failed=teardown_error is not None,
            aborted=aborted,
        )
        finished_at = time.time()
        self._set_phase(RunPhase.DONE)
        report = self._build_report(
            status=status,
            started_at=started_at,
            finished_at=finished_at,
            elapsed=elapsed,
            thresholds=thresholds,
            setup_error=setup_error,
            teardown_error=teardown_error,
        )
        logger.info(
            f"Workload '{self.workload.name}' finished: {status.value} "
            f"(exit code {report.exit_code}, {report.iterations} iterations)"
        )
        return report

    # Phases ----------------------------------------------------------------------
    def _set_phase(self, phase: RunPhase) -> None:
        self.phase = phase
        self._phases.append(PhaseTransition(phase=phase, at=time.time()))
        logger.info(f"Phase -> {phase.value}")

    def _make_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self.settings.http_timeout,
            headers={"User-Agent": self.settings.user_agent},
            follow_redirects=True,
        )

    def _make_context(self, vu_id: int, http: HttpClient, phase: str) -> VUContext:
        base_tags: Dict[str, str] = dict(self.options.tags)
        if phase != "default":
            base_tags["phase"] = phase
        return VUContext(
            vu_id=vu_id,
            registry=self.registry,
            http=http,
            checks=self.checks,
            base_tags=base_tags,
            shared=self.shared,
            phase=phase,
        )

    async def _call_in_context(self, ctx: VUContext, fn: Callable[..., Any], *args: Any) -> Any:
        # Callers wrap this in a task so the phase context stays out of the coordinator.
        activate(ctx)
        return await maybe_await(fn(*args))

    async def _run_setup(self, http: HttpClient) -> Any:
        if self.workload.setup is None:
            return None
        ctx = self._make_context(SETUP_VU_ID, http, "setup")
        try:
            result = await asyncio.wait_for(
                ensure_task(self._call_in_context(ctx, self.workload.setup), name="setup"),
                timeout=self.options.setup_timeout,
            )
        except asyncio.TimeoutError as e:
            raise SetupError(
                f"setup() timed out after {self.options.setup_timeout:.1f}s", cause=e
            ) from e
        except Exception as e:
            raise SetupError(_short_error(f"setup() failed: {_describe(e)}"), cause=e) from e
        return freeze_shared(result)

    async def _run_teardown(self, http: HttpClient) -> None:
        if self.workload.teardown is None:
            return
        ctx = self._make_context(SETUP_VU_ID, http, "teardown")
        args = (self.shared,) if self.workload.has_setup else ()
        try:
            await asyncio.wait_for(
                ensure_task(
                    self._call_in_context(ctx, self.workload.teardown, *args), name="teardown"
                ),
                timeout=self.options.teardown_timeout,
            )
        except asyncio.TimeoutError as e:
            raise TeardownError(
                f"teardown() timed out after {self.options.teardown_timeout:.1f}s", cause=e
            ) from e
        except Exception as e:
            raise TeardownError(
                _short_error(f"teardown() failed: {_describe(e)}"), cause=e
            ) from e

    async def _run_body(self, http: HttpClient) -> bool:
        """Drive the pool until the run window ends. Returns True if stopped externally."""
        opts = self.options
        loop = asyncio.get_running_loop()
        scheduler = StageScheduler.from_options(opts, mode=self.settings.ramp_mode)
        budget = IterationBudget(opts.iterations)
        pool = VUPool(
            self.workload,
            self.registry,
            lambda vu_id: self._make_context(vu_id, http, "default"),
            budget=budget,
        )
        self._pool = pool
        deadline = opts.total_duration
        tick = self.settings.tick_interval
        start = loop.time()
        aborted = False

        if opts.iterations is not None:
            pool.reconcile(opts.max_vus)
            logger.info(
                f"Running {opts.iterations} shared iterations on {opts.max_vus} VUs "
                f"(max {deadline:.1f}s)"
            )
        else:
            logger.info(
                f"Running for {deadline:.1f}s, up to {scheduler.max_target} VUs "
                f"({len(opts.stages)} stages, {self.settings.ramp_mode} ramp)"
            )

        while True:
            if self._stop_event.is_set():
                aborted = True
                logger.info("Stop requested, ending run early")
                break
            elapsed = loop.time() - start
            if elapsed >= deadline:
                break
            if opts.iterations is not None:
                if len(pool) == 0:
                    break
                wait = min(tick, deadline - elapsed)
            else:
                pool.reconcile(scheduler.target_vus(elapsed))
                wait = min(tick, deadline - elapsed)
                boundary = scheduler.next_boundary(elapsed)
                if boundary is not None:
                    wait = min(wait, max(boundary - elapsed, 0.0))
            await self._wait(pool, wait)

        forced = await pool.stop_all(opts.graceful_stop)
        if forced:
            self._errors.append(f"{forced} VUs force-stopped after {opts.graceful_stop:.1f}s drain")
        self._errors.extend(pool.errors)
        return aborted

    async def _wait(self, pool: VUPool, timeout: float) -> None:
        """Sleep until the next tick, an iteration completion or a stop request."""
        if timeout <= 0:
            await asyncio.sleep(0)
            return
        waiters = {
            asyncio.ensure_future(self._stop_event.wait()),
            asyncio.ensure_future(pool.wakeup.wait()),
        }
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for w in waiters:
                w.cancel()
            pool.wakeup.clear()

    # Report ----------------------------------------------------------------------
    def _metric_summaries(self, elapsed: float) -> Dict[str, MetricSummary]:
        stats = self.settings.summary_trend_stats
        out: Dict[str, MetricSummary] = {}
        for name in self.registry.list_metrics():
            metric = self.registry.get(name)
            if metric is None or len(metric) == 0:
                continue
            out[name] = MetricSummary(
                name=name,
                kind=metric.kind.value,
                contains_time=metric.contains_time,
                values=self.registry.summary(name, elapsed, trend_stats=stats),
                samples=len(metric),
            )
        for tset in parse_thresholds(self.options.thresholds):
            sel = tset.selector
            if not sel.tag_filter or sel.metric not in self.registry:
                continue
            metric = self.registry.get(sel.metric)
            summary = MetricSummary(
                name=sel.metric,
                kind=metric.kind.value,
                contains_time=metric.contains_time,
                tag_filter=sel.filter_dict,
                values=self.registry.summary(sel.metric, elapsed, sel.filter_dict, stats),
                samples=len(self.registry.values(sel.metric, sel.filter_dict)),
            )
            out[summary.key] = summary
        return out

    def _build_report(
        self,
        status: RunStatus,
        started_at: float,
        finished_at: float,
        elapsed: float,
        thresholds: List[ThresholdResult],
        setup_error: Optional[str],
        teardown_error: Optional[str],
    ) -> EngineReport:
        reg = self.registry
        errors = list(self._errors)
        if setup_error:
            errors.insert(0, setup_error)
        if teardown_error:
            errors.append(teardown_error)
        return EngineReport(
            workload=self.workload.name,
            status=status,
            exit_code=EXIT_CODES[status],
            phases=list(self._phases),
            started_at=started_at,
            finished_at=finished_at,
            duration_s=elapsed,
            metrics=self._metric_summaries(elapsed),
            thresholds=thresholds,
            checks=self.checks.summaries(),
            checks_total=int(reg.count("checks_total")),
            checks_rate=reg.rate("checks_rate"),
            iterations=int(reg.count("iterations_total")),
            iterations_failed=int(reg.count("iterations_failed")),
            iterations_incomplete=int(reg.count("iterations_incomplete")),
            vus_max=self._pool.vus_max if self._pool is not None else 0,
            setup_error=setup_error,
            teardown_error=teardown_error,
            errors=errors,
        )


async def run_workload_async(
    workload: Union[Workload, str],
    settings: Optional[EngineSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **option_overrides: Any,
) -> EngineReport:
    wl = load_workload(workload)
    if option_overrides:
        wl = wl.with_options(**option_overrides)
    return await Engine(wl, settings=settings, transport=transport).run()


def run_workload(
    workload: Union[Workload, str],
    settings: Optional[EngineSettings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **option_overrides: Any,
) -> EngineReport:
    """
    Synchronous convenience wrapper.
    - Accepts a Workload or anything load_workload() resolves.
    - Runs the event loop safely (loop-aware).
    """
    return run_coroutine_sync(
        run_workload_async(workload, settings=settings, transport=transport, **option_overrides)
    )
