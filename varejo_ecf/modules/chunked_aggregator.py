"""
VAREJO-ECF — Module 4: ChunkedAggregator
Runs a RangePlan against the ConsultaEcf fetcher and merges the results.

Flow:
1. Plan the range (single request or one request per day)
2. Single: one fetch, result returned as is, errors propagate
3. Daily: fetch day by day (sequentially), merge cupons by CHCFE across
   days (first wins), append resumos, record failed days and keep going
4. Progress (current, total) advances after every step
"""

import asyncio
import logging
from typing import Callable, Optional, Protocol

from varejo_ecf.modules.range_planner import DEFAULT_THRESHOLD_DAYS, plan_range
from varejo_ecf.modules.reconciler import reconcile_xml
from varejo_ecf.schemas.models import (
    ConsultaResult,
    Cupom,
    CupomResumo,
    FalhaConsulta,
    PlanMode,
    ProgressInfo,
    QueryParams,
)
from varejo_ecf.utils.ecf_helpers import sort_cupons

logger = logging.getLogger(__name__)


class XmlFetcher(Protocol):
    async def fetch_xml(self, params: QueryParams) -> str: ...


class ProgressTracker:
    """
    Progress of one aggregator run, shared with whoever polls it.
    `on_change(current, total)` is called after every update.
    """

    def __init__(self, on_change: Optional[Callable[[int, int], None]] = None):
        self.current = 0
        self.total = 0
        self.on_change = on_change

    def start(self, total: int) -> None:
        self.current = 0
        self.total = total
        self._notify()

    def advance(self) -> None:
        self.current = min(self.current + 1, self.total)
        self._notify()

    def complete(self) -> None:
        self.current = self.total
        self._notify()

    @property
    def is_complete(self) -> bool:
        return self.current >= self.total

    def snapshot(self) -> ProgressInfo:
        return ProgressInfo(current=self.current, total=self.total)

    def _notify(self) -> None:
        if self.on_change:
            self.on_change(self.current, self.total)


class ChunkedAggregator:
    """
    Drives fetch + reconcile cycles for a consulta.

    Usage:
        aggregator = ChunkedAggregator(consulta_service)
        tracker = ProgressTracker()
        result = await aggregator.run(params, progress=tracker)
    """

    def __init__(self, fetcher: XmlFetcher, threshold_days: int = DEFAULT_THRESHOLD_DAYS):
        self.fetcher = fetcher
        self.threshold_days = threshold_days

    async def run(
        self,
        params: QueryParams,
        progress: Optional[ProgressTracker] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ConsultaResult:
        """
        Execute the consulta.

        Args:
            params: Query with DD.MM.YYYY dates
            progress: Tracker updated after every step
            cancel_event: When set, the daily loop stops before the next day and
                progress stays at the number of days processed

        Returns:
            ConsultaResult; `falhas` lists the days that failed

        Raises:
            TransportError, ParseError: Only for single-request plans
        """
        progress = progress or ProgressTracker()
        plan = plan_range(params, self.threshold_days)
        progress.start(len(plan.steps))

        try:
            if plan.mode == PlanMode.SINGLE:
                result = await self._fetch_and_reconcile(plan.steps[0])
                progress.advance()
                return result
            return await self._run_daily(plan.steps, progress, cancel_event)
        finally:
            # A cancelled daily run keeps the count of days actually processed.
            stopped_early = (
                plan.mode == PlanMode.DAILY
                and cancel_event is not None
                and cancel_event.is_set()
            )
            if not stopped_early:
                progress.complete()

    async def _fetch_and_reconcile(self, step: QueryParams) -> ConsultaResult:
        xml_text = await self.fetcher.fetch_xml(step)
        return reconcile_xml(xml_text)

    async def _run_daily(
        self,
        steps: list[QueryParams],
        progress: ProgressTracker,
        cancel_event: Optional[asyncio.Event],
    ) -> ConsultaResult:
        cupons: dict[str, Cupom] = {}
        resumos: list[CupomResumo] = []
        falhas: list[FalhaConsulta] = []

        for step in steps:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(
                    f"Consulta cancelled at {step.data_inicial} "
                    f"({progress.current}/{progress.total} days done)"
                )
                break

            try:
                day_result = await self._fetch_and_reconcile(step)
            except Exception as e:
                message = getattr(e, "message", None) or str(e)
                logger.warning(
                    f"Day {step.data_inicial} skipped: {type(e).__name__}: {message}"
                )
                falhas.append(FalhaConsulta(
                    data_inicial=step.data_inicial,
                    data_final=step.data_final,
                    error_type=type(e).__name__,
                    message=message,
                ))
            else:
                for cupom in day_result.cupons:
                    if cupom.chcfe and cupom.chcfe not in cupons:
                        cupons[cupom.chcfe] = cupom
                resumos.extend(day_result.resumos)

            progress.advance()

        if falhas and len(falhas) == len(steps):
            logger.warning(f"All {len(steps)} daily requests failed")

        return ConsultaResult(
            cupons=sort_cupons(list(cupons.values())),
            resumos=resumos,
            falhas=falhas,
        )
