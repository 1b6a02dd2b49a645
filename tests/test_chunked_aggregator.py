"""
VAREJO-ECF — Range planning and chunked aggregation tests.

Run: pytest tests/test_chunked_aggregator.py -v
"""

import asyncio
import pytest

from ecf_samples import FakeFetcher, cupom, day_response, soap_response

from varejo_ecf.modules.chunked_aggregator import ChunkedAggregator, ProgressTracker
from varejo_ecf.modules.consulta_service import TransportError
from varejo_ecf.modules.markup_extractor import ParseError
from varejo_ecf.modules.range_planner import plan_range
from varejo_ecf.schemas.models import PlanMode, QueryParams


def _params(data_inicial: str, data_final: str, estabelecimento: str = "1") -> QueryParams:
    return QueryParams(data_inicial=data_inicial, data_final=data_final, estabelecimento=estabelecimento)


# ─────────────────────────────────────────────────────────────
# RANGE PLANNER
# ─────────────────────────────────────────────────────────────

class TestPlanRange:
    def test_short_range_single(self):
        params = _params("01.09.2025", "02.09.2025")
        plan = plan_range(params)
        assert plan.mode == PlanMode.SINGLE
        assert plan.steps == [params]

    def test_long_range_daily(self):
        plan = plan_range(_params("01.09.2025", "10.09.2025", "5"))
        assert plan.mode == PlanMode.DAILY
        assert len(plan.steps) == 10
        assert plan.steps[0] == _params("01.09.2025", "01.09.2025", "5")
        assert plan.steps[-1] == _params("10.09.2025", "10.09.2025", "5")

    def test_threshold_is_inclusive(self):
        assert plan_range(_params("01.09.2025", "07.09.2025")).mode == PlanMode.SINGLE
        assert plan_range(_params("01.09.2025", "08.09.2025")).mode == PlanMode.DAILY

    def test_month_boundary(self):
        plan = plan_range(_params("28.02.2024", "06.03.2024"))
        assert [s.data_inicial for s in plan.steps] == [
            "28.02.2024", "29.02.2024", "01.03.2024", "02.03.2024",
            "03.03.2024", "04.03.2024", "05.03.2024", "06.03.2024",
        ]

    def test_weekends_included(self):
        # 06.09.2025 and 07.09.2025 are a Saturday and a Sunday.
        plan = plan_range(_params("01.09.2025", "09.09.2025"))
        days = [s.data_inicial for s in plan.steps]
        assert "06.09.2025" in days
        assert "07.09.2025" in days

    def test_zero_threshold_splits_every_range(self):
        plan = plan_range(_params("01.09.2025", "01.09.2025"), threshold_days=0)
        assert plan.mode == PlanMode.DAILY
        assert len(plan.steps) == 1

    def test_unparseable_date_single(self):
        params = _params("2025-09-01", "10.09.2025")
        plan = plan_range(params)
        assert plan.mode == PlanMode.SINGLE
        assert plan.steps == [params]

    def test_invalid_calendar_date_single(self):
        plan = plan_range(_params("01.02.2025", "31.02.2025"))
        assert plan.mode == PlanMode.SINGLE

    def test_inverted_range_single(self):
        params = _params("10.09.2025", "01.09.2025")
        plan = plan_range(params)
        assert plan.mode == PlanMode.SINGLE
        assert plan.steps == [params]


# ─────────────────────────────────────────────────────────────
# PROGRESS TRACKER
# ─────────────────────────────────────────────────────────────

class TestProgressTracker:
    def test_notifies_on_change(self):
        seen = []
        tracker = ProgressTracker(on_change=lambda current, total: seen.append((current, total)))
        tracker.start(2)
        tracker.advance()
        tracker.advance()
        assert seen == [(0, 2), (1, 2), (2, 2)]
        assert tracker.is_complete

    def test_advance_capped_at_total(self):
        tracker = ProgressTracker()
        tracker.start(1)
        tracker.advance()
        tracker.advance()
        assert tracker.snapshot().current == 1

    def test_complete(self):
        tracker = ProgressTracker()
        tracker.start(5)
        tracker.complete()
        assert (tracker.current, tracker.total) == (5, 5)


# ─────────────────────────────────────────────────────────────
# AGGREGATOR — SINGLE PLAN
# ─────────────────────────────────────────────────────────────

class TestSinglePlan:
    def test_one_fetch(self):
        fetcher = FakeFetcher({"01.09.2025": soap_response(cupom("K2", "2"), cupom("K1", "1"))})
        tracker = ProgressTracker()

        result = asyncio.run(ChunkedAggregator(fetcher).run(_params("01.09.2025", "02.09.2025"), progress=tracker))

        assert len(fetcher.calls) == 1
        assert fetcher.calls[0] == _params("01.09.2025", "02.09.2025")
        assert [c.chcfe for c in result.cupons] == ["K1", "K2"]
        assert result.falhas == []
        assert (tracker.current, tracker.total) == (1, 1)

    def test_transport_error_propagates(self):
        fetcher = FakeFetcher({"01.09.2025": TransportError("Erro na requisição: 500 Internal Server Error", 500)})
        tracker = ProgressTracker()

        with pytest.raises(TransportError):
            asyncio.run(ChunkedAggregator(fetcher).run(_params("01.09.2025", "02.09.2025"), progress=tracker))

        assert (tracker.current, tracker.total) == (1, 1)

    def test_parse_error_propagates(self):
        fetcher = FakeFetcher({"01.09.2025": "<not-xml"})
        with pytest.raises(ParseError):
            asyncio.run(ChunkedAggregator(fetcher).run(_params("01.09.2025", "01.09.2025")))

    def test_unparseable_dates_sent_as_given(self):
        fetcher = FakeFetcher({}, default=soap_response())
        asyncio.run(ChunkedAggregator(fetcher).run(_params("1.9.25", "10.9.25")))
        assert fetcher.calls == [_params("1.9.25", "10.9.25")]


# ─────────────────────────────────────────────────────────────
# AGGREGATOR — DAILY PLAN
# ─────────────────────────────────────────────────────────────

def _five_days(**overrides) -> dict:
    responses = {f"{day:02d}.09.2025": day_response(day, coo=str(day)) for day in range(1, 6)}
    responses.update(overrides)
    return responses


class TestDailyPlan:
    def _run(self, fetcher, params=None, tracker=None, cancel_event=None):
        aggregator = ChunkedAggregator(fetcher, threshold_days=0)
        return asyncio.run(aggregator.run(
            params or _params("01.09.2025", "05.09.2025"),
            progress=tracker,
            cancel_event=cancel_event,
        ))

    def test_days_fetched_in_order(self):
        fetcher = FakeFetcher(_five_days())
        self._run(fetcher)
        assert [(c.data_inicial, c.data_final) for c in fetcher.calls] == [
            (f"{day:02d}.09.2025", f"{day:02d}.09.2025") for day in range(1, 6)
        ]

    def test_failed_day_is_skipped(self):
        fetcher = FakeFetcher(_five_days(**{"03.09.2025": TransportError("Erro na requisição: 500 Internal Server Error", 500)}))
        tracker = ProgressTracker()

        result = self._run(fetcher, tracker=tracker)

        assert [c.chcfe for c in result.cupons] == ["CHAVE-01", "CHAVE-02", "CHAVE-04", "CHAVE-05"]
        assert len(result.resumos) == 4
        assert (tracker.current, tracker.total) == (5, 5)
        assert len(result.falhas) == 1
        falha = result.falhas[0]
        assert falha.data_inicial == "03.09.2025"
        assert falha.data_final == "03.09.2025"
        assert falha.error_type == "TransportError"
        assert "500" in falha.message

    def test_malformed_day_is_skipped(self):
        fetcher = FakeFetcher(_five_days(**{"02.09.2025": "<html><body>Bad Gateway"}))
        result = self._run(fetcher)
        assert len(result.cupons) == 4
        assert [f.error_type for f in result.falhas] == ["ParseError"]

    def test_unexpected_error_is_skipped(self):
        fetcher = FakeFetcher(_five_days(**{"04.09.2025": RuntimeError("boom")}))
        result = self._run(fetcher)
        assert len(result.cupons) == 4
        assert result.falhas[0].error_type == "RuntimeError"
        assert result.falhas[0].message == "boom"

    def test_all_days_failing_returns_empty(self):
        error = TransportError("Timeout", 504)
        fetcher = FakeFetcher({}, default=error)
        tracker = ProgressTracker()

        result = self._run(fetcher, tracker=tracker)

        assert result.cupons == []
        assert result.resumos == []
        assert len(result.falhas) == 5
        assert (tracker.current, tracker.total) == (5, 5)

    def test_duplicate_chcfe_across_days_first_wins(self):
        fetcher = FakeFetcher(_five_days(**{
            "01.09.2025": day_response(1, coo="1", chcfe="SHARED"),
            "02.09.2025": day_response(2, coo="2", chcfe="SHARED"),
        }))
        result = self._run(fetcher)
        shared = [c for c in result.cupons if c.chcfe == "SHARED"]
        assert len(shared) == 1
        assert shared[0].rzdata == "20250901"

    def test_resumos_appended_per_day(self):
        fetcher = FakeFetcher(_five_days())
        result = self._run(fetcher)
        assert [r.rzdata for r in result.resumos] == [f"202509{day:02d}" for day in range(1, 6)]

    def test_result_sorted_by_coo(self):
        fetcher = FakeFetcher(_five_days(**{
            "01.09.2025": day_response(1, coo="50"),
            "02.09.2025": day_response(2, coo="7"),
        }))
        result = self._run(fetcher)
        assert [c.coo for c in result.cupons] == ["3", "4", "5", "7", "50"]

    def test_progress_reported_per_day(self):
        seen = []
        tracker = ProgressTracker(on_change=lambda current, total: seen.append((current, total)))
        self._run(FakeFetcher(_five_days()), tracker=tracker)
        assert seen[0] == (0, 5)
        assert (1, 5) in seen and (3, 5) in seen
        assert seen[-1] == (5, 5)

    def test_default_threshold_splits_long_range(self):
        responses = {f"{day:02d}.09.2025": day_response(day, coo=str(day)) for day in range(1, 11)}
        fetcher = FakeFetcher(responses)
        result = asyncio.run(ChunkedAggregator(fetcher).run(_params("01.09.2025", "10.09.2025")))
        assert len(fetcher.calls) == 10
        assert len(result.cupons) == 10


class TestCancellation:
    def test_cancel_stops_before_next_day(self):
        cancel_event = asyncio.Event()

        class CancellingFetcher(FakeFetcher):
            async def fetch_xml(self, params):
                xml_text = await super().fetch_xml(params)
                if params.data_inicial == "02.09.2025":
                    cancel_event.set()
                return xml_text

        fetcher = CancellingFetcher(_five_days())
        tracker = ProgressTracker()
        aggregator = ChunkedAggregator(fetcher, threshold_days=0)

        result = asyncio.run(aggregator.run(
            _params("01.09.2025", "05.09.2025"), progress=tracker, cancel_event=cancel_event,
        ))

        assert len(fetcher.calls) == 2
        assert [c.chcfe for c in result.cupons] == ["CHAVE-01", "CHAVE-02"]
        assert result.falhas == []
        assert (tracker.current, tracker.total) == (2, 5)
        assert not tracker.is_complete

    def test_unset_event_runs_all_days(self):
        fetcher = FakeFetcher(_five_days())
        result = asyncio.run(ChunkedAggregator(fetcher, threshold_days=0).run(
            _params("01.09.2025", "05.09.2025"), cancel_event=asyncio.Event(),
        ))
        assert len(result.cupons) == 5
