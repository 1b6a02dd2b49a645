"""
VAREJO-ECF — Module 3: RangePlanner
Decides whether a consulta goes out as one request or as one request per day.

The ConsultaEcf service struggles with long ranges, so anything above the
threshold is split into same-day sub-ranges. Every calendar day is included.
"""

import logging
from datetime import timedelta

from varejo_ecf.schemas.models import PlanMode, QueryParams, RangePlan
from varejo_ecf.utils.ecf_helpers import format_query_date, parse_query_date

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_DAYS = 7


def plan_range(params: QueryParams, threshold_days: int = DEFAULT_THRESHOLD_DAYS) -> RangePlan:
    """
    Build the request plan for a consulta.

    Args:
        params: Original query (dates in DD.MM.YYYY)
        threshold_days: Largest inclusive day count still sent as one request.
            0 splits every valid range day by day.

    Returns:
        RangePlan with a single step (the params as given) or one step per day
    """
    start = parse_query_date(params.data_inicial)
    end = parse_query_date(params.data_final)

    # Impossible dates such as 31.02 do not roll over into the next month;
    # they count as unparseable and the range goes out as given.
    if start is None or end is None or start > end:
        logger.debug(
            f"Single request: unparseable or inverted range "
            f"{params.data_inicial!r}..{params.data_final!r}"
        )
        return RangePlan(mode=PlanMode.SINGLE, steps=[params])

    range_days = (end - start).days + 1
    if range_days <= threshold_days:
        return RangePlan(mode=PlanMode.SINGLE, steps=[params])

    steps = []
    day = start
    while day <= end:
        day_str = format_query_date(day)
        steps.append(QueryParams(
            data_inicial=day_str,
            data_final=day_str,
            estabelecimento=params.estabelecimento,
        ))
        day += timedelta(days=1)

    logger.info(
        f"Range {params.data_inicial}..{params.data_final} split into {len(steps)} daily requests"
    )
    return RangePlan(mode=PlanMode.DAILY, steps=steps)
