"""Report engine - raw monthly CSV export of the check log.

No aggregation or rounding: one row per logged check, in time order.
"""
import csv
import io
import logging
import re
from datetime import datetime
from typing import Iterable, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import CheckResult, MonitorTarget

logger = logging.getLogger(__name__)

CSV_COLUMNS = ["timestamp", "domain", "status_code", "response_time_ms", "error"]

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")


def parse_month(month: str) -> Tuple[datetime, datetime]:
    """Return [start, end) of a YYYY-MM month.

    Raises ValueError for anything that is not a valid month.
    """
    match = _MONTH_RE.match(month or "")
    if not match:
        raise ValueError(f"Invalid month '{month}', expected YYYY-MM")
    year, mon = int(match.group(1)), int(match.group(2))
    if not 1 <= mon <= 12:
        raise ValueError(f"Invalid month '{month}', expected YYYY-MM")

    start = datetime(year, mon, 1)
    end = datetime(year + 1, 1, 1) if mon == 12 else datetime(year, mon + 1, 1)
    return start, end


def report_filename(month: str, target_id: Optional[int] = None) -> str:
    if target_id is not None:
        return f"monitoring-{month}-{target_id}.csv"
    return f"monitoring-{month}.csv"


def _format_row(check: CheckResult, domain: str) -> list:
    return [
        check.checked_at.isoformat(),
        domain,
        "" if check.status_code is None else check.status_code,
        "" if check.response_time_ms is None else check.response_time_ms,
        check.error or "",
    ]


def render_csv(rows: Iterable[list]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    writer.writerows(rows)
    return buffer.getvalue()


async def build_monthly_report(
    session: AsyncSession,
    month: str,
    target_id: Optional[int] = None,
    visible_target_ids: Optional[Iterable[int]] = None,
) -> str:
    """CSV of every check in a month, for one target or all visible targets.

    visible_target_ids restricts the export to the targets the caller may
    see; None means no restriction. An unknown target or an empty month
    yields the header row only.
    """
    start, end = parse_month(month)

    query = (
        select(CheckResult, MonitorTarget.domain)
        .join(MonitorTarget, MonitorTarget.id == CheckResult.target_id)
        .where(
            CheckResult.period == month,
            CheckResult.checked_at >= start,
            CheckResult.checked_at < end,
        )
        .order_by(CheckResult.checked_at.asc(), CheckResult.id.asc())
    )
    if target_id is not None:
        query = query.where(CheckResult.target_id == target_id)
    if visible_target_ids is not None:
        query = query.where(CheckResult.target_id.in_(list(visible_target_ids)))

    result = await session.execute(query)
    rows = [_format_row(check, domain) for check, domain in result.all()]

    logger.info(
        f"Built monitoring report for {month}"
        f"{f' target {target_id}' if target_id is not None else ''}: {len(rows)} checks"
    )
    return render_csv(rows)
