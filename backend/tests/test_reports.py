"""Tests for the monthly CSV report."""
import csv
import io
from datetime import datetime, timedelta

import pytest

from hostwatch.models import CheckResult
from hostwatch.services.reports import (
    CSV_COLUMNS,
    build_monthly_report,
    parse_month,
    report_filename,
)
from hostwatch.utils.db_utils import month_of


def parse_csv(content):
    return list(csv.reader(io.StringIO(content)))


async def log_check(session, target, checked_at, status_code=200, error=None, response_time_ms=120):
    session.add(CheckResult(
        target_id=target.id,
        checked_at=checked_at,
        period=month_of(checked_at),
        url=target.url,
        ok=error is None and status_code is not None and status_code < 400,
        status_code=status_code,
        response_time_ms=response_time_ms,
        error=error,
    ))
    await session.commit()


class TestParseMonth:

    def test_bounds(self):
        assert parse_month("2025-02") == (datetime(2025, 2, 1), datetime(2025, 3, 1))

    def test_december_rolls_over(self):
        assert parse_month("2024-12") == (datetime(2024, 12, 1), datetime(2025, 1, 1))

    @pytest.mark.parametrize("month", ["2025-13", "2025-00", "2025-1", "March", "", "2025/03"])
    def test_invalid(self, month):
        with pytest.raises(ValueError):
            parse_month(month)


def test_report_filename():
    assert report_filename("2025-03") == "monitoring-2025-03.csv"
    assert report_filename("2025-03", 7) == "monitoring-2025-03-7.csv"


class TestMonthlyReport:

    @pytest.mark.asyncio
    async def test_rows_in_time_order(self, db_session, add_target):
        target = await add_target("example.com")
        start = datetime(2025, 3, 1, 0, 0, 0)
        # Inserted out of order on purpose
        for minutes in [10, 0, 5]:
            await log_check(db_session, target, start + timedelta(minutes=minutes))

        rows = parse_csv(await build_monthly_report(db_session, "2025-03", target_id=target.id))

        assert rows[0] == CSV_COLUMNS
        assert [r[0] for r in rows[1:]] == [
            "2025-03-01T00:00:00",
            "2025-03-01T00:05:00",
            "2025-03-01T00:10:00",
        ]

    @pytest.mark.asyncio
    async def test_every_check_exported_raw(self, db_session, add_target):
        target = await add_target("example.com")
        start = datetime(2025, 3, 10, 8, 0, 0)
        await log_check(db_session, target, start, status_code=200, response_time_ms=87)
        await log_check(db_session, target, start + timedelta(minutes=5), status_code=None,
                        response_time_ms=None, error="Request timed out")
        await log_check(db_session, target, start + timedelta(minutes=10), status_code=503, response_time_ms=40)

        rows = parse_csv(await build_monthly_report(db_session, "2025-03", target_id=target.id))

        assert rows[1:] == [
            ["2025-03-10T08:00:00", "example.com", "200", "87", ""],
            ["2025-03-10T08:05:00", "example.com", "", "", "Request timed out"],
            ["2025-03-10T08:10:00", "example.com", "503", "40", ""],
        ]

    @pytest.mark.asyncio
    async def test_month_boundaries(self, db_session, add_target):
        target = await add_target()
        await log_check(db_session, target, datetime(2025, 2, 28, 23, 59, 59))
        await log_check(db_session, target, datetime(2025, 3, 1, 0, 0, 0))
        await log_check(db_session, target, datetime(2025, 3, 31, 23, 59, 59))
        await log_check(db_session, target, datetime(2025, 4, 1, 0, 0, 0))

        rows = parse_csv(await build_monthly_report(db_session, "2025-03"))

        assert [r[0] for r in rows[1:]] == ["2025-03-01T00:00:00", "2025-03-31T23:59:59"]

    @pytest.mark.asyncio
    async def test_empty_month_is_header_only(self, db_session, add_target):
        await add_target()

        content = await build_monthly_report(db_session, "2030-01")

        assert parse_csv(content) == [CSV_COLUMNS]

    @pytest.mark.asyncio
    async def test_unknown_target_is_header_only(self, db_session, add_target):
        target = await add_target()
        await log_check(db_session, target, datetime(2025, 3, 5))

        content = await build_monthly_report(db_session, "2025-03", target_id=target.id + 100)

        assert parse_csv(content) == [CSV_COLUMNS]

    @pytest.mark.asyncio
    async def test_all_targets_and_visibility(self, db_session, add_target):
        a = await add_target("a.example.com")
        b = await add_target("b.example.com")
        await log_check(db_session, a, datetime(2025, 3, 5, 10, 0))
        await log_check(db_session, b, datetime(2025, 3, 5, 9, 0))

        everything = parse_csv(await build_monthly_report(db_session, "2025-03"))
        visible = parse_csv(await build_monthly_report(db_session, "2025-03", visible_target_ids=[a.id]))

        assert [r[1] for r in everything[1:]] == ["b.example.com", "a.example.com"]
        assert [r[1] for r in visible[1:]] == ["a.example.com"]

    @pytest.mark.asyncio
    async def test_invalid_month(self, db_session):
        with pytest.raises(ValueError):
            await build_monthly_report(db_session, "2025-3")

    @pytest.mark.asyncio
    async def test_errors_with_commas_are_quoted(self, db_session, add_target):
        target = await add_target()
        await log_check(db_session, target, datetime(2025, 3, 5), status_code=None,
                        error="Connection error: [Errno 111] refused, retry later")

        rows = parse_csv(await build_monthly_report(db_session, "2025-03"))

        assert rows[1][4] == "Connection error: [Errno 111] refused, retry later"
