"""Jobs CLI: argument parsing and exit codes."""

from __future__ import annotations

import uuid
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leave_engine.jobs import __main__ as jobs_cli
from leave_engine.ledger.service import BalanceLedger
from tests.factories import seed_employee, seed_leave_type, seed_policy


class _Engine:
    async def dispose(self) -> None:
        pass


@pytest.fixture
def cli_db(db: AsyncSession, monkeypatch):
    """Point the CLI at the test database."""
    monkeypatch.setattr(
        jobs_cli, "async_session_factory",
        async_sessionmaker(db.bind, class_=AsyncSession, expire_on_commit=False),
    )
    monkeypatch.setattr(jobs_cli, "engine", _Engine())
    return db


class TestParser:

    def test_accrue_takes_year_and_month(self):
        args = jobs_cli.build_parser().parse_args(["accrue", "2026", "3"])
        assert (args.job, args.year, args.month, args.employee) == ("accrue", 2026, 3, None)

    def test_month_out_of_range_is_rejected(self):
        with pytest.raises(SystemExit):
            jobs_cli.build_parser().parse_args(["accrue", "2026", "13"])


class TestRun:

    async def test_unknown_employee_exits_with_failure(self, cli_db: AsyncSession, caplog):
        args = jobs_cli.build_parser().parse_args(
            ["allocate", "2026", "--employee", str(uuid.uuid4())]
        )

        assert await jobs_cli._run(args) == 1
        assert "Job allocate failed" in caplog.text

    async def test_single_employee_allocation_succeeds(self, cli_db: AsyncSession):
        emp = await seed_employee(cli_db)
        await seed_leave_type(cli_db)
        await seed_policy(cli_db, annual_entitlement=Decimal("18"))
        await cli_db.commit()
        args = jobs_cli.build_parser().parse_args(
            ["allocate", "2026", "--employee", str(emp.id)]
        )

        assert await jobs_cli._run(args) == 0
        balance = await BalanceLedger.get_balance(cli_db, emp.id, "ANNUAL", 2026)
        assert balance.total_entitlement == Decimal("18")

    async def test_monthly_accrual_batch(self, cli_db: AsyncSession):
        emp = await seed_employee(cli_db)
        await seed_leave_type(cli_db)
        await seed_policy(cli_db, accrual_rate=Decimal("1.5"))
        await cli_db.commit()

        args = jobs_cli.build_parser().parse_args(["accrue", "2026", "3"])

        assert await jobs_cli._run(args) == 0
        balance = await BalanceLedger.get_balance(cli_db, emp.id, "ANNUAL", 2026)
        assert balance.total_entitlement == Decimal("1.5")
