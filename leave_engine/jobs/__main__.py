"""Leave engine jobs CLI — run the periodic sweeps from cron.

Usage:
    python -m leave_engine.jobs escalations
    python -m leave_engine.jobs allocate 2026                    # all employees
    python -m leave_engine.jobs allocate 2026 --employee <uuid>  # one employee
    python -m leave_engine.jobs accrue 2026 3                    # March accrual, all employees
    python -m leave_engine.jobs carry-forward 2025               # 2025 → 2026
    python -m leave_engine.jobs expire 2026 --as-of 2026-04-01

Exit codes:
    0 = completed with no failures
    1 = completed, one or more items failed, or a single-employee job was rejected
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import uuid
from datetime import date

from leave_engine.accrual.service import AccrualEngine
from leave_engine.common.exceptions import AppException
from leave_engine.config import settings
from leave_engine.database import async_session_factory, engine
from leave_engine.workflow.state_machine import ApprovalStateMachine

logger = logging.getLogger("leave_engine.jobs")


# ══════════════════════════════════════════════════════════════════════
# Job runners
# ══════════════════════════════════════════════════════════════════════

async def _run(args: argparse.Namespace) -> int:
    """Run one job in its own transaction; return the number of failures.

    A single-employee job that raises an AppException counts as one failure.
    """
    async with async_session_factory() as db:
        try:
            if args.job == "escalations":
                summary = await ApprovalStateMachine.check_escalations(db)
                failed = summary.failed
            elif args.job == "allocate" and args.employee:
                summary = await AccrualEngine.allocate(
                    db, args.employee, args.year,
                    args.leave_type.upper() if args.leave_type else None,
                )
                failed = 0
            elif args.job == "allocate":
                summary = await AccrualEngine.allocate_batch(db, args.year)
                failed = summary.failed
            elif args.job == "accrue" and args.employee:
                summary = await AccrualEngine.accrue_month(
                    db, args.employee, args.year, args.month,
                    args.leave_type.upper() if args.leave_type else None,
                )
                failed = 0
            elif args.job == "accrue":
                summary = await AccrualEngine.accrue_month_batch(db, args.year, args.month)
                failed = summary.failed
            elif args.job == "carry-forward":
                summary = await AccrualEngine.apply_carry_forward(db, args.year)
                failed = summary.failed
            else:
                summary = await AccrualEngine.expire_carry_forward(db, args.year, args.as_of)
                failed = summary.failed
            await db.commit()
        except AppException as exc:
            await db.rollback()
            await engine.dispose()
            logger.error("Job %s failed: %s", args.job, exc.detail)
            return 1
        except Exception:
            await db.rollback()
            raise
    await engine.dispose()

    print(summary.model_dump_json(indent=2))
    return failed


# ══════════════════════════════════════════════════════════════════════
# Main
# ══════════════════════════════════════════════════════════════════════

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="python -m leave_engine.jobs",
        description="Leave engine scheduled jobs",
    )
    sub = parser.add_subparsers(dest="job", required=True)

    sub.add_parser("escalations", help="Escalate approval steps past their deadline")

    alloc = sub.add_parser("allocate", help="Annual entitlement allocation")
    alloc.add_argument("year", type=int)
    alloc.add_argument("--employee", type=uuid.UUID,
                       help="Allocate a single employee (default: all active)")
    alloc.add_argument("--leave-type", dest="leave_type",
                       help="Restrict single-employee allocation to one leave type")

    accrue = sub.add_parser("accrue", help="Monthly accrual for policies with an accrual rate")
    accrue.add_argument("year", type=int)
    accrue.add_argument("month", type=int, choices=range(1, 13), metavar="MONTH")
    accrue.add_argument("--employee", type=uuid.UUID,
                        help="Accrue a single employee (default: all active)")
    accrue.add_argument("--leave-type", dest="leave_type",
                        help="Restrict single-employee accrual to one leave type")

    carry = sub.add_parser("carry-forward", help="Year-end carry-forward into year + 1")
    carry.add_argument("year", type=int, help="Year being closed")

    expire = sub.add_parser("expire", help="Remove unused carried-forward days past expiry")
    expire.add_argument("year", type=int, help="Year holding the carried-forward days")
    expire.add_argument("--as-of", dest="as_of", type=date.fromisoformat,
                        help="Evaluation date (YYYY-MM-DD, default: today)")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger.info("Running job %s", args.job)

    failed = asyncio.run(_run(args))
    if failed:
        logger.error("Job %s finished with %d failure(s)", args.job, failed)
    sys.exit(1 if failed > 0 else 0)


if __name__ == "__main__":
    main()
