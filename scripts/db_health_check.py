#!/usr/bin/env python
from __future__ import annotations

import argparse
import json
from datetime import datetime, timedelta, timezone

from sqlalchemy import text

from cyberhr.db import SessionLocal, engine
from cyberhr.services.identity import find_orphaned_identities, purge_orphaned_identities

EXPECTED_HEAD = "0001_initial"
REQUIRED_TABLES = (
    "auth_accounts",
    "users",
    "employees",
    "leave_types",
    "leave_requests",
    "payslips",
    "notifications",
    "whatsapp_conversations",
    "audit_logs",
)


def run(*, orphan_age_hours: int, purge_orphans: bool) -> dict:
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing_tables = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing_tables else "ok", {"tables": missing_tables})

        if "leave_requests" in tables:
            wrong_day_counts = conn.execute(
                text(
                    """
                    select id
                    from leave_requests
                    where days_requested <> (end_date - start_date) + 1
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "leave_request_day_count_mismatch",
                "fail" if wrong_day_counts else "ok",
                {"sample_ids": [row[0] for row in wrong_day_counts]},
            )

        if "payslips" in tables:
            payslips_without_pdf = conn.execute(
                text(
                    """
                    select id
                    from payslips
                    where pdf_url is null or pdf_url = ''
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "payslip_without_pdf",
                "warn" if payslips_without_pdf else "ok",
                {"sample_ids": [row[0] for row in payslips_without_pdf]},
            )

    if "auth_accounts" in tables and "users" in tables:
        older_than = timedelta(hours=orphan_age_hours)
        with SessionLocal() as db:
            orphans = find_orphaned_identities(db, older_than=older_than)
            details: dict = {
                "older_than_hours": orphan_age_hours,
                "account_ids": [account.id for account in orphans[:20]],
                "count": len(orphans),
            }
            if purge_orphans and orphans:
                details["purged"] = purge_orphaned_identities(db, older_than=older_than)
        add("orphaned_identities", "warn" if orphans and not purge_orphans else "ok", details)

    return report


def main() -> None:
    parser = argparse.ArgumentParser(description="Report database consistency problems.")
    parser.add_argument("--orphan-age-hours", type=int, default=24)
    parser.add_argument(
        "--purge-orphans",
        action="store_true",
        help="Delete identity accounts that never received a user profile.",
    )
    args = parser.parse_args()
    report = run(orphan_age_hours=args.orphan_age_hours, purge_orphans=args.purge_orphans)
    print(json.dumps(report, ensure_ascii=False, indent=2))


if __name__ == "__main__":
    main()
