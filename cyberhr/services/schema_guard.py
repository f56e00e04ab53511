"""Compare the live database against the ORM models and the migration head.

Run once at startup; ``/health`` reports the stored result.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from alembic.script import ScriptDirectory
from alembic.util import CommandError
from sqlalchemy import Enum as SAEnum
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.engine.reflection import Inspector
from sqlalchemy.exc import SQLAlchemyError

from cyberhr.models import Base

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "migrations"


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


def required_table_columns() -> dict[str, set[str]]:
    required = {table.name: {column.name for column in table.columns} for table in Base.metadata.sorted_tables}
    required["alembic_version"] = {"version_num"}
    return required


def required_enum_values() -> dict[str, set[str]]:
    required: dict[str, set[str]] = {}
    for table in Base.metadata.sorted_tables:
        for column in table.columns:
            if isinstance(column.type, SAEnum) and column.type.name:
                required[column.type.name] = set(column.type.enums)
    return required


def migration_heads() -> set[str]:
    return set(ScriptDirectory(str(MIGRATIONS_DIR)).get_heads())


def _check_tables(inspector: Inspector, issues: list[str]) -> None:
    for table_name, required_columns in required_table_columns().items():
        try:
            present = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except (SQLAlchemyError, KeyError) as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue
        missing = sorted(required_columns - present)
        if missing:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing)}")


def _check_enums(inspector: Inspector, issues: list[str], warnings: list[str]) -> None:
    # SQLite has no named enums; only PostgreSQL inspectors expose get_enums.
    try:
        reflected = inspector.get_enums() or []
    except (SQLAlchemyError, NotImplementedError, AttributeError) as exc:
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        return

    labels_by_name = {
        str(item.get("name")): {str(label) for label in item.get("labels") or []}
        for item in reflected
        if item.get("name")
    }
    for enum_name, required_values in sorted(required_enum_values().items()):
        if enum_name not in labels_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing = sorted(required_values - labels_by_name[enum_name])
        if missing:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing)}")


def _check_migration_head(engine: Engine, issues: list[str], warnings: list[str]) -> None:
    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
    except SQLAlchemyError as exc:
        issues.append(f"ALEMBIC_VERSION_CHECK_FAILED:{exc.__class__.__name__}")
        return

    version = str(row).strip() if row is not None else ""
    if not version:
        issues.append("ALEMBIC_VERSION_EMPTY")
        return

    try:
        heads = migration_heads()
    except (CommandError, OSError) as exc:
        warnings.append(f"MIGRATION_HEADS_UNREADABLE:{exc.__class__.__name__}")
        return
    if version not in heads:
        issues.append(f"ALEMBIC_VERSION_NOT_HEAD:{version}")


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)

    inspector = inspect(engine)
    _check_tables(inspector, issues)
    _check_enums(inspector, issues, warnings)
    _check_migration_head(engine, issues, warnings)

    return SchemaGuardResult(ok=not issues, checked_at_utc=checked_at_utc, issues=issues, warnings=warnings)
