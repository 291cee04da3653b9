"""Compare the settlement models with a live database schema.

Exit codes: 0 when the schema matches, 1 on drift, 2 when the check itself
could not run.
"""

from __future__ import annotations

import argparse
import sys

from alembic.autogenerate import api as ag_api
from alembic.runtime.migration import MigrationContext

from powerpot.db.engine import make_engine
from powerpot.models import Base


def _describe(ops, indent: int = 0) -> list[str]:
    lines = []
    for op in ops:
        lines.append(f"{'  ' * indent}- {op}")
        nested = getattr(op, "ops", None)
        if nested:
            lines.extend(_describe(nested, indent + 1))
    return lines


def check(database_url: str | None = None) -> int:
    engine = make_engine(database_url)
    target = engine.url.render_as_string(hide_password=True)
    try:
        with engine.connect() as connection:
            context = MigrationContext.configure(
                connection=connection,
                opts={
                    "compare_type": True,
                    "render_as_batch": connection.dialect.name == "sqlite",
                },
            )
            revision = context.get_current_revision()
            upgrade_ops = ag_api.produce_migrations(context, Base.metadata).upgrade_ops
    except Exception as exc:
        print(f"Schema drift check: ERROR for {target}: {exc}", file=sys.stderr)
        return 2
    finally:
        engine.dispose()

    if upgrade_ops is None:
        print(f"Schema drift check: ERROR for {target}: no comparison produced.")
        return 2
    if upgrade_ops.is_empty():
        print(f"Schema drift check: OK for {target} (revision {revision or 'none'}).")
        return 0
    print(f"Schema drift check: FAILED for {target} (revision {revision or 'none'}):")
    print("\n".join(_describe(upgrade_ops.ops or [])))
    return 1


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--database-url",
        help="Database to inspect; defaults to DB_URL from the environment.",
    )
    args = parser.parse_args(argv)
    return check(args.database_url)


if __name__ == "__main__":
    raise SystemExit(main())
