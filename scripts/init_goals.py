"""
scripts/init_goals.py
────────────────────────────────────────────────────────────────────────
Materialize – or refresh – today's `daily_goals` rows:

Every user (same path as the 00:30 job):

    python -m scripts.init_goals

One user:

    python -m scripts.init_goals --user 123

Retention cleanup instead of goals:

    python -m scripts.init_goals --cleanup
"""
from __future__ import annotations

import asyncio
from argparse import ArgumentParser

from dotenv import load_dotenv
load_dotenv()

from config import settings  # noqa: E402
from logging_config import configure_logging  # noqa: E402
from services.container import build_services  # noqa: E402
from services.db import create_all, dispose_engine, engine  # noqa: E402


async def _main(user_id: str | None, cleanup: bool) -> int:
    eng = await engine()
    await create_all(eng)
    services = build_services(eng, settings)
    try:
        if cleanup:
            result = await services.monitor.cleanup()
            print(f"✓ cleanup removed {result.deleted_records} records")
            for err in result.errors:
                print(f"✗ {err}")
            return 1 if result.errors else 0

        if user_id is not None:
            row = await services.orchestrator.run_for_user(user_id, services.population)
            print(f"✓ goals for {user_id} on {row.date}: {row.calories} kcal")
            return 0

        result = await services.orchestrator.run(services.population, services.population)
        print(
            f"✓ {result.day}: {result.created} created, {result.updated} updated, "
            f"{result.skipped} skipped"
        )
        for err in result.errors:
            print(f"✗ {err}")
        return 1 if result.errors else 0
    finally:
        await dispose_engine()


def main() -> None:
    ap = ArgumentParser(description="Create or refresh today's daily goals")
    ap.add_argument("--user", help="only this user_id")
    ap.add_argument("--cleanup", action="store_true", help="run retention cleanup instead")
    args = ap.parse_args()

    configure_logging()
    raise SystemExit(asyncio.run(_main(args.user, args.cleanup)))


if __name__ == "__main__":
    main()
