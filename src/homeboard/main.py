"""Command-line entry point: serve the API or run one maintenance job."""

import argparse
import asyncio
import logging
import sys
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any

from homeboard.config import Settings
from homeboard.db import MarketplaceStorage
from homeboard.logging import configure_logging, get_logger
from homeboard.notifiers.email import ZeptoMailClient
from homeboard.services.analytics import AnalyticsService
from homeboard.services.digest import DigestService
from homeboard.services.lifecycle import ListingLifecycle

logger = get_logger(__name__)


async def run_with_storage(
    settings: Settings, job: Callable[[MarketplaceStorage, ZeptoMailClient | None], Awaitable[Any]]
) -> Any:
    """Open storage, run one job, and close storage again."""
    storage = MarketplaceStorage(settings.database_path)
    mailer = ZeptoMailClient.from_settings(settings)
    try:
        await storage.initialize()
        return await job(storage, mailer if mailer.is_configured else None)
    finally:
        await storage.close()


async def run_rollup(settings: Settings, day: date | None = None) -> None:
    async def job(storage: MarketplaceStorage, _mailer: ZeptoMailClient | None) -> None:
        service = AnalyticsService(storage, settings)
        summary = await (service.rollup_day(day) if day else service.rollup_yesterday())
        print(summary.model_dump_json(indent=2))

    await run_with_storage(settings, job)


async def run_backfill(settings: Settings, days: int) -> None:
    async def job(storage: MarketplaceStorage, _mailer: ZeptoMailClient | None) -> None:
        rolled = await AnalyticsService(storage, settings).backfill(days)
        print(f"Rolled up {len(rolled)} days: {rolled[0]} .. {rolled[-1]}" if rolled else "")

    await run_with_storage(settings, job)


async def run_cleanup(settings: Settings) -> None:
    async def job(storage: MarketplaceStorage, _mailer: ZeptoMailClient | None) -> None:
        print(await AnalyticsService(storage, settings).cleanup())

    await run_with_storage(settings, job)


async def run_lifecycle(settings: Settings) -> None:
    async def job(storage: MarketplaceStorage, mailer: ZeptoMailClient | None) -> None:
        print(await ListingLifecycle(storage, settings, mailer).run_lifecycle())

    await run_with_storage(settings, job)


async def run_admin_digest(settings: Settings, *, force: bool) -> None:
    async def job(storage: MarketplaceStorage, mailer: ZeptoMailClient | None) -> None:
        print(await DigestService(storage, settings, mailer).send_admin_digest(force=force))

    await run_with_storage(settings, job)


def issue_token(settings: Settings, user_id: str) -> str:
    from homeboard.web.auth import create_access_token

    return create_access_token(user_id, settings)


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="HaDirot - listings marketplace API and maintenance jobs"
    )
    parser.add_argument("--serve", action="store_true", help="Start the web server")
    parser.add_argument(
        "--no-scheduler",
        action="store_true",
        help="With --serve: do not start the cron jobs",
    )
    parser.add_argument(
        "--rollup",
        action="store_true",
        help="Roll up analytics for one day (yesterday unless --date is given)",
    )
    parser.add_argument("--date", type=date.fromisoformat, help="Day for --rollup (YYYY-MM-DD)")
    parser.add_argument("--backfill", type=int, metavar="DAYS", help="Roll up the last N days")
    parser.add_argument("--cleanup", action="store_true", help="Delete old analytics rows")
    parser.add_argument(
        "--lifecycle",
        action="store_true",
        help="Deactivate expired listings, delete stale ones and expire featured slots",
    )
    parser.add_argument("--send-digest", action="store_true", help="Send the admin digest now")
    parser.add_argument(
        "--force",
        action="store_true",
        help="With --send-digest: send even when the digest is disabled",
    )
    parser.add_argument(
        "--issue-token",
        metavar="USER_ID",
        help="Print a bearer token for a profile id (requires HOMEBOARD_JWT_SECRET)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug-level logging for troubleshooting",
    )
    args = parser.parse_args()

    try:
        settings = Settings()
    except Exception as e:
        print(f"Error: Failed to load settings. {e}", file=sys.stderr)
        sys.exit(1)

    configure_logging(
        json_output=settings.json_logs, level=logging.DEBUG if args.debug else logging.INFO
    )

    if args.serve:
        import uvicorn

        from homeboard.web.app import create_app

        app = create_app(settings, run_scheduler=not args.no_scheduler)
        uvicorn.run(app, host=settings.web_host, port=settings.web_port, log_level="info")
    elif args.issue_token:
        if not settings.jwt_secret.get_secret_value():
            print("Error: HOMEBOARD_JWT_SECRET is not set", file=sys.stderr)
            sys.exit(1)
        print(issue_token(settings, args.issue_token))
    elif args.rollup:
        asyncio.run(run_rollup(settings, args.date))
    elif args.backfill:
        asyncio.run(run_backfill(settings, args.backfill))
    elif args.cleanup:
        asyncio.run(run_cleanup(settings))
    elif args.lifecycle:
        asyncio.run(run_lifecycle(settings))
    elif args.send_digest:
        asyncio.run(run_admin_digest(settings, force=args.force))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
