"""Dispatch due scheduled notifications once, outside Celery beat.

Usage:
    python -m scripts.run_scheduled_notifications
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

from notifyhub.core.config import settings  # noqa: E402
from notifyhub.core.database import async_session_maker, dispose_engine  # noqa: E402
from notifyhub.core.logging import setup_logging  # noqa: E402
from notifyhub.modules.notification.service import NotificationService  # noqa: E402


async def main() -> int:
    """Run one pass of scheduled notification processing."""
    setup_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    print("=" * 60)
    print("Processing scheduled notifications")
    print("=" * 60)

    try:
        async with async_session_maker() as session:
            service = NotificationService.from_session(session)
            outcomes = await service.process_scheduled_notifications()
    finally:
        await dispose_engine()

    for outcome in outcomes:
        print(
            f"  {outcome.notification_id}: {outcome.status.value} "
            f"(sent={outcome.stats.sent}, failed={outcome.stats.failed}, skipped={outcome.stats.skipped})"
        )
    print(f"\nProcessed {len(outcomes)} notification(s)")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
