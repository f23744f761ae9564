"""Create notification and directory tables.

Usage:
    python -m scripts.create_tables
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

# Load environment variables before settings are read
load_dotenv()

from notifyhub.core.config import settings  # noqa: E402
from notifyhub.core.database import create_all, dispose_engine  # noqa: E402


async def main() -> int:
    """Create all tables registered on the declarative base."""
    print("=" * 50)
    print("Creating NotifyHub tables")
    print("=" * 50)
    print(f"  Database: {settings.DATABASE_URL.rsplit('@', 1)[-1]}")

    try:
        await create_all()
        print("✓ Tables created")
        return 0
    except Exception as e:
        print(f"✗ Error: {e}")
        return 1
    finally:
        await dispose_engine()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
