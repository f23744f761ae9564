"""Seed the default notification templates.

Usage:
    python -m scripts.seed_templates
"""

import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

load_dotenv()

from notifyhub.core.database import async_session_maker, dispose_engine  # noqa: E402
from notifyhub.modules.notification.repository import TemplateRepository  # noqa: E402
from notifyhub.modules.notification.schemas import (  # noqa: E402
    NotificationChannel,
    TemplateCreate,
)

DEFAULT_TEMPLATES = {
    "welcome-email": TemplateCreate(
        name="Welcome Email",
        channel=NotificationChannel.EMAIL,
        subject="Welcome to {{app.name}}!",
        content=(
            "Hello {{user.name|default:there}}, welcome to {{app.name}}. "
            "Your account has been created successfully."
        ),
        variables=["user.name", "app.name"],
    ),
    "form-submitted-sms": TemplateCreate(
        name="Form Submitted SMS",
        channel=NotificationChannel.SMS,
        content=(
            "Your form has been submitted successfully. Reference ID: {{reference.id}}. "
            "Track status at {{app.url}}"
        ),
        variables=["reference.id", "app.url"],
    ),
    "scheme-update-chat": TemplateCreate(
        name="Scheme Update Chat",
        channel=NotificationChannel.CHAT,
        content=(
            "Namaste {{user.name}}, {{scheme.name}} is now open"
            "{{#if scheme.deadline}} until {{scheme.deadline|date:en-IN}}{{/if}}."
        ),
        variables=["scheme.name"],
        metadata={"message_type": "text"},
    ),
    "event-reminder-push": TemplateCreate(
        name="Event Reminder Push",
        channel=NotificationChannel.WEB_PUSH,
        subject="{{event.title|truncate:60}}",
        content="Starts {{event.start|date:en-IN}}{{#if event.venue}} at {{event.venue}}{{/if}}.",
        variables=["event.title", "event.start"],
        metadata={"tag": "event-reminder", "url": "{{app.url}}/events"},
    ),
}


async def main() -> int:
    print("=" * 50)
    print("Seeding notification templates")
    print("=" * 50)

    try:
        async with async_session_maker() as session:
            repo = TemplateRepository(session)
            for template_id, data in DEFAULT_TEMPLATES.items():
                if await repo.get_template(template_id):
                    print(f"  - {template_id} already exists")
                    continue
                await repo.create_template(data, template_id=template_id)
                print(f"  ✓ {template_id}")
        return 0
    except Exception as e:
        print(f"✗ Error: {e}")
        return 1
    finally:
        await dispose_engine()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
