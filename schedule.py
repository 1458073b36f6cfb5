import asyncio
import logging
import os
from datetime import datetime, time, timedelta, timezone

from helpers.tortoise_config import TORTOISE_CONFIG
from tortoise import Tortoise
from helpers.reminders import trigger_reminder_sweep
from helpers.sms import TwilioSender
from helpers.timeutils import CLINIC_TZ


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("reminder_scheduler")

REMINDER_RUN_AT = os.getenv("REMINDER_RUN_AT", "08:00")


async def init_db():
    await Tortoise.init(config=TORTOISE_CONFIG)


async def close_db():
    await Tortoise.close_connections()


def parse_run_at(value: str) -> time:
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def seconds_until_next_run(now: datetime, run_at: time, tz=None) -> float:
    """Seconds from ``now`` to the next ``run_at`` wall-clock time in ``tz``."""
    tz = tz or CLINIC_TZ
    local_now = now.astimezone(tz)
    target = tz.localize(datetime.combine(local_now.date(), run_at))
    if target <= local_now:
        target = tz.localize(datetime.combine(local_now.date() + timedelta(days=1), run_at))
    return (target - local_now).total_seconds()


async def process_due_reminders(sender):
    try:
        result, _ = await trigger_reminder_sweep(sender, trigger="scheduler")
        logger.info(f"Scheduled sweep finished: {result.to_dict()}")
    except Exception as e:
        logger.error(f"Scheduled reminder sweep failed: {e}", exc_info=True)


async def main_loop():
    run_at = parse_run_at(REMINDER_RUN_AT)
    sender = TwilioSender()
    await init_db()
    try:
        while True:
            delay = seconds_until_next_run(datetime.now(timezone.utc), run_at)
            logger.info(f"Next reminder sweep in {delay / 3600:.1f}h (daily at {REMINDER_RUN_AT} {CLINIC_TZ.zone})")
            await asyncio.sleep(delay)
            await process_due_reminders(sender)
    finally:
        await close_db()


if __name__ == "__main__":
    asyncio.run(main_loop())
