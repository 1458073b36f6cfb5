import logging
from typing import Annotated, Callable

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from helpers.reminders import trigger_reminder_sweep
from helpers.sms import NotificationSender, TwilioSender
from models.reminder_sweep import ReminderSweep


logger = logging.getLogger(__name__)
reminder_router = APIRouter()

SenderFactory = Callable[[], NotificationSender]


def get_sender_factory() -> SenderFactory:
    # run_cron calls this inside its error handling
    return TwilioSender


@reminder_router.get("/run-cron")
async def run_cron(make_sender: Annotated[SenderFactory, Depends(get_sender_factory)]):
    logger.info("Manual reminder sweep started")
    try:
        sender = make_sender()
        result, record = await trigger_reminder_sweep(sender, trigger="manual")
    except Exception as e:
        logger.exception("Manual reminder sweep failed")
        return JSONResponse(status_code=500, content={"status": "error", "message": str(e)})

    return {
        "status": "ok",
        "message": f"Reminders sent: {result.sent}, failed: {len(result.failed)}, scanned: {result.scanned}",
        "sweep_id": record.id,
        "result": result.to_dict(),
    }


@reminder_router.get("/reminder-sweeps")
async def list_reminder_sweeps(limit: int = 20):
    try:
        sweeps = await ReminderSweep.all().order_by("-created_at", "-id").limit(min(max(limit, 1), 100))
        return [
            {
                "id": s.id,
                "trigger": s.trigger,
                "window_start": s.window_start.isoformat(),
                "window_end": s.window_end.isoformat(),
                "scanned": s.scanned,
                "sent": s.sent,
                "failed": s.failed,
                "failures": s.failures,
                "error": s.error,
                "created_at": s.created_at.isoformat() if s.created_at else None,
            }
            for s in sweeps
        ]
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch reminder sweeps: {str(e)}")
