from tortoise.models import Model
from tortoise import fields


class ReminderSweep(Model):
    id = fields.IntField(primary_key=True)
    trigger = fields.CharField(max_length=20)
    window_start = fields.DatetimeField()
    window_end = fields.DatetimeField()
    scanned = fields.IntField(default=0)
    sent = fields.IntField(default=0)
    failed = fields.IntField(default=0)
    failures = fields.JSONField(default=list)  # [{"recipient": ..., "reason": ...}]
    error = fields.TextField(null=True)  # set when the sweep aborted
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "reminder_sweeps"
