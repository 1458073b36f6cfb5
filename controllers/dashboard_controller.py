from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fastapi import APIRouter, HTTPException

from helpers.timeutils import CLINIC_TZ, as_utc
from models.appointment import Appointment, AppointmentStatus
from models.patient import CaseCategory, Patient


dashboard_router = APIRouter()


@dashboard_router.get("/dashboard")
async def get_dashboard():
	try:
		now = datetime.now(timezone.utc)
		local_day = now.astimezone(CLINIC_TZ).date()
		day_start = as_utc(CLINIC_TZ.localize(datetime.combine(local_day, datetime.min.time())))
		day_end = day_start + timedelta(days=1)

		scheduled = Appointment.filter(status=AppointmentStatus.SCHEDULED)
		today_count = await scheduled.filter(appointment_date__gte=day_start, appointment_date__lt=day_end).count()
		upcoming = await scheduled.filter(appointment_date__gte=now).order_by("appointment_date", "id").limit(5).prefetch_related("doctor", "patient")
		charges = await Appointment.filter(status=AppointmentStatus.COMPLETED).values_list("charge", flat=True)
		revenue = sum((c for c in charges if c is not None), Decimal("0"))
		recent_patients = await Patient.all().order_by("-created_at", "-id").limit(5)
		pending_notifications = await scheduled.filter(notification_sent=False).count()

		return {
			"success": True,
			"totals": {
				"today_appointments": today_count,
				"total_revenue": float(revenue),
				"pending_notifications": pending_notifications,
				"patients": await Patient.all().count(),
			},
			"upcoming_appointments": [
				{
					"id": a.id,
					"appointment_date": a.appointment_date.isoformat(),
					"doctor": a.doctor.name,
					"patient": a.patient.name,
					"case_category": a.patient.case_category.label,
				}
				for a in upcoming
			],
			"recent_patients": [
				{
					"id": p.id,
					"name": p.name,
					"case_category": p.case_category.label,
					"created_at": p.created_at.isoformat() if p.created_at else None,
				}
				for p in recent_patients
			],
		}
	except Exception as e:
		raise HTTPException(status_code=500, detail=f"Failed to fetch dashboard data: {str(e)}")


@dashboard_router.get("/lookups")
async def get_lookups():
	return {
		"statuses": [{"value": s.value, "label": s.label, "color": s.color} for s in AppointmentStatus],
		"case_categories": [{"value": c.value, "label": c.label} for c in CaseCategory],
	}
