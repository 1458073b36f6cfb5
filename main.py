from dotenv import load_dotenv
load_dotenv()
import logging
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from helpers.tortoise_config import lifespan
from controllers.patient_controller import patient_router
from controllers.doctor_controller import doctor_router
from controllers.appointment_controller import appointment_router
from controllers.reminder_controller import reminder_router
from controllers.dashboard_controller import dashboard_router


logging.basicConfig(level=logging.INFO)


app = FastAPI(title="Aum Appointments", lifespan=lifespan)


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request data", "details": jsonable_encoder(exc.errors())},
    )


app.include_router(patient_router, prefix='/api', tags=['Patients'])
app.include_router(doctor_router, prefix='/api', tags=['Doctors'])
app.include_router(appointment_router, prefix='/api', tags=['Appointments'])
app.include_router(reminder_router, prefix='/api', tags=['Reminders'])
app.include_router(dashboard_router, prefix='/api', tags=['Dashboard'])


@app.get('/')
def greetings():
    return {
        "Message": "Aum Appointments API is running"
    }
