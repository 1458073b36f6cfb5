from dotenv import load_dotenv
load_dotenv()
from tortoise import Tortoise
from contextlib import asynccontextmanager
import os


db_url = os.getenv("DATABASE_URI")
if not db_url:
    raise ValueError("DATABASE_URI environment variable is not set.")


MODEL_MODULES = [
    "models.doctor",
    "models.patient",
    "models.appointment",
    "models.reminder_sweep",
]


TORTOISE_CONFIG = {

    'connections': {
        'default': db_url
    },
    "apps": {
        "models": {
            "models": MODEL_MODULES + ["aerich.models"]
        }
    },
    "use_tz": True,
    "timezone": "UTC",
    }


@asynccontextmanager
async def lifespan(_):
    await Tortoise.init(config=TORTOISE_CONFIG)
    try:
        yield
    finally:
        await Tortoise.close_connections()
