from tortoise import BaseDBAsyncClient


async def upgrade(db: BaseDBAsyncClient) -> str:
    return """
        CREATE TABLE IF NOT EXISTS "doctors" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "name" VARCHAR(255) NOT NULL,
    "email" VARCHAR(255) UNIQUE,
    "phone" VARCHAR(20) NOT NULL UNIQUE,
    "specialization" JSONB NOT NULL,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS "patients" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "name" VARCHAR(255) NOT NULL,
    "age" INT NOT NULL,
    "address" TEXT,
    "case_category" VARCHAR(20) NOT NULL DEFAULT 'OTHER',
    "contact_no" VARCHAR(20) NOT NULL,
    "email" VARCHAR(255),
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);
COMMENT ON COLUMN "patients"."case_category" IS 'HAIR: HAIR\nSKIN: SKIN\nMOLES: MOLES\nHAIR_REMOVAL: HAIR_REMOVAL\nHYDRAFACIAL: HYDRAFACIAL\nWEIGHT_LOSS: WEIGHT_LOSS\nOTHER: OTHER';
CREATE TABLE IF NOT EXISTS "appointments" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "appointment_date" TIMESTAMPTZ NOT NULL,
    "status" VARCHAR(20) NOT NULL DEFAULT 'SCHEDULED',
    "case_description" TEXT,
    "charge" DECIMAL(10,2),
    "notification_sent" BOOL NOT NULL DEFAULT False,
    "notification_sent_at" TIMESTAMPTZ,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "updated_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
    "doctor_id" INT NOT NULL REFERENCES "doctors" ("id") ON DELETE RESTRICT,
    "patient_id" INT NOT NULL REFERENCES "patients" ("id") ON DELETE RESTRICT
);
CREATE INDEX IF NOT EXISTS "idx_appointment_appoint_5c6a2e" ON "appointments" ("appointment_date");
COMMENT ON COLUMN "appointments"."status" IS 'SCHEDULED: SCHEDULED\nCOMPLETED: COMPLETED\nCANCELLED: CANCELLED\nNO_SHOW: NO_SHOW';
CREATE TABLE IF NOT EXISTS "appointment_slots" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "slot_at" TIMESTAMPTZ NOT NULL UNIQUE,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);
COMMENT ON TABLE "appointment_slots" IS 'One row per booked timestamp, locked while admitting into it.';
CREATE TABLE IF NOT EXISTS "reminder_sweeps" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "trigger" VARCHAR(20) NOT NULL,
    "window_start" TIMESTAMPTZ NOT NULL,
    "window_end" TIMESTAMPTZ NOT NULL,
    "scanned" INT NOT NULL DEFAULT 0,
    "sent" INT NOT NULL DEFAULT 0,
    "failed" INT NOT NULL DEFAULT 0,
    "failures" JSONB NOT NULL,
    "error" TEXT,
    "created_at" TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS "aerich" (
    "id" SERIAL NOT NULL PRIMARY KEY,
    "version" VARCHAR(255) NOT NULL,
    "app" VARCHAR(100) NOT NULL,
    "content" JSONB NOT NULL
);"""


async def downgrade(db: BaseDBAsyncClient) -> str:
    return """
        """
