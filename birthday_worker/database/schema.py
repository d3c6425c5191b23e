# birthday_worker/database/schema.py
import asyncpg
import logging

logger = logging.getLogger(__name__)

# Mirror of the dashboard's own migrations; created here only for local development
DASHBOARD_TABLES_SQL = '''
    DO $$ BEGIN
        CREATE TYPE "UserRole" AS ENUM ('ADMIN', 'VIEWER');
    EXCEPTION
        WHEN duplicate_object THEN null;
    END $$;

    DO $$ BEGIN
        CREATE TYPE "TemplateType" AS ENUM ('PLAIN_TEXT', 'HTML', 'CUSTOM_IMAGE');
    EXCEPTION
        WHEN duplicate_object THEN null;
    END $$;

    DO $$ BEGIN
        CREATE TYPE "DeliveryStatus" AS ENUM ('QUEUED', 'SENDING', 'SENT', 'DELIVERED', 'FAILED', 'OPTED_OUT');
    EXCEPTION
        WHEN duplicate_object THEN null;
    END $$;

    DO $$ BEGIN
        CREATE TYPE "delivery_channel" AS ENUM ('email', 'sms', 'whatsapp');
    EXCEPTION
        WHEN duplicate_object THEN null;
    END $$;

    CREATE TABLE IF NOT EXISTS "organizations" (
        "id" TEXT PRIMARY KEY,
        "name" TEXT NOT NULL,
        "timezone" TEXT NOT NULL DEFAULT 'UTC',
        "emailFromName" TEXT,
        "emailFromAddress" TEXT,
        "smsEnabled" BOOLEAN NOT NULL DEFAULT false,
        "senderId" TEXT DEFAULT 'MomentOS',
        "isSuspended" BOOLEAN NOT NULL DEFAULT false,
        "createdAt" TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP,
        "updatedAt" TIMESTAMP(3) NOT NULL
    );

    CREATE TABLE IF NOT EXISTS "users" (
        "id" TEXT PRIMARY KEY,
        "email" TEXT UNIQUE NOT NULL,
        "passwordHash" TEXT NOT NULL,
        "role" "UserRole" NOT NULL DEFAULT 'ADMIN',
        "organizationId" TEXT NOT NULL REFERENCES "organizations"("id") ON DELETE CASCADE,
        "isDisabled" BOOLEAN NOT NULL DEFAULT false,
        "createdAt" TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP,
        "updatedAt" TIMESTAMP(3) NOT NULL
    );

    CREATE TABLE IF NOT EXISTS "people" (
        "id" TEXT PRIMARY KEY,
        "fullName" TEXT NOT NULL,
        "firstName" TEXT,
        "email" TEXT NOT NULL,
        "birthday" TIMESTAMP(3) NOT NULL,
        "optedOut" BOOLEAN NOT NULL DEFAULT false,
        "organizationId" TEXT NOT NULL REFERENCES "organizations"("id") ON DELETE CASCADE,
        "createdAt" TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP,
        "updatedAt" TIMESTAMP(3) NOT NULL,
        UNIQUE("organizationId", "email")
    );

    CREATE TABLE IF NOT EXISTS "templates" (
        "id" TEXT PRIMARY KEY,
        "name" TEXT NOT NULL,
        "type" "TemplateType" NOT NULL,
        "subject" TEXT NOT NULL,
        "content" TEXT NOT NULL,
        "imageUrl" TEXT,
        "isActive" BOOLEAN NOT NULL DEFAULT true,
        "isSystem" BOOLEAN NOT NULL DEFAULT false,
        "channels" "delivery_channel"[] NOT NULL DEFAULT ARRAY['email']::"delivery_channel"[],
        "createdAt" TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP,
        "updatedAt" TIMESTAMP(3) NOT NULL
    );

    CREATE TABLE IF NOT EXISTS "organization_templates" (
        "id" TEXT PRIMARY KEY,
        "organizationId" TEXT NOT NULL REFERENCES "organizations"("id") ON DELETE CASCADE,
        "templateId" TEXT NOT NULL REFERENCES "templates"("id") ON DELETE CASCADE,
        "isDefault" BOOLEAN NOT NULL DEFAULT false,
        "isActive" BOOLEAN NOT NULL DEFAULT true,
        "assignedAt" TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE("organizationId", "templateId")
    );

    CREATE TABLE IF NOT EXISTS "delivery_logs" (
        "id" TEXT PRIMARY KEY,
        "personId" TEXT NOT NULL REFERENCES "people"("id") ON DELETE CASCADE,
        "templateId" TEXT NOT NULL REFERENCES "templates"("id") ON DELETE RESTRICT,
        "organizationId" TEXT NOT NULL REFERENCES "organizations"("id") ON DELETE CASCADE,
        "channel" "delivery_channel" NOT NULL DEFAULT 'email',
        "status" "DeliveryStatus" NOT NULL DEFAULT 'QUEUED',
        "scheduledFor" TIMESTAMP(3) NOT NULL,
        "sentAt" TIMESTAMP(3),
        "deliveredAt" TIMESTAMP(3),
        "errorMessage" TEXT,
        "retryCount" INTEGER NOT NULL DEFAULT 0,
        "externalId" TEXT,
        "createdAt" TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP,
        "updatedAt" TIMESTAMP(3) NOT NULL
    );

    CREATE TABLE IF NOT EXISTS "scheduler_runs" (
        "id" TEXT PRIMARY KEY,
        "organizationId" TEXT NOT NULL REFERENCES "organizations"("id") ON DELETE CASCADE,
        "runDate" TEXT NOT NULL,
        "runTime" TIMESTAMP(3) NOT NULL DEFAULT CURRENT_TIMESTAMP,
        UNIQUE("organizationId", "runDate")
    );
'''

# Columns and tables the scheduler adds on top of the dashboard schema.
# Timestamps are TIMESTAMP(3) holding UTC wall time, like the dashboard's.
SCHEDULER_TABLES_SQL = '''
    ALTER TABLE "organizations" ADD COLUMN IF NOT EXISTS "sendHour" INTEGER NOT NULL DEFAULT 9;
    ALTER TABLE "organizations" ADD COLUMN IF NOT EXISTS "sendMinute" INTEGER NOT NULL DEFAULT 0;
    ALTER TABLE "organizations" ADD COLUMN IF NOT EXISTS "lastRunAt" TIMESTAMP(3);
    ALTER TABLE "people" ADD COLUMN IF NOT EXISTS "phone" TEXT;

    -- Failures caused by a missing template are logged without one
    ALTER TABLE "delivery_logs" ALTER COLUMN "templateId" DROP NOT NULL;

    CREATE TABLE IF NOT EXISTS "scheduler_run_completions" (
        "organizationId" TEXT NOT NULL REFERENCES "organizations"("id") ON DELETE CASCADE,
        "runDate" TEXT NOT NULL,
        "completedAt" TIMESTAMP(3) NOT NULL,
        PRIMARY KEY ("organizationId", "runDate")
    );

    CREATE TABLE IF NOT EXISTS "scheduler_recipient_sends" (
        "personId" TEXT NOT NULL REFERENCES "people"("id") ON DELETE CASCADE,
        "runDate" TEXT NOT NULL,
        "claimedAt" TIMESTAMP(3) NOT NULL,
        PRIMARY KEY ("personId", "runDate")
    );

    CREATE INDEX IF NOT EXISTS "scheduler_runs_runTime_idx" ON "scheduler_runs"("runTime");
    CREATE INDEX IF NOT EXISTS "delivery_logs_organizationId_status_idx"
        ON "delivery_logs"("organizationId", "status");
'''

async def ensure_schema(conn: asyncpg.Connection, include_dashboard_tables: bool = False):
    """Add the scheduler's columns and tables (and optionally the dashboard tables)"""
    async with conn.transaction():
        if include_dashboard_tables:
            await conn.execute(DASHBOARD_TABLES_SQL)
        await conn.execute(SCHEDULER_TABLES_SQL)
    logger.info("Scheduler schema is up to date")
