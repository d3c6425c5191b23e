# birthday_worker/database/scheduler_repository.py
import asyncpg
from typing import Optional, List, Sequence, Tuple, Dict, Any
from datetime import datetime, timezone
import uuid
from birthday_worker.database.connection import Database
from birthday_worker.exceptions import TenantNotFoundError
from birthday_worker.models import (
    Tenant,
    Recipient,
    TenantSnapshot,
    Template,
    NewTemplate,
    DeliveryRecord,
)
import logging

logger = logging.getLogger(__name__)

# The dashboard stores TIMESTAMP(3) without time zone, holding UTC wall time
UTC_NOW_SQL = "(CURRENT_TIMESTAMP AT TIME ZONE 'UTC')"

# Global templates as assigned to one organization
TEMPLATE_COLUMNS = """
    t."id", ot."organizationId" AS tenant_id, t."name", t."type"::text AS type,
    t."subject", t."content", t."imageUrl" AS image_url,
    ot."isDefault" AS is_default, ot."isActive" AS is_active
"""

def _utc_naive(instant: Optional[datetime]) -> Optional[datetime]:
    if instant is None or instant.tzinfo is None:
        return instant
    return instant.astimezone(timezone.utc).replace(tzinfo=None)

def _template_from_row(row: Dict[str, Any]) -> Template:
    return Template(**dict(row))

class SchedulerRepository:
    """PostgreSQL implementation of the scheduler's persistence surface,
    reading and writing the dashboard's tables"""

    def __init__(self, database: Database):
        self.db = database

    async def list_tenant_ids(self) -> List[str]:
        try:
            async with self.db.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT "id" FROM "organizations"
                    ORDER BY "createdAt", "id"
                """)
            return [row["id"] for row in rows]
        except Exception as e:
            logger.error(f"Failed to list organizations: {e}")
            raise

    async def load_tenant(self, tenant_id: str) -> Optional[TenantSnapshot]:
        """Read a tenant with its opted-in recipients and admin emails"""
        try:
            async with self.db.acquire() as conn:
                org = await conn.fetchrow("""
                    SELECT "id", "name", "timezone",
                           "sendHour" AS send_hour, "sendMinute" AS send_minute,
                           "lastRunAt" AS last_run_at,
                           "emailFromName" AS email_from_name,
                           "emailFromAddress" AS email_from_address,
                           "smsEnabled" AS sms_enabled, "senderId" AS sender_id
                    FROM "organizations"
                    WHERE "id" = $1
                """, tenant_id)

                if not org:
                    return None

                # Birthdays are midnight timestamps; only the calendar date matters
                people = await conn.fetch("""
                    SELECT "id", "organizationId" AS tenant_id,
                           "fullName" AS full_name, "firstName" AS first_name,
                           "email", "phone", "birthday"::date AS birthday,
                           "optedOut" AS opted_out
                    FROM "people"
                    WHERE "organizationId" = $1 AND NOT "optedOut"
                    ORDER BY "createdAt", "id"
                """, tenant_id)

                admins = await conn.fetch("""
                    SELECT "email" FROM "users"
                    WHERE "organizationId" = $1 AND "role" = 'ADMIN'
                    ORDER BY "createdAt", "email"
                """, tenant_id)

            return TenantSnapshot(
                tenant=Tenant(**dict(org)),
                recipients=[Recipient(**dict(row)) for row in people],
                admin_emails=[row["email"] for row in admins]
            )

        except Exception as e:
            logger.error(f"Failed to load organization {tenant_id}: {e}")
            raise

    async def update_last_run(self, tenant_id: str, ran_at: datetime) -> None:
        try:
            async with self.db.acquire() as conn:
                await conn.execute(f"""
                    UPDATE "organizations"
                    SET "lastRunAt" = $2, "updatedAt" = {UTC_NOW_SQL}
                    WHERE "id" = $1
                """, tenant_id, _utc_naive(ran_at))
        except Exception as e:
            logger.error(f"Failed to update last run for {tenant_id}: {e}")
            raise

    async def claim_run(self, tenant_id: str, date_key: str) -> bool:
        """Insert the run marker; the unique ("organizationId", "runDate") key
        decides the winner between overlapping ticks and replicas"""
        try:
            async with self.db.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(f"""
                        INSERT INTO "scheduler_runs" ("id", "organizationId", "runDate", "runTime")
                        VALUES ($1, $2, $3, {UTC_NOW_SQL})
                    """, str(uuid.uuid4()), tenant_id, date_key)
            return True
        except asyncpg.UniqueViolationError:
            return False
        except Exception as e:
            logger.error(f"Failed to claim run for {tenant_id} on {date_key}: {e}")
            raise

    async def claim_recipient(self, recipient_id: str, date_key: str) -> bool:
        try:
            async with self.db.acquire() as conn:
                await conn.execute(f"""
                    INSERT INTO "scheduler_recipient_sends" ("personId", "runDate", "claimedAt")
                    VALUES ($1, $2, {UTC_NOW_SQL})
                """, recipient_id, date_key)
            return True
        except asyncpg.UniqueViolationError:
            return False
        except Exception as e:
            logger.error(f"Failed to claim send for {recipient_id} on {date_key}: {e}")
            raise

    async def complete_run(self, tenant_id: str, date_key: str, completed_at: datetime) -> bool:
        try:
            async with self.db.acquire() as conn:
                status = await conn.execute("""
                    INSERT INTO "scheduler_run_completions" ("organizationId", "runDate", "completedAt")
                    VALUES ($1, $2, $3)
                    ON CONFLICT ("organizationId", "runDate") DO NOTHING
                """, tenant_id, date_key, _utc_naive(completed_at))
            return status == "INSERT 0 1"
        except Exception as e:
            logger.error(f"Failed to mark run complete for {tenant_id} on {date_key}: {e}")
            raise

    async def list_unfinished_runs(
        self, started_before: datetime, started_after: datetime
    ) -> List[Tuple[str, str]]:
        try:
            async with self.db.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT r."organizationId" AS organization_id, r."runDate" AS run_date
                    FROM "scheduler_runs" r
                    LEFT JOIN "scheduler_run_completions" c
                        ON c."organizationId" = r."organizationId" AND c."runDate" = r."runDate"
                    WHERE c."organizationId" IS NULL
                      AND r."runTime" < $1 AND r."runTime" > $2
                    ORDER BY r."runTime"
                """, _utc_naive(started_before), _utc_naive(started_after))
            return [(row["organization_id"], row["run_date"]) for row in rows]
        except Exception as e:
            logger.error(f"Failed to list unfinished runs: {e}")
            raise

    async def list_templates(self, tenant_id: str) -> List[Template]:
        try:
            async with self.db.acquire() as conn:
                return await self._fetch_usable_templates(conn, tenant_id)
        except Exception as e:
            logger.error(f"Failed to list templates for {tenant_id}: {e}")
            raise

    async def count_templates(self, tenant_id: str) -> int:
        try:
            async with self.db.acquire() as conn:
                return await conn.fetchval(
                    'SELECT COUNT(*) FROM "organization_templates" WHERE "organizationId" = $1', tenant_id
                )
        except Exception as e:
            logger.error(f"Failed to count templates for {tenant_id}: {e}")
            raise

    async def seed_templates(
        self, tenant_id: str, templates: Sequence[NewTemplate]
    ) -> List[Template]:
        """Assign the built-in templates unless another writer got there first.

        Templates are global; an existing system template with the same name
        is reused, otherwise one is created.
        """
        try:
            async with self.db.acquire() as conn:
                async with conn.transaction():
                    # Serializes concurrent seeders on the tenant row
                    locked = await conn.fetchval(
                        'SELECT "id" FROM "organizations" WHERE "id" = $1 FOR UPDATE', tenant_id
                    )
                    if locked is None:
                        raise TenantNotFoundError(tenant_id)

                    existing = await conn.fetchval(
                        'SELECT COUNT(*) FROM "organization_templates" WHERE "organizationId" = $1', tenant_id
                    )
                    if existing == 0:
                        for template in templates:
                            template_id = await self._global_template_id(conn, template)
                            await conn.execute(f"""
                                INSERT INTO "organization_templates" (
                                    "id", "organizationId", "templateId", "isDefault", "isActive", "assignedAt"
                                ) VALUES ($1, $2, $3, $4, $5, {UTC_NOW_SQL})
                                ON CONFLICT ("organizationId", "templateId") DO NOTHING
                            """,
                                str(uuid.uuid4()), tenant_id, template_id,
                                template.is_default, template.is_active
                            )
                        logger.info(f"Assigned {len(templates)} default templates to {tenant_id}")

                    return await self._fetch_usable_templates(conn, tenant_id)

        except TenantNotFoundError:
            raise
        except Exception as e:
            logger.error(f"Failed to seed templates for {tenant_id}: {e}")
            raise

    async def create_delivery_record(self, record: DeliveryRecord) -> str:
        try:
            record_id = str(uuid.uuid4())
            async with self.db.acquire() as conn:
                await conn.execute(f"""
                    INSERT INTO "delivery_logs" (
                        "id", "personId", "templateId", "organizationId", "channel", "status",
                        "scheduledFor", "sentAt", "deliveredAt", "errorMessage", "externalId",
                        "createdAt", "updatedAt"
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, {UTC_NOW_SQL}, {UTC_NOW_SQL})
                """,
                    record_id, record.recipient_id, record.template_id, record.tenant_id,
                    record.channel.value, record.status.value, _utc_naive(record.scheduled_for),
                    _utc_naive(record.sent_at), _utc_naive(record.delivered_at),
                    record.error_message, record.external_id
                )
            return record_id
        except Exception as e:
            logger.error(f"Failed to create delivery record for {record.recipient_id}: {e}")
            raise

    async def _global_template_id(self, conn: asyncpg.Connection, template: NewTemplate) -> str:
        template_id = await conn.fetchval("""
            SELECT "id" FROM "templates"
            WHERE "name" = $1 AND "isSystem"
            ORDER BY "createdAt", "id"
            LIMIT 1
        """, template.name)
        if template_id is not None:
            return template_id

        template_id = str(uuid.uuid4())
        await conn.execute(f"""
            INSERT INTO "templates" (
                "id", "name", "type", "subject", "content", "imageUrl",
                "isActive", "isSystem", "createdAt", "updatedAt"
            ) VALUES ($1, $2, $3, $4, $5, $6, true, true, {UTC_NOW_SQL}, {UTC_NOW_SQL})
        """,
            template_id, template.name, template.type.value, template.subject,
            template.content, template.image_url
        )
        return template_id

    async def _fetch_usable_templates(self, conn: asyncpg.Connection, tenant_id: str) -> List[Template]:
        rows = await conn.fetch(f"""
            SELECT {TEMPLATE_COLUMNS}
            FROM "organization_templates" ot
            JOIN "templates" t ON t."id" = ot."templateId"
            WHERE ot."organizationId" = $1
              AND ((ot."isActive" AND t."isActive") OR ot."isDefault")
            ORDER BY ot."isDefault" DESC, ot."assignedAt", t."id"
        """, tenant_id)
        return [_template_from_row(row) for row in rows]
