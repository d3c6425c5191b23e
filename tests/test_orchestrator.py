# tests/test_orchestrator.py
import asyncio
import pytest
from datetime import date, datetime, timedelta, timezone
from birthday_worker.models import DeliveryChannel, DeliveryStatus
from birthday_worker.scheduler import SchedulerState, is_due
from birthday_worker.scheduler.civil_time import local_now
from tests.fakes import FakeGateway, make_recipient, make_template, make_tenant

NOW = datetime(2026, 3, 15, 9, 0, tzinfo=timezone.utc)
TODAY = date(1990, 3, 15)
IN_TWO_DAYS = date(1988, 3, 17)

def fixed_clock(moment: datetime = NOW):
    return lambda: moment

class TestEligibility:
    def test_new_york_send_minute_only(self):
        tenant = make_tenant(timezone="America/New_York", send_hour=9, send_minute=0)
        at_0859 = local_now(tenant.timezone, datetime(2026, 3, 16, 12, 59, tzinfo=timezone.utc))
        at_0900 = local_now(tenant.timezone, datetime(2026, 3, 16, 13, 0, tzinfo=timezone.utc))
        at_0901 = local_now(tenant.timezone, datetime(2026, 3, 16, 13, 1, tzinfo=timezone.utc))

        assert (at_0900.hour, at_0900.minute) == (9, 0)
        assert is_due(tenant, at_0900)
        assert not is_due(tenant, at_0859)
        assert not is_due(tenant, at_0901)

    def test_already_ran_today_locally(self):
        now = local_now("America/New_York", datetime(2026, 3, 16, 13, 0, tzinfo=timezone.utc))
        ran_yesterday = make_tenant(
            timezone="America/New_York",
            last_run_at=datetime(2026, 3, 15, 13, 0, tzinfo=timezone.utc)
        )
        # 02:00 UTC on the 16th is still the 15th in New York
        ran_late_yesterday = make_tenant(
            timezone="America/New_York",
            last_run_at=datetime(2026, 3, 16, 2, 0, tzinfo=timezone.utc)
        )
        ran_today = make_tenant(
            timezone="America/New_York",
            last_run_at=datetime(2026, 3, 16, 12, 0, tzinfo=timezone.utc)
        )
        assert is_due(ran_yesterday, now)
        assert is_due(ran_late_yesterday, now)
        assert not is_due(ran_today, now)

@pytest.mark.asyncio
class TestTenantCycle:
    async def test_first_run_seeds_templates_sends_and_claims(self, store, gateway, make_scheduler):
        store.add_tenant(make_tenant(), [make_recipient("p1", TODAY, full_name="Ada Lovelace")])
        scheduler = make_scheduler(clock=fixed_clock())

        summaries = await scheduler.run_tick(NOW)

        templates = store.templates_for("org-1")
        assert len(templates) == 3
        defaults = [t for t in templates if t.is_default and t.is_active]
        assert len(defaults) == 1

        records = store.records_for("org-1")
        assert len(records) == 1
        record = records[0]
        assert record.status == DeliveryStatus.DELIVERED
        assert record.template_id == defaults[0].id
        assert record.external_id == "msg-1"
        assert record.sent_at == NOW and record.delivered_at == NOW
        assert record.scheduled_for == NOW
        assert record.error_message is None

        assert ("org-1", "2026-03-15") in store.run_markers
        assert ("org-1", "2026-03-15") in store.completions
        assert store.tenants["org-1"].last_run_at == NOW

        request = gateway.sent[0]
        assert request.to == "p1@example.com"
        assert request.subject == "Happy Birthday Ada! 🎉"
        assert "From everyone at Acme Corp" in request.text
        assert request.html is None
        assert request.from_.email == "birthdays@example.com"
        assert request.from_.name == "Acme Corp"

        assert len(summaries) == 1
        assert summaries[0].delivered == 1 and summaries[0].failed == 0

    async def test_second_tick_same_day_sends_nothing(self, store, gateway, make_scheduler):
        store.add_tenant(make_tenant(), [make_recipient("p1", TODAY)])
        scheduler = make_scheduler(clock=fixed_clock())
        await scheduler.run_tick(NOW)

        assert await scheduler.run_tick(NOW + timedelta(minutes=1)) == []
        assert await scheduler.run_tick(NOW) == []

        assert len(store.records_for("org-1")) == 1
        assert len(store.run_markers) == 1
        assert len(gateway.sent) == 1

    async def test_ledger_blocks_when_prefilter_is_bypassed(self, store, gateway, make_scheduler):
        store.add_tenant(make_tenant(), [make_recipient("p1", TODAY)])
        scheduler = make_scheduler(clock=fixed_clock())
        await scheduler.run_tick(NOW)

        # Simulate a stale last-run read, e.g. a second replica
        store.tenants["org-1"] = store.tenants["org-1"].model_copy(update={"last_run_at": None})
        assert await scheduler.run_tick(NOW) == []

        assert len(store.records_for("org-1")) == 1
        assert len(store.run_markers) == 1
        assert len(gateway.sent) == 1

    async def test_provider_failure_is_isolated_to_one_recipient(self, store, make_scheduler):
        failing = FakeGateway(fail_for=["p1@example.com"])
        store.add_tenant(
            make_tenant(),
            [
                make_recipient("p1", TODAY),
                make_recipient("p2", TODAY),
                make_recipient("p3", IN_TWO_DAYS, full_name="Grace Hopper"),
            ],
            admins=["admin@acme.com"]
        )
        scheduler = make_scheduler(email_gateway=failing, clock=fixed_clock())

        summaries = await scheduler.run_tick(NOW)

        records = store.records_for("org-1")
        assert [(r.recipient_id, r.status) for r in records] == [
            ("p1", DeliveryStatus.FAILED),
            ("p2", DeliveryStatus.DELIVERED),
        ]
        assert records[0].error_message == "Provider rejected p1@example.com"
        assert records[0].external_id is None and records[0].sent_at is None

        assert failing.sent_to() == ["p2@example.com", "admin@acme.com"]
        digest = failing.sent[-1]
        assert digest.subject == "Upcoming birthdays - Acme Corp"
        assert "Grace Hopper (March 17)" in digest.text
        assert digest.from_.email == "notifications@example.com"

        assert summaries[0].failed == 1 and summaries[0].delivered == 1
        assert summaries[0].admins_notified == 1

    async def test_digest_failure_keeps_the_run_claimed(self, store, make_scheduler):
        failing = FakeGateway(fail_for=["admin@acme.com"])
        store.add_tenant(
            make_tenant(),
            [make_recipient("p1", TODAY), make_recipient("p2", IN_TWO_DAYS)],
            admins=["admin@acme.com", "owner@acme.com"]
        )
        scheduler = make_scheduler(email_gateway=failing, clock=fixed_clock())

        summaries = await scheduler.run_tick(NOW)

        assert ("org-1", "2026-03-15") in store.run_markers
        assert ("org-1", "2026-03-15") in store.completions
        assert failing.sent_to() == ["p1@example.com", "owner@acme.com"]
        assert summaries[0].admins_notified == 1

    async def test_missing_sender_fails_each_recipient_and_continues(self, store, gateway, settings, make_scheduler):
        no_default_sender = settings.model_copy(update={"default_from_email": None})
        store.add_tenant(make_tenant("org-1"), [make_recipient("p1", TODAY), make_recipient("p2", TODAY)])
        store.add_tenant(
            make_tenant("org-2", email_from_address="hello@globex.com", email_from_name="Globex"),
            [make_recipient("q1", TODAY, tenant_id="org-2")]
        )
        scheduler = make_scheduler(settings=no_default_sender, clock=fixed_clock())

        await scheduler.run_tick(NOW)

        failed = store.records_for("org-1")
        assert [r.status for r in failed] == [DeliveryStatus.FAILED, DeliveryStatus.FAILED]
        assert all("No usable sender address" in r.error_message for r in failed)

        delivered = store.records_for("org-2")
        assert [r.status for r in delivered] == [DeliveryStatus.DELIVERED]
        assert gateway.sent[0].from_.email == "hello@globex.com"
        assert gateway.sent[0].from_.name == "Globex"

    async def test_recorder_failure_does_not_stop_sending(self, store, gateway, make_scheduler):
        store.fail_record_writes = True
        store.add_tenant(make_tenant(), [make_recipient("p1", TODAY), make_recipient("p2", TODAY)])
        scheduler = make_scheduler(clock=fixed_clock())

        summaries = await scheduler.run_tick(NOW)

        assert gateway.sent_to() == ["p1@example.com", "p2@example.com"]
        assert store.delivery_records == []
        assert summaries[0].delivered == 2
        assert ("org-1", "2026-03-15") in store.completions

    async def test_inactive_templates_fail_without_template_id(self, store, gateway, make_scheduler):
        store.add_tenant(make_tenant(), [make_recipient("p1", TODAY)])
        store.add_template(make_template("retired", is_active=False))
        scheduler = make_scheduler(clock=fixed_clock())

        await scheduler.run_tick(NOW)

        records = store.records_for("org-1")
        assert len(records) == 1
        assert records[0].status == DeliveryStatus.FAILED
        assert records[0].template_id is None
        assert "No active or default template" in records[0].error_message
        assert gateway.sent == []
        assert store.seed_calls == 0

    async def test_sms_channel_when_enabled(self, store, gateway, make_scheduler):
        sms = FakeGateway()
        store.add_tenant(
            make_tenant(sms_enabled=True, sender_id="ACME"),
            [
                make_recipient("p1", TODAY, phone="+2348012345678"),
                make_recipient("p2", TODAY),
            ]
        )
        scheduler = make_scheduler(sms_gateway=sms, clock=fixed_clock())

        await scheduler.run_tick(NOW)

        records = store.records_for("org-1")
        assert [(r.recipient_id, r.channel) for r in records] == [
            ("p1", DeliveryChannel.EMAIL),
            ("p1", DeliveryChannel.SMS),
            ("p2", DeliveryChannel.EMAIL),
        ]
        assert all(r.status == DeliveryStatus.DELIVERED for r in records)
        assert sms.sent[0].to == "+2348012345678"
        assert sms.sent[0].from_.name == "ACME"
        assert sms.sent[0].text.startswith("Happy Birthday Person!")

    async def test_no_birthdays_still_marks_run(self, store, gateway, make_scheduler):
        store.add_tenant(make_tenant(), [make_recipient("p1", date(1990, 7, 1))])
        scheduler = make_scheduler(clock=fixed_clock())

        summaries = await scheduler.run_tick(NOW)

        assert summaries[0].birthdays == 0
        assert ("org-1", "2026-03-15") in store.run_markers
        assert store.templates_for("org-1") == []
        assert gateway.sent == []

    async def test_tenant_timezone_decides_the_day(self, store, gateway, make_scheduler):
        # 13:00 UTC on the 16th is 09:00 on the 16th in New York
        moment = datetime(2026, 3, 16, 13, 0, tzinfo=timezone.utc)
        store.add_tenant(
            make_tenant(timezone="America/New_York"),
            [make_recipient("p1", date(1990, 3, 16)), make_recipient("p2", TODAY)]
        )
        scheduler = make_scheduler(clock=fixed_clock(moment))

        await scheduler.run_tick(moment)

        assert gateway.sent_to() == ["p1@example.com"]
        assert ("org-1", "2026-03-16") in store.run_markers

@pytest.mark.asyncio
class TestTenantIsolation:
    async def test_vanished_tenant_is_skipped(self, store, gateway, make_scheduler):
        store.add_tenant(make_tenant("org-1"), [make_recipient("p1", TODAY)])
        store.add_tenant(make_tenant("org-2"), [make_recipient("q1", TODAY, tenant_id="org-2")])
        store.vanished.add("org-1")
        scheduler = make_scheduler(clock=fixed_clock())

        summaries = await scheduler.run_tick(NOW)

        assert [s.tenant_id for s in summaries] == ["org-2"]
        assert store.records_for("org-1") == []
        assert gateway.sent_to() == ["q1@example.com"]

    async def test_tenant_error_does_not_abort_batch(self, store, gateway, make_scheduler):
        store.add_tenant(make_tenant("org-1"), [make_recipient("p1", TODAY)])
        store.add_tenant(make_tenant("org-2"), [make_recipient("q1", TODAY, tenant_id="org-2")])
        store.broken.add("org-1")
        scheduler = make_scheduler(clock=fixed_clock())

        summaries = await scheduler.run_tick(NOW)

        assert [s.tenant_id for s in summaries] == ["org-2"]
        assert gateway.sent_to() == ["q1@example.com"]
        assert scheduler.state == SchedulerState.IDLE
        assert scheduler.ticks_run == 1

    async def test_bounded_concurrency_processes_every_tenant(self, store, gateway, settings, make_scheduler):
        concurrent = settings.model_copy(update={"max_concurrent_tenants": 3})
        for n in range(5):
            store.add_tenant(
                make_tenant(f"org-{n}"),
                [make_recipient(f"p{n}", TODAY, tenant_id=f"org-{n}")]
            )
        scheduler = make_scheduler(settings=concurrent, clock=fixed_clock())

        summaries = await scheduler.run_tick(NOW)

        assert len(summaries) == 5
        assert len(store.run_markers) == 5
        assert sorted(gateway.sent_to()) == [f"p{n}@example.com" for n in range(5)]

@pytest.mark.asyncio
class TestResume:
    async def test_resumes_only_missed_recipients(self, store, gateway, make_scheduler):
        later = NOW + timedelta(hours=3)
        store.add_tenant(make_tenant(), [make_recipient("p1", TODAY), make_recipient("p2", TODAY)])
        store.run_markers[("org-1", "2026-03-15")] = NOW
        store.recipient_claims.add(("p1", "2026-03-15"))
        scheduler = make_scheduler(clock=fixed_clock(later))

        summaries = await scheduler.resume_unfinished_runs(later)

        assert gateway.sent_to() == ["p2@example.com"]
        assert summaries[0].resumed and summaries[0].skipped == 1
        assert ("org-1", "2026-03-15") in store.completions
        assert len(store.run_markers) == 1

        assert await scheduler.resume_unfinished_runs(later) == []
        assert gateway.sent_to() == ["p2@example.com"]

    async def test_past_days_are_not_resumed(self, store, gateway, make_scheduler):
        store.add_tenant(make_tenant(), [make_recipient("p1", date(1990, 3, 14))])
        store.run_markers[("org-1", "2026-03-14")] = NOW - timedelta(days=1)
        scheduler = make_scheduler(clock=fixed_clock())

        assert await scheduler.resume_unfinished_runs(NOW) == []
        assert gateway.sent == []

    async def test_restart_resumes_todays_run_immediately(self, store, gateway, settings, make_scheduler):
        # The process died at 09:00 after sending to p1 and came back at 09:02
        restarted_at = NOW + timedelta(minutes=2)
        hourly = settings.model_copy(update={"tick_interval_seconds": 3600})
        store.add_tenant(
            make_tenant(last_run_at=None),
            [make_recipient("p1", TODAY), make_recipient("p2", TODAY)]
        )
        store.run_markers[("org-1", "2026-03-15")] = NOW
        store.recipient_claims.add(("p1", "2026-03-15"))
        scheduler = make_scheduler(settings=hourly, clock=fixed_clock(restarted_at))

        scheduler.start()
        for _ in range(200):
            if scheduler.ticks_run:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert gateway.sent_to() == ["p2@example.com"]
        assert ("org-1", "2026-03-15") in store.completions
        assert [r.recipient_id for r in store.records_for("org-1")] == ["p2"]

    async def test_ticks_pick_up_runs_abandoned_by_another_worker(self, store, gateway, make_scheduler):
        store.add_tenant(make_tenant(last_run_at=None), [make_recipient("p1", TODAY)])
        store.run_markers[("org-1", "2026-03-15")] = NOW
        scheduler = make_scheduler(clock=fixed_clock())

        # Still inside the grace period: the other worker may be mid-run
        assert await scheduler.run_tick(NOW + timedelta(minutes=5)) == []
        assert gateway.sent == []

        summaries = await scheduler.run_tick(NOW + timedelta(minutes=16))

        assert gateway.sent_to() == ["p1@example.com"]
        assert summaries[0].resumed and summaries[0].delivered == 1
        assert ("org-1", "2026-03-15") in store.completions

    async def test_runs_from_days_ago_are_ignored(self, store, gateway, make_scheduler):
        store.add_tenant(make_tenant(), [make_recipient("p1", TODAY)])
        store.run_markers[("org-1", "2026-03-12")] = NOW - timedelta(days=3)
        scheduler = make_scheduler(clock=fixed_clock())

        assert await scheduler.store.list_unfinished_runs(NOW, NOW - timedelta(days=2)) == []
        assert await scheduler.resume_unfinished_runs(NOW, min_age_seconds=0) == []

    async def test_failed_recipient_claim_defers_instead_of_aborting(self, store, gateway, make_scheduler):
        store.clock = fixed_clock()
        store.add_tenant(
            make_tenant(),
            [make_recipient("p1", TODAY), make_recipient("p2", TODAY), make_recipient("p3", IN_TWO_DAYS)],
            admins=["admin@acme.com"]
        )
        store.failing_claims.add("p1")
        scheduler = make_scheduler(clock=fixed_clock())

        summaries = await scheduler.run_tick(NOW)

        assert gateway.sent_to() == ["p2@example.com"]
        assert summaries[0].deferred == 1 and summaries[0].delivered == 1
        assert summaries[0].admins_notified == 0
        assert ("org-1", "2026-03-15") not in store.completions
        assert store.tenants["org-1"].last_run_at == NOW

        store.failing_claims.clear()
        later = NOW + timedelta(minutes=16)
        scheduler.clock = fixed_clock(later)
        summaries = await scheduler.run_tick(later)

        assert gateway.sent_to() == ["p2@example.com", "p1@example.com", "admin@acme.com"]
        assert summaries[0].resumed and summaries[0].skipped == 1
        assert summaries[0].admins_notified == 1
        assert ("org-1", "2026-03-15") in store.completions

        assert await scheduler.run_tick(later + timedelta(minutes=20)) == []
        assert len(gateway.sent) == 3

@pytest.mark.asyncio
class TestLifecycle:
    async def test_start_runs_immediately_and_stop_is_graceful(self, store, gateway, settings, make_scheduler):
        hourly = settings.model_copy(update={"tick_interval_seconds": 3600})
        store.add_tenant(make_tenant(), [make_recipient("p1", TODAY)])
        scheduler = make_scheduler(settings=hourly, clock=fixed_clock())

        scheduler.start()
        for _ in range(200):
            if scheduler.ticks_run:
                break
            await asyncio.sleep(0.01)
        assert scheduler.is_running

        await scheduler.stop()

        assert scheduler.ticks_run == 1
        assert not scheduler.is_running
        assert scheduler.state == SchedulerState.STOPPED
        assert scheduler.last_tick_at == NOW
        assert gateway.sent_to() == ["p1@example.com"]

    async def test_ticks_align_to_interval_boundary(self, make_scheduler):
        scheduler = make_scheduler(clock=fixed_clock(NOW + timedelta(seconds=30)))
        assert scheduler.seconds_until_next_tick() == 31.0
