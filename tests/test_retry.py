"""Tests for the retry state machine and its ledger writes."""

import asyncio
import uuid

import httpx
import pytest

from courier.services.retry_service import DeliveryState, backoff_delay
from tests.conftest import RECEIVER_A, RECEIVER_B, TEST_HOSTNAME, HeldSleep


pytestmark = pytest.mark.unit


class TestBackoffDelay:

    @pytest.mark.parametrize("attempt, expected", [(1, 2.0), (2, 4.0), (3, 8.0), (4, 16.0), (10, 1024.0)])
    def test_delay_is_two_to_the_attempt(self, attempt, expected):
        assert backoff_delay(attempt) == expected

    async def test_delays_before_each_retry(self, make_engine, receivers, recording_sleep):
        receivers.script(RECEIVER_A, 500)
        engine = make_engine(max_attempts=5)

        await engine.deliver({"n": 1})

        # 5 attempts -> 4 waits: 2 + 4 + 8 + 16
        assert recording_sleep.delays == [2.0, 4.0, 8.0, 16.0]
        assert recording_sleep.total == 30.0


class TestDeliver:

    async def test_first_attempt_success_creates_no_record(self, make_engine, receivers, fetch_records):
        receivers.script(RECEIVER_A, 200)
        engine = make_engine()

        outcome = await engine.deliver({"n": 1})

        assert outcome.state == DeliveryState.SUCCEEDED
        assert outcome.attempts == 1
        assert outcome.request_id is None
        assert outcome.status_code == 200
        assert await fetch_records() == []

    async def test_fail_then_succeed_inserts_then_deletes(self, make_engine, receivers, ledger, fetch_records, monkeypatch):
        receivers.script(RECEIVER_A, 503, 200)
        engine = make_engine(max_attempts=3)

        inserted = []
        original_insert = ledger.insert

        async def spy_insert(*args, **kwargs):
            result = await original_insert(*args, **kwargs)
            inserted.append([r.to_dict() for r in await fetch_records()])
            return result

        monkeypatch.setattr(ledger, "insert", spy_insert)

        outcome = await engine.deliver({"n": 1})

        assert outcome.delivered
        assert outcome.attempts == 2
        assert len(inserted) == 1
        (row,) = inserted[0]
        assert row["attempt_number"] == 1
        assert row["abandoned"] is False
        assert row["error"] == "503"
        assert row["request_id"] == outcome.request_id
        assert await fetch_records() == []

    async def test_exhaustion_leaves_one_abandoned_record(self, make_engine, receivers, fetch_records, recording_sleep):
        receivers.script(RECEIVER_A, 503)
        engine = make_engine(max_attempts=3)

        outcome = await engine.deliver({"order": 42})

        assert outcome.state == DeliveryState.ABANDONED
        assert outcome.attempts == 3
        assert outcome.last_error == "503"
        assert recording_sleep.delays == [2.0, 4.0]
        assert recording_sleep.total >= 6

        (record,) = await fetch_records()
        assert record.request_id == outcome.request_id
        assert record.abandoned is True
        assert record.attempt_number == 3
        assert record.error == "503"
        assert record.payload == {"order": 42}
        assert record.hostname == TEST_HOSTNAME
        assert receivers.calls_to(RECEIVER_A) == 3

    async def test_request_id_is_uuid4(self, make_engine, receivers):
        receivers.script(RECEIVER_A, 500)
        engine = make_engine(max_attempts=2)

        outcome = await engine.deliver({})

        assert uuid.UUID(outcome.request_id).version == 4

    async def test_single_attempt_budget_records_abandoned_immediately(self, make_engine, receivers, fetch_records, recording_sleep):
        receivers.script(RECEIVER_A, httpx.ConnectError)
        engine = make_engine(max_attempts=1)

        outcome = await engine.deliver({"n": 1})

        assert outcome.state == DeliveryState.ABANDONED
        assert recording_sleep.delays == []
        (record,) = await fetch_records()
        assert record.abandoned is True
        assert record.attempt_number == 1
        assert record.error == "connect_error"

    async def test_failover_within_an_attempt_is_not_a_retry(self, make_engine, receivers, fetch_records, recording_sleep):
        receivers.script(RECEIVER_A, 500).script(RECEIVER_B, 200)
        engine = make_engine(receivers_url=(RECEIVER_A, RECEIVER_B))

        outcome = await engine.deliver({"n": 1})

        assert outcome.delivered
        assert outcome.attempts == 1
        assert recording_sleep.delays == []
        assert await fetch_records() == []

    async def test_last_receiver_error_is_recorded(self, make_engine, receivers, fetch_records):
        receivers.script(RECEIVER_A, 500).script(RECEIVER_B, httpx.ReadTimeout)
        engine = make_engine(receivers_url=(RECEIVER_A, RECEIVER_B), max_attempts=2)

        await engine.deliver({"n": 1})

        (record,) = await fetch_records()
        assert record.error == "timeout"


class TestResume:

    async def test_resume_continues_from_next_attempt(self, make_engine, receivers, ledger, fetch_records, recording_sleep):
        receivers.script(RECEIVER_A, 500)
        engine = make_engine(max_attempts=5)
        await ledger.insert("stored-request", 2, "500", {"n": 1})

        outcome = await engine.resume("stored-request", 2, {"n": 1})

        # Attempts 3, 4, 5: waits after 3 and 4 only
        assert recording_sleep.delays == [8.0, 16.0]
        assert outcome.attempts == 5
        assert outcome.state == DeliveryState.ABANDONED
        (record,) = await fetch_records()
        assert record.abandoned is True
        assert record.attempt_number == 5

    async def test_resume_success_deletes_record(self, make_engine, receivers, ledger, fetch_records):
        receivers.script(RECEIVER_A, 200)
        engine = make_engine()
        await ledger.insert("stored-request", 1, "503", {"n": 1})

        outcome = await engine.resume("stored-request", 1, {"n": 1})

        assert outcome.delivered
        assert outcome.attempts == 2
        assert await fetch_records() == []

    async def test_resume_never_inserts(self, make_engine, receivers, fetch_records, ledger, monkeypatch):
        receivers.script(RECEIVER_A, 500)
        engine = make_engine(max_attempts=4)
        await ledger.insert("stored-request", 1, "500", {"n": 1})

        async def fail_insert(*args, **kwargs):
            raise AssertionError("resume must not insert")

        monkeypatch.setattr(ledger, "insert", fail_insert)

        await engine.resume("stored-request", 1, {"n": 1})

        (record,) = await fetch_records()
        assert record.attempt_number == 4

    async def test_resume_past_budget_abandons_after_one_attempt(self, make_engine, receivers, ledger, fetch_records, recording_sleep):
        receivers.script(RECEIVER_A, 500)
        engine = make_engine(max_attempts=3)
        await ledger.insert("stored-request", 3, "500", {"n": 1})

        outcome = await engine.resume("stored-request", 3, {"n": 1})

        assert outcome.state == DeliveryState.ABANDONED
        assert receivers.calls_to(RECEIVER_A) == 1
        assert recording_sleep.delays == []
        (record,) = await fetch_records()
        assert record.attempt_number == 4


class TestStartDelivery:

    async def test_never_raises_after_exhaustion(self, make_engine, receivers):
        receivers.script(RECEIVER_A, 500)
        engine = make_engine(max_attempts=2)

        assert await engine.start_delivery({"n": 1}) is None

    async def test_swallows_unexpected_errors(self, make_engine, monkeypatch):
        engine = make_engine()

        async def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(engine.dispatcher, "dispatch", explode)

        assert await engine.start_delivery({"n": 1}) is None

    async def test_schedule_delivery_runs_in_background(self, make_engine, receivers):
        receivers.script(RECEIVER_A, 200)
        engine = make_engine()

        task = engine.schedule_delivery({"n": 1})
        await engine.drain()

        assert task.done()
        assert receivers.calls_to(RECEIVER_A) == 1

    async def test_cancel_pending_leaves_record_for_recovery(self, make_engine, receivers, fetch_records):
        receivers.script(RECEIVER_A, 503)
        held = HeldSleep()
        engine = make_engine(sleep=held)

        task = engine.schedule_delivery({"n": 1})
        await held.waiting.wait()
        await engine.cancel_pending()

        assert task.cancelled()
        assert engine.in_flight == set()
        (record,) = await fetch_records()
        assert record.abandoned is False
        assert record.attempt_number == 1

    async def test_in_flight_tracks_retrying_sequence(self, make_engine, receivers):
        receivers.script(RECEIVER_A, 503, 200)
        held = HeldSleep()
        engine = make_engine(sleep=held)

        delivery = asyncio.create_task(engine.deliver({"n": 1}))
        await held.waiting.wait()
        during = set(engine.in_flight)
        held.release.set()
        outcome = await delivery

        assert during == {outcome.request_id}
        assert engine.in_flight == set()
