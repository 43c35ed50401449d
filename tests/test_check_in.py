"""Check-in monitor tests at compressed intervals."""

import asyncio
import time

from sqlalchemy import select

from tests.conftest import LOCATION
from vigil.models.alert import Alert
from vigil.models.monitoring_session import MonitoringSession
from vigil.services.lifecycle import Origin
from vigil.sync.check_in import PROMPTS, CheckInMonitor, MonitorPhase

INTERVAL = 0.1
PROMPT_AT = 0.05
FINAL_WARNING = 0.05


def _monitor(lifecycle, on_alert=None) -> CheckInMonitor:
    return CheckInMonitor(
        lifecycle,
        interval=INTERVAL,
        prompt_at=PROMPT_AT,
        final_warning=FINAL_WARNING,
        on_alert=on_alert,
    )


def _session(db, session_id) -> MonitoringSession:
    db.expire_all()
    return db.get(MonitoringSession, session_id)


def test_silence_walks_every_phase_and_escalates_once(db, lifecycle):
    handoffs = []
    monitor = _monitor(lifecycle, on_alert=handoffs.append)
    origin = Origin.for_identity(None)

    async def scenario():
        session_id = await monitor.start(origin, LOCATION)
        assert monitor.phase is MonitorPhase.MONITORING

        await asyncio.sleep(INTERVAL - PROMPT_AT + 0.02)
        assert monitor.phase is MonitorPhase.PROMPTING
        assert monitor.state.prompt in PROMPTS

        await asyncio.sleep(PROMPT_AT)
        assert monitor.phase is MonitorPhase.FINAL_WARNING

        await asyncio.sleep(FINAL_WARNING + 0.1)
        assert monitor.phase is MonitorPhase.ALERT_SENT

        # A late timer or a stray check-in changes nothing
        monitor._fire()
        assert await monitor.check_in() == 0
        for _ in range(100):
            if monitor.handoff is not None:
                break
            await asyncio.sleep(0.02)
        monitor.close()
        return session_id

    session_id = asyncio.run(scenario())

    assert len(handoffs) == 1
    assert handoffs[0].session_id == session_id
    assert monitor.handoff == handoffs[0]
    assert _session(db, session_id).status == "emergency"
    alerts = db.execute(select(Alert).where(Alert.session_id == session_id)).scalars().all()
    assert [a.id for a in alerts] == [handoffs[0].alert_id]


def test_check_in_resets_countdown(db, lifecycle):
    monitor = _monitor(lifecycle)

    async def scenario():
        session_id = await monitor.start(Origin.for_identity(None), LOCATION)
        await asyncio.sleep(INTERVAL - PROMPT_AT + 0.02)
        assert monitor.phase is MonitorPhase.PROMPTING

        assert await monitor.check_in() == 1
        assert monitor.phase is MonitorPhase.MONITORING
        assert monitor.state.prompt is None
        assert monitor.time_remaining() > INTERVAL - PROMPT_AT
        monitor.close()
        return session_id

    session_id = asyncio.run(scenario())

    session = _session(db, session_id)
    assert session.check_ins_count == 1
    assert session.status == "active"


def test_stop_ends_session_as_completed(db, lifecycle):
    monitor = _monitor(lifecycle)

    async def scenario():
        session_id = await monitor.start(Origin.for_identity(None), LOCATION)
        await monitor.stop()
        assert monitor.phase is MonitorPhase.IDLE
        assert monitor.timers.pending == 0
        await asyncio.sleep(INTERVAL + FINAL_WARNING + 0.05)
        assert monitor.handoff is None
        return session_id

    session_id = asyncio.run(scenario())

    assert _session(db, session_id).status == "completed"


def test_restart_supersedes_previous_session(db, lifecycle):
    monitor = _monitor(lifecycle)
    origin = Origin.for_identity(None)

    async def scenario():
        first = await monitor.start(origin, LOCATION)
        second = await monitor.start(origin, LOCATION)
        monitor.close()
        return first, second

    first, second = asyncio.run(scenario())

    assert _session(db, first).status == "completed"
    assert _session(db, second).status == "active"


def test_restart_waits_for_in_flight_escalation(db, lifecycle, monkeypatch):
    events = []
    real_escalate, real_start = lifecycle.escalate_session, lifecycle.start_session

    def slow_escalate(session_id):
        events.append("escalate-begin")
        time.sleep(0.1)
        try:
            return real_escalate(session_id)
        finally:
            events.append("escalate-end")

    def tracked_start(origin, location):
        events.append("start")
        return real_start(origin, location)

    monkeypatch.setattr(lifecycle, "escalate_session", slow_escalate)
    monkeypatch.setattr(lifecycle, "start_session", tracked_start)
    handoffs = []
    monitor = _monitor(lifecycle, on_alert=handoffs.append)
    origin = Origin.for_identity(None)

    async def scenario():
        first = await monitor.start(origin, LOCATION)
        for _ in range(100):
            if "escalate-begin" in events:
                break
            await asyncio.sleep(0.01)
        second = await monitor.start(origin, LOCATION)
        monitor.close()
        return first, second

    first, second = asyncio.run(scenario())

    assert events == ["start", "escalate-begin", "escalate-end", "start"]
    assert len(handoffs) == 1
    assert _session(db, first).status == "emergency"
    assert _session(db, second).status == "active"
