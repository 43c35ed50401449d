"""Check-in countdown for a monitoring session, escalating to an alert on silence.

    idle ─start─▶ monitoring ─prompt_at left─▶ prompting ─0─▶ final_warning ─0─▶ alert_sent
                      ▲                            │                │
                      └──────────check_in──────────┴────────────────┘
"""

from __future__ import annotations

import asyncio
import enum
import logging
import random
import uuid
from dataclasses import dataclass, replace
from typing import Callable

from vigil.core.config import settings
from vigil.core.policies import SessionStatus
from vigil.services.lifecycle import AlertHandoff, LifecycleManager, LocationData, Origin
from vigil.sync.scheduler import TimerSet

logger = logging.getLogger(__name__)

PROMPTS = (
    "Just checking in. How are you feeling right now?",
    "Time for a quick check-in! Are you doing okay?",
    "Quick safety check: are you feeling alright?",
    "Just making sure you're safe. Everything okay?",
)


class MonitorPhase(str, enum.Enum):
    IDLE = "idle"
    MONITORING = "monitoring"
    PROMPTING = "prompting"
    FINAL_WARNING = "final_warning"
    ALERT_SENT = "alert_sent"


@dataclass(frozen=True)
class MonitorState:
    phase: MonitorPhase = MonitorPhase.IDLE
    session_id: uuid.UUID | None = None
    total_check_ins: int = 0
    prompt: str | None = None
    deadline: float | None = None  # loop time when the current countdown runs out
    error: str | None = None


class CheckInMonitor:
    """Drives one monitoring session. Escalation fires at most once per start."""

    def __init__(
        self,
        lifecycle: LifecycleManager,
        interval: float | None = None,
        prompt_at: float | None = None,
        final_warning: float | None = None,
        on_alert: Callable[[AlertHandoff], None] | None = None,
    ) -> None:
        self.lifecycle = lifecycle
        self.interval = settings.check_in_interval if interval is None else interval
        self.prompt_at = settings.check_in_prompt_at if prompt_at is None else prompt_at
        self.final_warning = settings.check_in_final_warning if final_warning is None else final_warning
        self.on_alert = on_alert
        self.state = MonitorState()
        self.handoff: AlertHandoff | None = None
        self.timers = TimerSet()
        self._escalated = False
        self._escalation: asyncio.Task | None = None

    @property
    def phase(self) -> MonitorPhase:
        return self.state.phase

    def time_remaining(self) -> float:
        if self.state.deadline is None:
            return 0.0
        return max(0.0, self.state.deadline - asyncio.get_running_loop().time())

    async def start(self, origin: Origin, location: LocationData) -> uuid.UUID:
        """Open a session (superseding any active one) and start the countdown."""
        await self._settle_escalation()
        self.timers.cancel_all()
        session = await asyncio.to_thread(self.lifecycle.start_session, origin, location)
        self._escalated = False
        self.handoff = None
        self.state = MonitorState(phase=MonitorPhase.MONITORING, session_id=session.id)
        self._arm_countdown()
        logger.info("Monitoring session %s started", session.id)
        return session.id

    def _arm_countdown(self) -> None:
        self.timers.cancel_all()
        loop = asyncio.get_running_loop()
        self.state = replace(
            self.state,
            phase=MonitorPhase.MONITORING,
            prompt=None,
            deadline=loop.time() + self.interval,
        )
        self.timers.call_later(max(0.0, self.interval - self.prompt_at), self._prompt)
        self.timers.call_later(self.interval, self._final_warning)

    def _prompt(self) -> None:
        if self.state.phase is MonitorPhase.MONITORING:
            self.state = replace(self.state, phase=MonitorPhase.PROMPTING, prompt=random.choice(PROMPTS))

    def _final_warning(self) -> None:
        if self.state.phase not in (MonitorPhase.MONITORING, MonitorPhase.PROMPTING):
            return
        loop = asyncio.get_running_loop()
        self.state = replace(
            self.state,
            phase=MonitorPhase.FINAL_WARNING,
            prompt=None,
            deadline=loop.time() + self.final_warning,
        )
        logger.warning("Session %s missed its check-in, final warning", self.state.session_id)
        self.timers.call_later(self.final_warning, self._fire)

    def _fire(self) -> None:
        if self._escalated or self.state.phase is not MonitorPhase.FINAL_WARNING:
            return
        self._escalated = True
        self.state = replace(self.state, phase=MonitorPhase.ALERT_SENT, deadline=None)
        self._escalation = self.timers.spawn(self._escalate(self.state.session_id), name="check-in-escalation")

    async def _settle_escalation(self) -> None:
        """Wait out an in-flight escalation; its worker thread shares the store session."""
        task, self._escalation = self._escalation, None
        if task is not None and not task.done():
            await asyncio.wait({task})

    async def _escalate(self, session_id: uuid.UUID) -> None:
        try:
            handoff = await asyncio.to_thread(self.lifecycle.escalate_session, session_id)
        except Exception as exc:
            logger.exception("Escalation of session %s failed", session_id)
            self.state = replace(self.state, error=str(exc))
            return
        self.handoff = handoff
        logger.warning("Session %s escalated to alert %s", session_id, handoff.alert_id)
        if self.on_alert is not None:
            self.on_alert(handoff)

    async def check_in(self) -> int:
        """Reset the countdown and persist the new counter. Ignored once idle or escalated."""
        if self.state.phase in (MonitorPhase.IDLE, MonitorPhase.ALERT_SENT):
            return self.state.total_check_ins
        total = self.state.total_check_ins + 1
        self.state = replace(self.state, total_check_ins=total)
        self._arm_countdown()
        await asyncio.to_thread(self.lifecycle.update_check_in_count, self.state.session_id, total)
        return total

    async def stop(self) -> None:
        """End the session as completed, unless it already escalated."""
        await self._settle_escalation()
        self.timers.cancel_all()
        session_id, phase = self.state.session_id, self.state.phase
        self.state = MonitorState()
        if session_id is not None and phase is not MonitorPhase.ALERT_SENT:
            await asyncio.to_thread(self.lifecycle.end_session, session_id, SessionStatus.COMPLETED.value)
        logger.info("Monitoring stopped (session %s)", session_id)

    def close(self) -> None:
        """Synchronous teardown without touching the store."""
        self.timers.cancel_all()
