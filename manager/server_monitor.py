from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from manager.config import ManagerConfig
from manager.interfaces import ContainerController, Notifier
from manager.models import (
    HealthPolicy, HealthState, HealthStatus, NotificationKind, ServerInfo, ServerStatus,
)
from manager.state_store import StateStore
from manager.stop_intent import StopIntentRegistry
from manager.utils import LoggerSetup

_SEVERITY = {
    HealthStatus.UNKNOWN: 0,
    HealthStatus.HEALTHY: 0,
    HealthStatus.WARNING: 1,
    HealthStatus.CRITICAL: 2,
}


@dataclass
class Breach:
    metric: str  # tps | memory
    value: float
    threshold: float
    severity: HealthStatus

    @property
    def reason(self) -> str:
        if self.metric == 'tps':
            return f"Low TPS: {self.value:.1f} (threshold {self.threshold})"
        return f"High memory usage: {self.value:.1f}% (threshold {self.threshold}%)"


@dataclass
class Evaluation:
    status: HealthStatus = HealthStatus.HEALTHY
    breaches: List[Breach] = field(default_factory=list)

    @property
    def reason(self) -> str:
        return "; ".join(b.reason for b in self.breaches) or "Performance degradation"


class Transition(str, Enum):
    STILL_HEALTHY = "still_healthy"
    RECOVERED = "recovered"
    BREACH_STARTED = "breach_started"
    BREACH_CONTINUED = "breach_continued"


def evaluate_health(tps: Optional[float], memory_percent: Optional[float],
                    policy: HealthPolicy) -> Evaluation:
    """TPS and memory are judged separately; the worse result wins."""
    evaluation = Evaluation()

    if tps is not None and tps < policy.tps_threshold:
        critical = tps < policy.tps_threshold * ManagerConfig.TPS_CRITICAL_RATIO
        evaluation.breaches.append(Breach(
            'tps', tps, policy.tps_threshold,
            HealthStatus.CRITICAL if critical else HealthStatus.WARNING,
        ))

    if memory_percent is not None and memory_percent >= policy.memory_threshold_percent:
        critical = memory_percent >= ManagerConfig.MEMORY_CRITICAL_PERCENT
        evaluation.breaches.append(Breach(
            'memory', memory_percent, policy.memory_threshold_percent,
            HealthStatus.CRITICAL if critical else HealthStatus.WARNING,
        ))

    if evaluation.breaches:
        evaluation.status = max((b.severity for b in evaluation.breaches), key=_SEVERITY.get)
    return evaluation


def classify_transition(previous: HealthStatus, consecutive_failures: int,
                        result: HealthStatus) -> Transition:
    """A streak starts when a breach follows a healthy/unknown check, or
    follows a restart that reset the failure counter."""
    if result == HealthStatus.HEALTHY:
        if previous in (HealthStatus.WARNING, HealthStatus.CRITICAL):
            return Transition.RECOVERED
        return Transition.STILL_HEALTHY
    if previous in (HealthStatus.HEALTHY, HealthStatus.UNKNOWN) or consecutive_failures == 0:
        return Transition.BREACH_STARTED
    return Transition.BREACH_CONTINUED


def restart_allowed(state: HealthState, policy: HealthPolicy, now: datetime) -> bool:
    if state.last_restart_time is None:
        return True
    cooldown = timedelta(minutes=policy.restart_cooldown_minutes)
    return now - state.last_restart_time >= cooldown


class HealthMonitor:
    def __init__(self, containers: ContainerController, store: StateStore,
                 notifier: Notifier, stop_intents: StopIntentRegistry):
        self.containers = containers
        self.store = store
        self.notifier = notifier
        self.stop_intents = stop_intents
        self.logger = LoggerSetup.setup('health')

    async def check(self, server: ServerInfo, policy: HealthPolicy, now: datetime) -> HealthState:
        state = self.store.get_health_state(server.id)
        if not policy.enabled:
            return state

        status = await self.containers.get_status(server)
        if status.running:
            await self._evaluate_running(server, policy, state, status, now)
        else:
            await self._handle_stopped(server, policy, state, now)

        self.store.save_health_state(server.id, state)
        return state

    def _looks_like_crash(self, server: ServerInfo, policy: HealthPolicy,
                          state: HealthState, now: datetime) -> bool:
        if state.current_status == HealthStatus.UNKNOWN or state.last_check_time is None:
            return False
        if not policy.crash_detection:
            return False
        if now - state.last_check_time >= ManagerConfig.CRASH_DETECTION_WINDOW:
            return False
        if self.stop_intents.is_marked(server.id):
            self.logger.info(f"[{server.id}] Server stopped intentionally, not a crash")
            return False
        return True

    async def _handle_stopped(self, server: ServerInfo, policy: HealthPolicy,
                              state: HealthState, now: datetime):
        if self._looks_like_crash(server, policy, state, now):
            self.logger.warning(f"[{server.id}] Possible crash detected for {server.name}")
            await self.notifier.notify(server.id, NotificationKind.SERVER_CRASH, {
                'server_name': server.name,
                'reason': 'Unexpected server stop',
            })
            if policy.auto_restart and restart_allowed(state, policy, now):
                await self._restart(server, state, 'Crash detected', now)

        state.last_check_time = now
        state.current_status = HealthStatus.UNKNOWN
        state.consecutive_failures = 0

    async def _evaluate_running(self, server: ServerInfo, policy: HealthPolicy,
                                state: HealthState, status: ServerStatus, now: datetime):
        memory_percent = status.memory_percent
        evaluation = evaluate_health(status.tps, memory_percent, policy)
        transition = classify_transition(state.current_status, state.consecutive_failures,
                                         evaluation.status)

        state.last_check_time = now
        state.last_tps = status.tps
        state.last_memory_percent = memory_percent
        state.current_status = evaluation.status

        if evaluation.status == HealthStatus.HEALTHY:
            if transition == Transition.RECOVERED:
                self.logger.info(f"[{server.id}] Health recovered")
            state.consecutive_failures = 0
            return

        state.consecutive_failures += 1
        self.logger.warning(
            f"[{server.id}] Health {evaluation.status.value} "
            f"({state.consecutive_failures}/{policy.consecutive_failures}): {evaluation.reason}"
        )

        if transition == Transition.BREACH_STARTED:
            worst = max(evaluation.breaches, key=lambda b: _SEVERITY[b.severity])
            await self.notifier.notify(server.id, NotificationKind.HEALTH_ALERT, {
                'server_name': server.name,
                'metric': worst.metric,
                'value': worst.value,
                'threshold': worst.threshold,
                'severity': worst.severity.value,
                'reason': evaluation.reason,
            })

        if (policy.auto_restart
                and state.consecutive_failures >= policy.consecutive_failures
                and restart_allowed(state, policy, now)):
            await self._restart(server, state, evaluation.reason, now)

    async def _restart(self, server: ServerInfo, state: HealthState, reason: str, now: datetime):
        self.logger.info(f"[{server.id}] Auto-restarting {server.name}: {reason}")
        try:
            await self.containers.restart(server)
        except Exception as e:
            self.logger.error(f"[{server.id}] Auto-restart failed: {e}")
            return

        state.last_restart_time = now
        state.consecutive_failures = 0
        await self.notifier.notify(server.id, NotificationKind.AUTO_RESTART, {
            'server_name': server.name,
            'reason': reason,
        })
