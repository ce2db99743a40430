from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Iterable

from .errors import ComposeError, HealthTimeoutError, InvalidTransition, PortConflictError
from .health import HealthPredicate
from .ports import SweepResult, port_in_use, sweep_ports
from .runner import DEFAULT_LOG_TAIL, CommandRunner, Compose, container_logs
from .topology import (
    CONTAINER_PREFIX,
    PollPolicy,
    ServiceDescriptor,
    claimed_ports,
    group_by_rank,
    managed_containers,
    validate_topology,
)

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "idle"
    PORT_CHECK = "port_check"
    STARTING = "starting"
    HEALTHY = "healthy"
    COMPLETE = "complete"
    FAILED = "failed"


class Event(str, Enum):
    BEGIN = "begin"
    PORTS_CLEAR = "ports_clear"
    PORTS_CONFLICT = "ports_conflict"
    START_FAILED = "start_failed"
    RANK_HEALTHY = "rank_healthy"
    RANK_UNHEALTHY = "rank_unhealthy"
    ADVANCE = "advance"


@dataclass(frozen=True)
class BringupState:
    phase: Phase
    rank_index: int = 0
    total_ranks: int = 0

    @property
    def terminal(self) -> bool:
        return self.phase in {Phase.COMPLETE, Phase.FAILED}

    def __str__(self) -> str:
        if self.phase in {Phase.STARTING, Phase.HEALTHY}:
            return f"rank{self.rank_index + 1}:{self.phase.value}"
        return self.phase.value


def initial_state(total_ranks: int) -> BringupState:
    return BringupState(phase=Phase.IDLE, rank_index=0, total_ranks=total_ranks)


def advance(state: BringupState, event: Event) -> BringupState:
    """Pure transition function of the bring-up state machine."""
    phase = state.phase
    if phase is Phase.IDLE and event is Event.BEGIN:
        return replace(state, phase=Phase.PORT_CHECK)
    if phase is Phase.PORT_CHECK:
        if event is Event.PORTS_CLEAR:
            if state.total_ranks == 0:
                return replace(state, phase=Phase.COMPLETE)
            return replace(state, phase=Phase.STARTING, rank_index=0)
        if event in {Event.PORTS_CONFLICT, Event.START_FAILED}:
            return replace(state, phase=Phase.FAILED)
    if phase is Phase.STARTING:
        if event is Event.RANK_HEALTHY:
            return replace(state, phase=Phase.HEALTHY)
        if event in {Event.RANK_UNHEALTHY, Event.START_FAILED}:
            return replace(state, phase=Phase.FAILED)
    if phase is Phase.HEALTHY and event is Event.ADVANCE:
        if state.rank_index + 1 >= state.total_ranks:
            return replace(state, phase=Phase.COMPLETE)
        return replace(state, phase=Phase.STARTING, rank_index=state.rank_index + 1)
    raise InvalidTransition(f"No transition from {state} on {event.value}")


@dataclass(frozen=True)
class PollOutcome:
    healthy: bool
    attempts: int


def poll_health(
    predicate: HealthPredicate,
    policy: PollPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PollOutcome:
    """Check up to ``max_attempts`` times, sleeping ``interval`` between checks.

    Slow checks eat into the same ``policy.budget``; no check starts once the
    budget is spent.
    """
    deadline = clock() + policy.budget
    attempts = 0
    for attempt in range(1, policy.max_attempts + 1):
        attempts = attempt
        if predicate():
            return PollOutcome(healthy=True, attempts=attempt)
        if attempt == policy.max_attempts:
            break
        remaining = deadline - clock()
        if remaining <= 0:
            break
        sleep(min(policy.interval, remaining))
        if clock() >= deadline:
            break
    return PollOutcome(healthy=False, attempts=attempts)


@dataclass
class ServiceOutcome:
    name: str
    healthy: bool
    attempts: int
    required: bool
    diagnostics: str | None = None


@dataclass
class BringupResult:
    state: BringupState
    history: list[BringupState] = field(default_factory=list)
    services: list[ServiceOutcome] = field(default_factory=list)
    sweep: SweepResult = field(default_factory=SweepResult)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state.phase is Phase.COMPLETE


StatusCallback = Callable[[str, str], None]


class ServiceBringupController:
    def __init__(
        self,
        compose: Compose,
        runner: CommandRunner,
        *,
        is_own: Callable[[str], bool] | None = None,
        probe: Callable[[int], bool] = port_in_use,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        pull: bool = True,
        log_tail: int = DEFAULT_LOG_TAIL,
        on_status: StatusCallback | None = None,
    ):
        self.compose = compose
        self.runner = runner
        self.is_own = is_own
        self.probe = probe
        self.sleep = sleep
        self.clock = clock
        self.pull = pull
        self.log_tail = log_tail
        self.on_status = on_status
        self.result: BringupResult | None = None

    def bring_up(self, descriptors: Iterable[ServiceDescriptor]) -> BringupResult:
        descriptors = list(descriptors)
        validate_topology(descriptors)
        ranks = group_by_rank(descriptors)
        result = BringupResult(state=initial_state(len(ranks)))
        result.history.append(result.state)
        self.result = result

        self._step(result, Event.BEGIN)
        is_own = self.is_own or _own_container_matcher(descriptors)
        result.sweep = sweep_ports(claimed_ports(descriptors), self.runner, is_own, probe=self.probe)
        for port, container in result.sweep.freed:
            self._notify(container, f"removed (freed port {port})")
        if result.sweep.conflicts:
            self._step(result, Event.PORTS_CONFLICT)
            raise PortConflictError(result.sweep.conflicts)

        if self.pull:
            self._notify("images", "pulling")
            try:
                self.compose.pull()
            except ComposeError:
                self._step(result, Event.START_FAILED)
                raise
        self._step(result, Event.PORTS_CLEAR)

        for _, siblings in ranks:
            names = [descriptor.name for descriptor in siblings]
            for name in names:
                self._notify(name, "starting")
            try:
                self.compose.up(names)
            except ComposeError:
                self._step(result, Event.START_FAILED)
                raise

            outcomes = self._wait_rank(siblings)
            result.services.extend(outcomes)
            failed = [outcome for outcome in outcomes if not outcome.healthy and outcome.required]
            for outcome in outcomes:
                if outcome.healthy:
                    self._notify(outcome.name, "healthy")
                elif not outcome.required:
                    result.warnings.append(f"{outcome.name} did not become healthy (optional)")
                    self._notify(outcome.name, "unhealthy (optional)")
            if failed:
                self._step(result, Event.RANK_UNHEALTHY)
                first = failed[0]
                self._notify(first.name, "unhealthy")
                raise HealthTimeoutError(first.name, first.attempts, first.diagnostics)
            self._step(result, Event.RANK_HEALTHY)
            self._step(result, Event.ADVANCE)

        return result

    def _wait_rank(self, siblings: list[ServiceDescriptor]) -> list[ServiceOutcome]:
        if len(siblings) == 1:
            return [self._wait_one(siblings[0])]
        with ThreadPoolExecutor(max_workers=len(siblings), thread_name_prefix="health") as pool:
            return list(pool.map(self._wait_one, siblings))

    def _wait_one(self, descriptor: ServiceDescriptor) -> ServiceOutcome:
        outcome = poll_health(descriptor.health, descriptor.poll, sleep=self.sleep, clock=self.clock)
        logger.debug("%s healthy=%s after %d attempts", descriptor.name, outcome.healthy, outcome.attempts)
        diagnostics = None
        if not outcome.healthy:
            diagnostics = container_logs(self.runner, descriptor.container, tail=self.log_tail)
        return ServiceOutcome(
            name=descriptor.name,
            healthy=outcome.healthy,
            attempts=outcome.attempts,
            required=descriptor.required,
            diagnostics=diagnostics,
        )

    def _step(self, result: BringupResult, event: Event) -> None:
        result.state = advance(result.state, event)
        result.history.append(result.state)
        logger.debug("bring-up %s -> %s", event.value, result.state)

    def _notify(self, name: str, status: str) -> None:
        if self.on_status:
            self.on_status(name, status)


def _own_container_matcher(descriptors: Iterable[ServiceDescriptor]) -> Callable[[str], bool]:
    names = managed_containers(descriptors)

    def _is_own(container: str) -> bool:
        return container in names or container.startswith(CONTAINER_PREFIX)

    return _is_own
