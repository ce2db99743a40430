from __future__ import annotations

import json
import logging
from typing import Callable

import httpx

from .runner import CommandRunner

logger = logging.getLogger(__name__)

HealthPredicate = Callable[[], bool]

DEFAULT_HTTP_TIMEOUT = 5.0

MISSING = "missing"


def container_health(runner: CommandRunner, container: str) -> str:
    """Return the docker health status, or the plain state for containers without a healthcheck."""
    res = runner(["docker", "inspect", "-f", "{{json .State}}", container])
    if res.returncode != 0:
        return MISSING
    try:
        state = json.loads((res.stdout or "").strip() or "null")
    except ValueError:
        return MISSING
    if not isinstance(state, dict):
        return MISSING
    health = state.get("Health")
    if isinstance(health, dict) and health.get("Status"):
        return str(health["Status"])
    return str(state.get("Status") or MISSING)


def docker_predicate(runner: CommandRunner, container: str) -> HealthPredicate:
    def _check() -> bool:
        status = container_health(runner, container)
        logger.debug("%s health: %s", container, status)
        return status in {"healthy", "running"}

    return _check


def docker_healthcheck_predicate(runner: CommandRunner, container: str) -> HealthPredicate:
    """Strict variant: only a passing docker healthcheck counts."""

    def _check() -> bool:
        return container_health(runner, container) == "healthy"

    return _check


def http_predicate(url: str, *, timeout: float = DEFAULT_HTTP_TIMEOUT) -> HealthPredicate:
    def _check() -> bool:
        try:
            response = httpx.get(url, timeout=timeout)
        except httpx.HTTPError:
            return False
        if response.status_code != 200:
            return False
        return _health_body_ok(response)

    return _check


def any_of(*predicates: HealthPredicate) -> HealthPredicate:
    def _check() -> bool:
        return any(predicate() for predicate in predicates)

    return _check


def _health_body_ok(response: httpx.Response) -> bool:
    try:
        payload = response.json()
    except ValueError:
        return True
    if isinstance(payload, dict) and "status" in payload:
        return str(payload.get("status")).lower() in {"pass", "ok", "healthy"}
    return True
