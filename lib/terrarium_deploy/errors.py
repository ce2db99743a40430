from __future__ import annotations


class DeployError(RuntimeError):
    """Base deployment error."""


class PrerequisiteError(DeployError):
    """Docker / compose / host requirements are not met."""


class SecretStoreError(DeployError):
    """Secret storage is unreadable or unwritable."""


class TemplateNotFoundError(DeployError):
    def __init__(self, target: str, candidates: list[str]):
        names = ", ".join(candidates) or "<none>"
        super().__init__(f"No configuration template found for target '{target}' (looked for: {names}).")
        self.target = target
        self.candidates = candidates


class ConfigurationError(DeployError):
    """Active configuration is invalid after materialization."""


class ComposeError(DeployError):
    def __init__(self, message: str, stderr: str | None = None):
        super().__init__(message)
        self.stderr = stderr


class PortConflictError(DeployError):
    def __init__(self, conflicts: list):
        ports = ", ".join(str(c.port) for c in conflicts)
        super().__init__(f"Port conflicts detected: {ports}")
        self.conflicts = conflicts


class HealthTimeoutError(DeployError):
    def __init__(self, service: str, attempts: int, diagnostics: str | None = None):
        super().__init__(f"{service} failed to become healthy after {attempts} attempts")
        self.service = service
        self.attempts = attempts
        self.diagnostics = diagnostics


class InvalidTransition(DeployError):
    """Bring-up state machine received an event it cannot handle."""


class LockHeldError(DeployError):
    """Another orchestration run holds the deployment lock."""
