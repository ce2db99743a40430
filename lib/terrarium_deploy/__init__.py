from .bootstrap import AdminBootstrapper, BootstrapResult, BootstrapStatus
from .bringup import BringupResult, ServiceBringupController
from .configurator import DeploymentTarget, EnvironmentConfig, EnvironmentConfigurator
from .errors import (
    ComposeError,
    ConfigurationError,
    DeployError,
    HealthTimeoutError,
    LockHeldError,
    PortConflictError,
    PrerequisiteError,
    SecretStoreError,
    TemplateNotFoundError,
)
from .secret_store import SecretRecord, SecretStore
from .teardown import DESTROY_CONFIRMATION, TeardownController, TeardownResult

__all__ = [
    "AdminBootstrapper",
    "BootstrapResult",
    "BootstrapStatus",
    "BringupResult",
    "ServiceBringupController",
    "DeploymentTarget",
    "EnvironmentConfig",
    "EnvironmentConfigurator",
    "ComposeError",
    "ConfigurationError",
    "DeployError",
    "HealthTimeoutError",
    "LockHeldError",
    "PortConflictError",
    "PrerequisiteError",
    "SecretStoreError",
    "TemplateNotFoundError",
    "SecretRecord",
    "SecretStore",
    "DESTROY_CONFIRMATION",
    "TeardownController",
    "TeardownResult",
]
