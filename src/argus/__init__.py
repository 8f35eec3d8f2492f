"""Argus client-side orchestrator for self-service identity flows."""

from .backend import BackendClient
from .browser import Browser, Navigation, NavigationKind
from .capabilities import ADMIN_CONSOLE, PUBLIC_SITE, AuthSnapshot, CapabilitySet
from .challenges import Challenge, ChallengeSequencer
from .classification import Classification, ErrorClassifier, Outcome
from .config import BackendConfig, OrchestratorConfig, ProviderConfig, RoutesConfig, config_from_env
from .enrollment import EnrollmentStep, TotpEnrollment
from .exceptions import (
    ArgusError,
    BackendError,
    FlowStateError,
    MissingFieldError,
    ProviderResponseError,
    ProviderTransportError,
)
from .flows import FlowStore
from .guards import GuardDecision, GuardVerdict, RouteRequirement, console_access, evaluate_route
from .models import (
    AssuranceLevel,
    EntityMembership,
    EntityRole,
    EntityType,
    FieldGroup,
    Flow,
    FlowKind,
    MessageSeverity,
    Session,
    TerminalResult,
    UiField,
    UiMessage,
    UserProfile,
)
from .observability import Observability, ObservabilityConfig
from .orchestrator import AuthOrchestrator
from .provider import IdentityProviderClient
from .selfservice import RecoveryFlow, RegistrationFlow, SettingsFlow
from .session import SessionService

__all__ = [
    "ADMIN_CONSOLE",
    "ArgusError",
    "AssuranceLevel",
    "AuthOrchestrator",
    "AuthSnapshot",
    "BackendClient",
    "BackendConfig",
    "BackendError",
    "Browser",
    "CapabilitySet",
    "Challenge",
    "ChallengeSequencer",
    "Classification",
    "EnrollmentStep",
    "EntityMembership",
    "EntityRole",
    "EntityType",
    "ErrorClassifier",
    "FieldGroup",
    "Flow",
    "FlowKind",
    "FlowStateError",
    "FlowStore",
    "GuardDecision",
    "GuardVerdict",
    "IdentityProviderClient",
    "MessageSeverity",
    "MissingFieldError",
    "Navigation",
    "NavigationKind",
    "Observability",
    "ObservabilityConfig",
    "OrchestratorConfig",
    "Outcome",
    "PUBLIC_SITE",
    "ProviderConfig",
    "ProviderResponseError",
    "ProviderTransportError",
    "RecoveryFlow",
    "RegistrationFlow",
    "RouteRequirement",
    "RoutesConfig",
    "Session",
    "SessionService",
    "SettingsFlow",
    "TerminalResult",
    "TotpEnrollment",
    "UiField",
    "UiMessage",
    "UserProfile",
    "config_from_env",
    "console_access",
    "evaluate_route",
]
