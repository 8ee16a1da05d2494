"""Custom exception hierarchy for adpilot."""


class AdpilotError(Exception):
    """Base for all adpilot errors."""


class ConfigurationError(AdpilotError):
    """A phase needs a collaborator or credential that is not configured."""


class MetricsUnavailableError(AdpilotError):
    """No metrics source produced data for this cycle."""


class ReasoningUnavailableError(AdpilotError):
    """The reasoning service failed, timed out, or returned unusable output."""


class StrategyUnavailable(AdpilotError):
    """A strategy cannot produce a result; the chain should try the next one."""


class PlatformError(AdpilotError):
    """The ad platform rejected or failed an operation. Always retryable."""


class ActionStateError(AdpilotError):
    """Invalid action state transition."""


class ActionNotFoundError(AdpilotError):
    """No action with the given ID exists."""


class DuplicateActionError(AdpilotError):
    """An open action already exists for this entity and action type."""


class InvalidActionTypeError(AdpilotError, ValueError):
    """Action type cannot be normalized to a known type."""


class SkillNotFoundError(AdpilotError):
    """No skill with the given ID exists."""


class SnapshotClosedError(AdpilotError):
    """Snapshot is already completed or failed and cannot change."""
