"""
Engine exceptions.

Two families matter to callers:

- ``CatalogDefinitionError`` means the static service catalog itself is
  broken (unknown references, dependency cycles). It is raised once, at load
  time, and is never a per-request condition.
- ``ScheduleValidationError`` means the caller's input cannot be solved as
  given. It carries structured issues so the UI can point at the offending
  field instead of showing a generic failure.

Degraded data (no weather, missing optional measurements) is absent from
this module: it never raises.
"""

from schedule_engine.models import ValidationIssue


class ScheduleEngineError(Exception):
    """Base class for every error raised by the scheduling engine."""


class CatalogDefinitionError(ScheduleEngineError):
    """The service catalog contains a dangling reference or a cycle."""


class ScheduleValidationError(ScheduleEngineError):
    """Caller input failed validation; nothing was scheduled or changed."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        message = "; ".join(f"{i.field}: {i.message}" for i in issues)
        super().__init__(message or "Schedule validation failed")

    @classmethod
    def single(cls, field: str, message: str) -> "ScheduleValidationError":
        return cls([ValidationIssue(field=field, message=message)])


class LocationNotFoundError(ScheduleEngineError):
    """The weather provider explicitly could not resolve the location."""

    def __init__(self, location: str):
        self.location = location
        super().__init__(f"Weather provider could not resolve location '{location}'")
