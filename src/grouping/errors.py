"""Exceptions raised by the grouping engine."""


class GroupingError(Exception):
    """Base class for grouping failures."""


class DuplicateLabelError(GroupingError):
    """
    A cluster with the same label already exists for the tenant.

    Raised when the store's uniqueness constraint rejects a create. Usually
    means a concurrent writer created an equivalent cluster first, so callers
    re-run resolution and link instead of failing.
    """

    def __init__(self, kind: str, configuration_id: str, label: str):
        self.kind = kind
        self.configuration_id = configuration_id
        self.label = label
        super().__init__(
            f"{kind} '{label}' already exists for configuration {configuration_id}"
        )


class SetupError(GroupingError):
    """The store is missing tables required for grouping."""
