"""Error taxonomy shared by the core modules.

Whole-operation preconditions raise these directly. Per-item failures in
batch operations (migration, sync, clear) are caught, logged, and reported
through the result's ``errors`` list instead.
"""


class MyceliumError(Exception):
    """Base class for all mycelium errors."""


class NotFoundError(MyceliumError):
    """A snapshot, manifest entry, conflict, or tool does not exist."""


class InvalidNameError(MyceliumError):
    """A snapshot name contains characters outside [A-Za-z0-9_-]."""


class NameConflictError(MyceliumError):
    """A snapshot with this name already exists."""


class IOFailure(MyceliumError):
    """Reading, writing, or linking a file failed."""


class FormatError(MyceliumError):
    """A YAML/JSON/TOML file could not be parsed."""


class UnresolvedConflictError(MyceliumError):
    """An interactive migration plan still has conflicts without a choice."""

    def __init__(self, names: list[str]):
        self.names = names
        super().__init__(
            f"{len(names)} conflict(s) need a choice before migrating: {', '.join(names)}"
        )
