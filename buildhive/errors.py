"""
Exception hierarchy for the dispatch subsystem.

Background components (Assigner, Executor, Reconciler) catch these and log;
the submission layer lets them propagate to its caller.
"""


class BuildHiveError(Exception):
    pass


class ValidationError(BuildHiveError):
    """A required field is missing or carries an invalid value."""


class NotFoundError(BuildHiveError):
    def __init__(self, kind, ident):
        super().__init__("{} {} not found".format(kind, ident))
        self.kind = kind
        self.ident = ident


class ConflictError(BuildHiveError):
    """
    A conditional update found the row in an unexpected state.

    `kind` is "job" or "host" and names the entity that lost the race.
    """

    def __init__(self, kind, ident, expected, actual):
        super().__init__("{} {} is {!r}, expected {!r}".format(
            kind, ident, actual, expected))
        self.kind = kind
        self.ident = ident
        self.expected = expected
        self.actual = actual


class PermissionDenied(BuildHiveError):
    pass


class StoreError(BuildHiveError):
    pass


class QueueError(BuildHiveError):
    pass
