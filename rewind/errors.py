"""Exception taxonomy for the rollback engine."""


class RewindError(Exception): pass

# Rollback attempted without a captured snapshot (or with another conversation's).
class NoSnapshotError(RewindError): pass

# Underlying store I/O failed; the conversation should be reloaded.
class PersistenceError(RewindError): pass

# Reapply produced zero messages; nothing was applied.
class EmptyParseError(RewindError): pass

class UnresolvedReferenceError(RewindError): pass

class GenerationInFlightError(RewindError): pass

class ProviderError(RewindError): pass

class CancelledError(ProviderError): pass


class HandlerError(RewindError):
    """A single rollback handler failed. Logged, never propagated."""

    def __init__(self, handler_name: str, original: BaseException):
        super().__init__(f"Rollback handler '{handler_name}' failed: {original}")
        self.handler_name = handler_name
        self.original = original
