"""
Error taxonomy for the matching core.

Read-for-existence failures are folded into "does not exist" by the callers;
write failures surface as one of the errors below.
"""


class MatchingError(Exception):
    """Base class for every error raised by the matching core."""


class DatabaseNotConfigured(MatchingError):
    """No DATABASE_URL was configured and no database was injected."""


class DirectoryUnavailable(MatchingError):
    """Profiles could not be loaded. Safe to retry."""


class ProfileNotFound(MatchingError):
    pass


class SwipeRecordingFailed(MatchingError):
    """The swipe ledger write failed; the swipe was not recorded."""


class MatchPersistenceFailed(MatchingError):
    """
    Mutuality was (or could be) detected but the match record was not written.

    Re-running the match check is safe: match creation is idempotent.
    """


class ConversationBootstrapFailed(MatchingError):
    """Creating the conversation or its intro message failed. The match stands."""


class ConversationNotFound(MatchingError):
    pass
