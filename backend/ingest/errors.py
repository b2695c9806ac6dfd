"""Exception hierarchy for the email ingest pipeline."""


class EmailPipelineError(Exception):
    """Base class for all pipeline errors."""


class MailboxConnectionError(EmailPipelineError):
    """IMAP connect, login or select failed. Retryable."""


class ServiceUnavailableError(EmailPipelineError):
    """Mailbox still unreachable after the configured number of attempts."""

    def __init__(self, message: str, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class PersistenceError(EmailPipelineError):
    """Database write failed. The source email is left unarchived."""


class ReviewStateError(EmailPipelineError):
    """Attempted transition out of a terminal review state."""


class ReviewItemNotFoundError(EmailPipelineError):
    """No review queue item with the requested id."""


class InvalidOverrideError(EmailPipelineError):
    """Reviewer correction has an unknown field or a value of the wrong type."""
