"""Custom exceptions for the support inbox pipeline."""


class SupportInboxError(Exception):
    """Base exception for all support inbox errors."""


class AuthenticationError(SupportInboxError):
    """Failed to authenticate with the Gmail API."""


class RateLimitError(SupportInboxError):
    """Gmail API rate limit exceeded."""


class ParseError(SupportInboxError):
    """Failed to parse email MIME content."""


class BackendError(SupportInboxError):
    """The model backend is unavailable (network, auth, rate limit, timeout)."""


class MalformedModelOutput(BackendError):
    """The model backend answered, but the answer failed structural validation."""


class PersistenceError(SupportInboxError):
    """The record store rejected a read or write."""


class SendError(SupportInboxError):
    """Failed to send a response through the mail transport."""


class RecordNotFoundError(SupportInboxError):
    """No processing record exists for the requested id."""


class ServiceNotConfiguredError(SupportInboxError):
    """A required collaborator (model backend, mail transport) is not configured."""
