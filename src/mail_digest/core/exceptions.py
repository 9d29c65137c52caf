"""Custom exceptions for Mail Digest."""


class MailDigestError(Exception):
    """Base exception for all Mail Digest errors."""


class ConfigurationError(MailDigestError):
    """Missing or invalid configuration: no useful work is possible."""


class AuthenticationError(MailDigestError):
    """Failed to log in or to obtain an OAuth2 token."""


class AuthorizationTimeoutError(AuthenticationError):
    """No authorization code arrived before the listener timed out."""


class FetchError(MailDigestError):
    """A remote IMAP operation failed."""


class DigestError(MailDigestError):
    """A digest file could not be read or written."""


class DigestMismatchError(DigestError):
    """Two digests for different (account, folder) pairs were combined."""
