"""
Error types for the gworkspace CLI

Every fatal condition in the authorization subsystem is one of these. The CLI
entry point catches AuthError once and prints its payload.
"""


class AuthError(Exception):
    """Base class for fatal authorization errors.

    Args:
        message: Human-readable description
        **details: Diagnostic context (paths, modes, ports - never token values)
    """

    kind = 'error'

    def __init__(self, message, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_payload(self):
        """Structured form printed by the CLI on failure"""
        return {
            'ok': False,
            'error': self.message,
            'kind': self.kind,
            'details': self.details or None,
        }


class ConfigurationError(AuthError):
    """Missing or invalid credentials file, client id or client secret"""
    kind = 'configuration'


class NoTokenError(AuthError):
    """No saved session for the requested mode"""
    kind = 'no_token'


class CallbackError(AuthError):
    """The loopback callback carried an error, a bad state or missing fields"""
    kind = 'callback'


class LoginTimeoutError(AuthError):
    """No callback arrived before the login deadline"""
    kind = 'timeout'


class RefreshError(AuthError):
    """A token refresh could not be performed"""
    kind = 'refresh'


class TransportError(AuthError):
    """Listener bind failure or network failure during an exchange"""
    kind = 'transport'
