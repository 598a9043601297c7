"""
Custom exceptions for bridge operations.

Each exception carries the HTTP status code the API layer should answer with.
"""


class BridgeError(Exception):
    """Base class for errors surfaced to the web client."""
    error_code = "BRIDGE_ERROR"

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthError(BridgeError):
    """Raised when the shared chat password does not match."""
    error_code = "INVALID_PASSWORD"

    def __init__(self, message: str = "Invalid password", status_code: int = 401):
        super().__init__(message, status_code)


class ValidationError(BridgeError):
    """Raised when a web submission is malformed or empty."""
    error_code = "INVALID_REQUEST"

    def __init__(self, message: str = "Message cannot be empty", status_code: int = 400):
        super().__init__(message, status_code)


class ChannelNotFoundError(BridgeError):
    """Raised when the configured id resolves to neither a channel nor a user."""
    error_code = "CHANNEL_NOT_FOUND"

    def __init__(self, channel_id: str = None, status_code: int = 404):
        self.channel_id = channel_id
        super().__init__("Discord channel/user not found", status_code)


class BackendTransientError(BridgeError):
    """Raised when a Discord fetch or send fails."""
    error_code = "DISCORD_API_ERROR"

    def __init__(self, message: str = "Discord API error", status_code: int = 500):
        super().__init__(message, status_code)


class RateLimitExceededError(BridgeError):
    """Raised when a client exceeds an endpoint's request window."""
    error_code = "RATE_LIMITED"

    def __init__(self, message: str, retry_after_seconds: float = 0, status_code: int = 429):
        super().__init__(message, status_code)
        self.retry_after_seconds = retry_after_seconds
