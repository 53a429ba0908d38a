"""Exception taxonomy shared by the session, command and admin layers."""

# Identity-service failure codes and the message shown to the user for each
AUTH_MESSAGES: dict[str, str] = {
    "user-not-found": "User not found. Please check your email.",
    "wrong-password": "Incorrect password. Please try again.",
    "invalid-email": "Invalid email address format.",
    "email-already-in-use": "Email address is already registered.",
    "weak-password": "Password must be at least 6 characters.",
    "too-many-requests": "Too many failed attempts. Please try again later.",
}


class HomedashError(Exception):
    """Base class for every error the dashboard reports to its user."""

    error_code = "internal_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AuthError(HomedashError):
    """Credential check failed (bad credentials, rate limit, malformed email)."""

    error_code = "auth_error"

    def __init__(self, code: str, message: str | None = None) -> None:
        self.code = code
        super().__init__(message or AUTH_MESSAGES.get(code, code))


class AuthorizationError(HomedashError):
    """The principal lacks rights for the target device or admin action."""

    error_code = "authorization_error"


class ValidationError(HomedashError):
    """Input rejected locally before any remote call."""

    error_code = "validation_error"

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


class RemoteError(HomedashError):
    """Network or service failure talking to the remote store or identity service."""

    error_code = "remote_error"
