"""
jira-bridge Exceptions

Error taxonomy shared by the tracker client, the dispatcher and the CLI.
Every interaction failure is mapped to one of these classes so the actor
gets a short message naming what went wrong.
"""

from typing import Optional


class BridgeError(Exception):
    """Base exception for all jira-bridge errors."""

    # Label shown to the Slack user when this error ends an interaction
    label = "Error"

    def __init__(
        self,
        message: str,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        """Initialize the error.

        Args:
            message: Human-readable error message
            remediation: Suggested fix for the user
            details: Technical details for debugging
        """
        super().__init__(message)
        self.message = message
        self.remediation = remediation
        self.details = details

    def __str__(self) -> str:
        parts = [self.message]
        if self.details:
            parts.append(f"Details: {self.details}")
        if self.remediation:
            parts.append(f"To fix: {self.remediation}")
        return "\n".join(parts)

    @property
    def actor_message(self) -> str:
        """Short message for the Slack user who triggered the interaction."""
        return f"{self.label}: {self.message}"


class ConfigError(BridgeError):
    """Configuration-related errors."""

    label = "Configuration error"

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.config_key = config_key
        if not remediation and config_key:
            remediation = f"Check your configuration for '{config_key}' in config.yaml or .env"
        super().__init__(message, remediation, details)


class NotFoundError(BridgeError):
    """The tracker has no such entity (HTTP 404), or no matching user."""

    label = "Not found"

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.resource = resource
        if not remediation and resource:
            remediation = f"Check that '{resource}' exists and is visible to the bot account"
        super().__init__(message, remediation, details)


class UnauthorizedError(BridgeError):
    """The tracker rejected the bot credentials (HTTP 401)."""

    label = "Unauthorized"

    def __init__(
        self,
        message: str,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        if not remediation:
            remediation = "Verify JIRA_USERNAME and JIRA_API_TOKEN with: jira-bridge doctor"
        super().__init__(message, remediation, details)


class MalformedPayloadError(BridgeError):
    """Inbound input failed validation (bad correlation payload or argument)."""

    label = "Invalid request"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        expected_format: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.field = field
        self.expected_format = expected_format
        if not remediation and field and expected_format:
            remediation = f"The {field} should be in format: {expected_format}"
        super().__init__(message, remediation, details)


class TransientError(BridgeError):
    """Any other tracker failure: non-success status, timeout, connection."""

    label = "Temporary failure"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.status_code = status_code
        if not remediation:
            remediation = "Try again in a moment. If the issue persists, Jira may be unavailable."
        super().__init__(message, remediation, details)


class AuditWriteError(BridgeError):
    """Writing the attribution comment failed. Logged only, never shown."""

    label = "Audit comment failed"

    def __init__(
        self,
        message: str,
        issue_key: Optional[str] = None,
        remediation: Optional[str] = None,
        details: Optional[str] = None
    ):
        self.issue_key = issue_key
        super().__init__(message, remediation, details)


# Error code mapping for CLI exit codes
ERROR_CODES = {
    ConfigError: 10,
    UnauthorizedError: 11,
    NotFoundError: 12,
    TransientError: 13,
    MalformedPayloadError: 14,
    AuditWriteError: 15,
    BridgeError: 1,
}


def get_error_code(error: Exception) -> int:
    """Get the exit code for an error type."""
    for error_type, code in ERROR_CODES.items():
        if isinstance(error, error_type):
            return code
    return 1
