"""
Exception classes for pattern-sync.

This module defines all custom exceptions used throughout the application.
Each exception is designed to provide clear, actionable error messages
and to distinguish between the failure modes the sync layer reacts to
differently (re-authenticate, retry later, reload, skip silently).

Exception Hierarchy:
    PatternSyncError (base)
        ConfigError - Configuration file issues
        AuthenticationError - Session missing, expired or unrefreshable
        RemoteError - Server rejected a request (non-auth) or network failure
            NotFoundError - Track/folder no longer exists on the server
        ValidationError - Local input rejected before any network call
        ConsistencyError - Internal autosave/store mismatch (never user-facing)
"""


class PatternSyncError(Exception):
    """
    Base exception for all pattern-sync errors.

    All custom exceptions in this project inherit from this class,
    allowing callers to catch all pattern-sync errors with a single
    except clause if desired.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (e.g., track id, endpoint).

    Example:
        try:
            await orchestrator.create_track("Drum Loop")
        except PatternSyncError as e:
            logger.error(f"Operation failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        """
        Initialize the base exception.

        Args:
            message: Human-readable error description that will be shown to the user.
            details: Optional dictionary containing additional context about the error.
                     Useful for logging and debugging. Common keys include:
                     - 'track_id': Track involved in the error
                     - 'folder_id': Folder involved in the error
                     - 'endpoint': API endpoint that failed
                     - 'original_error': The underlying exception if wrapping another error
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(PatternSyncError):
    """
    Raised when there's an issue with the configuration file.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - config.yaml not found
        - config.yaml has invalid YAML syntax
        - Required fields missing (remote.base_url)
        - Invalid field values (e.g., negative autosave interval)

    Example:
        raise ConfigError(
            "Missing required field 'base_url' in config.yaml",
            details={'file_path': '/path/to/config.yaml', 'missing_field': 'remote.base_url'}
        )
    """
    pass


class AuthenticationError(PatternSyncError):
    """
    Raised when no valid session can be obtained for a remote operation.

    Surfaced to the user as "please sign in again". Autosave stops
    silently on this error until the session is authenticated again,
    so the user is not flooded with repeated failures.

    Common causes:
        - No token stored (never signed in, or signed out)
        - Refresh token rejected by the server
        - Server answered 401 twice in a row (original call + one retry)

    Example:
        raise AuthenticationError(
            "Session expired, please sign in again",
            details={'endpoint': '/tracks/update'}
        )
    """
    pass


class RemoteError(PatternSyncError):
    """
    Raised when the remote store rejects a request for a reason other than auth.

    Covers validation errors (4xx), server errors (5xx) and network
    failures (status 0). These are never retried by the client itself;
    the caller decides whether to roll back, re-sync or surface the error.

    Attributes:
        status: HTTP status code returned by the server, or 0 when the
                request never produced a response (timeout, connection reset).

    Example:
        raise RemoteError(
            "Failed to update track",
            status=500,
            details={'endpoint': '/tracks/update', 'track_id': 'abc'}
        )
    """

    def __init__(
        self,
        message: str,
        status: int = 0,
        details: dict | None = None
    ) -> None:
        """
        Initialize remote error with the HTTP status.

        Args:
            message: Human-readable error description (usually the server's
                     'error' field).
            status: HTTP status code, 0 for network-level failures.
            details: Optional dictionary with additional context.
        """
        super().__init__(message, details)
        self.status = status

    @property
    def is_network_error(self) -> bool:
        """True if the request never reached the server or timed out."""
        return self.status == 0


class NotFoundError(RemoteError):
    """
    Raised when the server answers 404 for a track or folder.

    Usually means the item was deleted from another device or tab.
    Surfaced as a distinct "this item no longer exists" message that
    recommends a reload rather than a blind retry.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message, status=404, details=details)


class ValidationError(PatternSyncError):
    """
    Raised when local input is rejected before any network round-trip.

    Common causes:
        - Empty track or folder name
        - Track name already used in the same folder
        - Moving a folder into itself or one of its descendants
    """
    pass


class ConsistencyError(PatternSyncError):
    """
    Internal: autosave context and state store disagree about a track's code.

    Detected when the code recorded as last saved no longer matches the
    store's copy, which means an update happened that the autosave context
    did not see. Never shown to the user; the save cycle is skipped and
    the mismatch is logged for diagnostics.
    """
    pass
