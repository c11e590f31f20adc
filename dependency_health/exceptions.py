"""
Dependency Health - Exceptions.

============================================================
CUSTOM EXCEPTIONS
============================================================

- DependencyHealthError: Base exception
- DependencyNotFoundError: Dependency id not registered
- ConfigurationError: Invalid configuration
- ProbeError: A single probe attempt failed
- AlertDeliveryError: An alert transport failed
- SnapshotStoreError: The snapshot store failed

============================================================
FAILURE SAFETY
============================================================

A failing dependency is data, not a fault of the monitor:
- ProbeError never leaves the probe layer
- AlertDeliveryError and SnapshotStoreError are logged, never raised
  out of a monitoring cycle

============================================================
"""

from typing import Any, Dict, List, Optional


class DependencyHealthError(Exception):
    """
    Base exception for dependency health errors.

    All dependency health exceptions inherit from this class.
    """

    def __init__(
        self,
        message: str,
        dependency_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            dependency_id: Id of the affected dependency
            details: Additional error details
        """
        self.message = message
        self.dependency_id = dependency_id
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message."""
        if self.dependency_id:
            return f"[{self.dependency_id}] {self.message}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "dependency_id": self.dependency_id,
            "details": self.details,
        }


class DependencyNotFoundError(DependencyHealthError):
    """
    Raised when a dependency id is not registered.

    The HTTP surface maps this to 404.
    """

    def __init__(
        self,
        dependency_id: str,
        available: Optional[List[str]] = None,
    ) -> None:
        message = f"Dependency not found: {dependency_id}"
        details: Dict[str, Any] = {}
        if available:
            details["available_dependencies"] = list(available)

        super().__init__(
            message=message,
            dependency_id=dependency_id,
            details=details,
        )


class ConfigurationError(DependencyHealthError):
    """
    Raised when configuration is invalid.

    Should be caught at startup and fixed before monitoring starts.
    """

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_value: Optional[str] = None,
        actual_value: Optional[str] = None,
    ) -> None:
        """
        Initialize exception.

        Args:
            message: Error message
            config_key: Which config key is invalid
            expected_value: What was expected
            actual_value: What was provided
        """
        details = {}
        if config_key:
            details["config_key"] = config_key
        if expected_value:
            details["expected"] = expected_value
        if actual_value is not None:
            details["actual"] = actual_value

        super().__init__(message=message, details=details)
        self.config_key = config_key


class ProbeError(DependencyHealthError):
    """
    Raised when a single probe attempt fails.

    Timeouts, connection errors, status mismatches, parse errors and
    validation failures all collapse into this one error.
    """

    def __init__(
        self,
        reason: str,
        endpoint: Optional[str] = None,
        dependency_id: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        details: Dict[str, Any] = {"reason": reason}
        if endpoint:
            details["endpoint"] = endpoint
        if status is not None:
            details["status"] = status

        super().__init__(
            message=reason,
            dependency_id=dependency_id,
            details=details,
        )
        self.reason = reason
        self.endpoint = endpoint
        self.status = status


class AlertDeliveryError(DependencyHealthError):
    """
    Raised when an alert cannot be sent.

    Never prevents a monitoring cycle from completing.
    """

    def __init__(
        self,
        alert_type: str,
        reason: str,
        original_exception: Optional[Exception] = None,
    ) -> None:
        message = f"Failed to send {alert_type} alert: {reason}"
        details: Dict[str, Any] = {
            "alert_type": alert_type,
            "reason": reason,
        }
        if original_exception:
            details["original_exception"] = str(original_exception)

        super().__init__(message=message, details=details)
        self.alert_type = alert_type
        self.original_exception = original_exception


class SnapshotStoreError(DependencyHealthError):
    """Raised when the snapshot store cannot read or write a key."""

    def __init__(
        self,
        key: str,
        reason: str,
        original_exception: Optional[Exception] = None,
    ) -> None:
        details: Dict[str, Any] = {"key": key, "reason": reason}
        if original_exception:
            details["original_exception"] = str(original_exception)

        super().__init__(
            message=f"Snapshot store error for '{key}': {reason}",
            details=details,
        )
        self.key = key
