"""
Exception hierarchy for the SpacetimeDB link.

Every error raised or forwarded by this package derives from
SpacetimeLinkError, which carries an error code and details for API responses.
"""

from typing import Any, Optional


class SpacetimeLinkError(Exception):
    """
    Base exception.

    Provides a uniform error code and message format.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None
    ):
        """
        Args:
            message: Human readable message
            code: Error code (used in API responses)
            details: Extra error context
        """
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dict (for API responses)"""
        result = {
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# ==================== Configuration ====================

class ConfigurationError(SpacetimeLinkError):
    """Invalid startup configuration"""

    def __init__(self, key: str, reason: str):
        super().__init__(
            message=f"Configuration error for {key}: {reason}",
            code="CONFIGURATION_ERROR",
            details={"key": key, "reason": reason}
        )
        self.key = key
        self.reason = reason


class MissingConfigError(ConfigurationError):
    """A required configuration value is missing"""

    def __init__(self, key: str):
        super().__init__(
            key=key,
            reason="Required configuration is missing"
        )


# ==================== Connection lifecycle ====================

class HandshakeFailure(SpacetimeLinkError):
    """The remote service refused or never completed the handshake"""

    def __init__(self, uri: str, reason: str):
        super().__init__(
            message=f"Handshake with {uri} failed: {reason}",
            code="HANDSHAKE_FAILURE",
            details={"uri": uri, "reason": reason}
        )
        self.uri = uri
        self.reason = reason


class TransportDisconnect(SpacetimeLinkError):
    """The streaming transport closed abnormally"""

    def __init__(self, reason: str, close_code: Optional[int] = None):
        super().__init__(
            message=f"Transport disconnected: {reason}",
            code="TRANSPORT_DISCONNECT",
            details={"reason": reason, "close_code": close_code}
        )
        self.reason = reason
        self.close_code = close_code


class NotInitializedError(SpacetimeLinkError):
    """The connection was accessed before initialize, or after a disconnect"""

    def __init__(self, message: str = "SpacetimeDB connection not initialized"):
        super().__init__(message=message, code="NOT_INITIALIZED")


class ConnectionStateError(SpacetimeLinkError):
    """Operation is not allowed in the connection's current state"""

    def __init__(self, operation: str, state: str):
        super().__init__(
            message=f"Cannot {operation} while connection is {state}",
            code="CONNECTION_STATE_ERROR",
            details={"operation": operation, "state": state}
        )
        self.state = state


class ConnectionTimeoutError(SpacetimeLinkError):
    """Connection did not become active within the attempt budget"""

    def __init__(self, checks: int, poll_interval: float):
        super().__init__(
            message=f"Failed to connect to SpacetimeDB after {checks} checks",
            code="CONNECTION_TIMEOUT",
            details={"checks": checks, "poll_interval": poll_interval}
        )
        self.checks = checks
        self.poll_interval = poll_interval


class WaitCancelledError(SpacetimeLinkError):
    """Readiness wait was cancelled by the caller"""

    def __init__(self, checks: int):
        super().__init__(
            message=f"Readiness wait cancelled after {checks} checks",
            code="WAIT_CANCELLED",
            details={"checks": checks}
        )
        self.checks = checks


# ==================== Subscriptions ====================

class SubscriptionFailedError(SpacetimeLinkError):
    """The server rejected a subscription query"""

    def __init__(self, query: str, reason: str):
        super().__init__(
            message=f"Subscription failed: {reason}",
            code="SUBSCRIPTION_FAILED",
            details={"query": query, "reason": reason}
        )
        self.query = query
        self.reason = reason


# ==================== Service ====================

class ServiceUnavailableError(SpacetimeLinkError):
    """Service is unavailable"""

    def __init__(self, service: str, reason: str):
        super().__init__(
            message=f"Service {service} is unavailable: {reason}",
            code="SERVICE_UNAVAILABLE",
            details={"service": service, "reason": reason}
        )
