"""
Error taxonomy for the orders gateway.

Every error carries a machine `code`, a caller-safe `message` and optional
operator-only `details`.  `status_code` is what the HTTP layer answers with;
`details` are logged, never returned.
"""

from typing import Any, Dict, Optional


class OrdersGatewayError(Exception):
    """Base exception for the orders gateway."""

    status_code: int = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> Dict[str, str]:
        return {"error": self.message}


# ───────────────────────────── 401 ───────────────────────────── #

class AuthenticationError(OrdersGatewayError):
    """Missing, malformed, expired, mis-issued or mis-audienced token."""

    status_code = 401

    def __init__(self, message: str = "Invalid or missing credentials", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class InvalidToken(AuthenticationError):
    """A bearer token failed one of the validation sub-checks.

    Subclasses name the sub-check for the logs.  The caller-facing message is
    always the generic one so the failing check can't be probed.
    """

    def __init__(self, reason: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(details={"reason": reason, **(details or {})})
        self.reason = reason


class InvalidSignature(InvalidToken):
    pass


class TokenExpired(InvalidToken):
    pass


class AudienceMismatch(InvalidToken):
    pass


class IssuerMismatch(InvalidToken):
    pass


class MalformedToken(InvalidToken):
    pass


# ───────────────────────────── 403 ───────────────────────────── #

class AuthorizationError(OrdersGatewayError):
    """Authenticated caller lacks a permission the route requires."""

    status_code = 403

    def __init__(self, message: str = "Forbidden", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHORIZATION_ERROR", message, details)


class InsufficientScope(AuthorizationError):
    def __init__(self, message: str = "Insufficient scope", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class EmailNotVerified(AuthorizationError):
    def __init__(self, message: str = "Email not verified", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class EmailVerificationUnavailable(AuthorizationError):
    def __init__(self, message: str = "Email verification unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class MachineGrantRequired(AuthorizationError):
    def __init__(self, message: str = "Forbidden: machine credentials required", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


# ───────────────────────────── 400 ───────────────────────────── #

class ValidationError(OrdersGatewayError):
    """Malformed request body or missing required parameter."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


# ───────────────────────────── 500 ───────────────────────────── #

class DependencyError(OrdersGatewayError):
    """Storage or identity provider failed or timed out."""

    status_code = 500

    def __init__(self, message: str = "Dependency failure", details: Optional[Dict[str, Any]] = None):
        super().__init__("DEPENDENCY_ERROR", message, details)


class StorageError(DependencyError):
    def __init__(self, message: str = "Storage error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class IdentityProviderError(DependencyError):
    def __init__(self, message: str = "Identity provider error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class ServiceCredentialUnavailable(IdentityProviderError):
    def __init__(self, message: str = "Service credential unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


# ─────────────────────────── start-up ─────────────────────────── #

class ConfigurationError(OrdersGatewayError):
    """A required setting is absent; the process must not start."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)
