"""
Custom exceptions for the partner program business logic.

These exceptions carry a machine-readable code so the API layer can map
them to consistent JSON error responses and HTTP status codes.
"""


class ProHealthError(Exception):
    """Base exception for all partner program errors."""

    status_code = 400

    def __init__(self, message: str, code: str = "PROHEALTH_ERROR"):
        self.message = message
        self.code = code
        super().__init__(message)


class NotFoundError(ProHealthError):
    """Resource not found."""

    status_code = 404

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with ID {identifier} not found"
        super().__init__(message, f"{resource.upper()}_NOT_FOUND")


class PartnerNotFoundError(NotFoundError):
    """Partner record not found."""

    def __init__(self, identifier=None):
        super().__init__("Partner", identifier)


class SignupNotFoundError(NotFoundError):
    """Pending signup (customer) not found."""

    def __init__(self, identifier=None):
        super().__init__("Signup", identifier)


class ValidationError(ProHealthError):
    """Invalid input data."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        code = f"INVALID_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(message, code)


class DuplicateError(ProHealthError):
    """Resource already exists."""

    status_code = 409

    def __init__(self, resource: str, identifier=None):
        message = f"{resource} already exists"
        if identifier:
            message = f"{resource} with {identifier} already exists"
        super().__init__(message, "DUPLICATE_ENTRY")


class ShopifyError(ProHealthError):
    """Error communicating with Shopify API."""

    status_code = 502

    def __init__(self, message: str, original_error: Exception = None, user_errors: list = None):
        self.original_error = original_error
        self.user_errors = user_errors or []
        super().__init__(message, "SHOPIFY_ERROR")


class AuthorizationError(ProHealthError):
    """User not authorized for this operation."""

    status_code = 403

    def __init__(self, message: str = "Not authorized for this operation", code: str = "AUTHORIZATION_ERROR"):
        super().__init__(message, code)


class EditModeLockedError(AuthorizationError):
    """Mutation attempted without an unlocked edit session."""

    def __init__(self, message: str = "Edit mode is locked"):
        super().__init__(message, "EDIT_MODE_LOCKED")


class ConfigurationError(ProHealthError):
    """Application configuration error."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message, "CONFIGURATION_ERROR")


class LockTimeoutError(ProHealthError):
    """Could not acquire a partner lock in time."""

    status_code = 409

    def __init__(self, partner_id: str):
        self.partner_id = partner_id
        super().__init__(f"Partner {partner_id} is busy, try again", "PARTNER_LOCKED")
