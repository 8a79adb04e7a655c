"""
Utility modules for the partner program.
"""
from .logging_config import setup_logging
from .errors import (
    ErrorCode,
    error_response,
    bad_request,
    unauthorized,
    forbidden,
    not_found,
)
from .exceptions import (
    ProHealthError,
    NotFoundError,
    PartnerNotFoundError,
    SignupNotFoundError,
    ValidationError,
    DuplicateError,
    ShopifyError,
    AuthorizationError,
    EditModeLockedError,
    ConfigurationError,
    LockTimeoutError
)
