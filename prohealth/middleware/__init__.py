"""
Middleware package.
"""
from .shopify_auth import require_shopify_auth
from .edit_mode import require_edit_mode
