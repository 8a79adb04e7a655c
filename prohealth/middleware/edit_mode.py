"""
Edit-mode gate.

Mutating admin endpoints require an edit token obtained by unlocking with
the admin password. The token is a short-lived HS256 JWT bound to the
shop and to the shop's edit_token_version; locking bumps the version,
which revokes every token issued before.

The client sends it back in the X-Edit-Token header.
"""
import hmac
import logging
from datetime import datetime, timedelta
from functools import wraps

import jwt
from flask import request, g, current_app

from ..extensions import db
from ..utils.exceptions import EditModeLockedError, AuthorizationError, ConfigurationError

logger = logging.getLogger(__name__)

EDIT_TOKEN_HEADER = 'X-Edit-Token'
EDIT_TOKEN_AUDIENCE = 'prohealth-edit-mode'


def check_admin_password(password: str) -> bool:
    """Timing-safe comparison with ADMIN_PASSWORD."""
    expected = current_app.config.get('ADMIN_PASSWORD')
    if not expected:
        raise ConfigurationError('ADMIN_PASSWORD is not configured')
    return hmac.compare_digest((password or '').encode('utf-8'), expected.encode('utf-8'))


def issue_edit_token(shop, staff_id: str = None) -> dict:
    """Sign an edit token for the shop's current token version."""
    ttl = current_app.config.get('EDIT_TOKEN_TTL_MINUTES', 30)
    expires_at = datetime.utcnow() + timedelta(minutes=ttl)
    payload = {
        'shop': shop.shop_domain,
        'ver': shop.edit_token_version,
        'aud': EDIT_TOKEN_AUDIENCE,
        'exp': expires_at,
    }
    if staff_id:
        payload['sub'] = staff_id
    token = jwt.encode(payload, current_app.config['SECRET_KEY'], algorithm='HS256')
    return {'token': token, 'expires_at': expires_at.isoformat() + 'Z'}


def verify_edit_token(token: str, shop) -> bool:
    """True when the token is valid, unexpired and not revoked for this shop."""
    if not token:
        return False
    try:
        payload = jwt.decode(
            token,
            current_app.config['SECRET_KEY'],
            algorithms=['HS256'],
            audience=EDIT_TOKEN_AUDIENCE,
        )
    except jwt.InvalidTokenError as e:
        logger.info(f'Rejected edit token for {shop.shop_domain}: {e}')
        return False

    return payload.get('shop') == shop.shop_domain and payload.get('ver') == shop.edit_token_version


def revoke_edit_tokens(shop) -> None:
    """Lock edit mode for everyone on this shop."""
    shop.edit_token_version = (shop.edit_token_version or 1) + 1
    db.session.commit()
    logger.info(f'Edit mode locked for {shop.shop_domain} (version {shop.edit_token_version})')


def require_edit_mode(f):
    """
    Decorator for mutating endpoints. Must be used after @require_shopify_auth.

    Raises:
        EditModeLockedError: no valid edit token on the request
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        shop = getattr(g, 'shop', None)
        if shop is None:
            raise AuthorizationError('Shop authentication required before edit mode')

        if not verify_edit_token(request.headers.get(EDIT_TOKEN_HEADER), shop):
            raise EditModeLockedError('Unlock edit mode to make changes')

        return f(*args, **kwargs)

    return decorated_function
