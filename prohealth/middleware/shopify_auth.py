"""
Shopify Session Token Authentication Middleware.

Verifies Shopify session tokens (JWT) from the embedded admin to
authenticate requests. In development and tests, the shop query param or
X-Shop-Domain header is accepted instead.

Session tokens are issued by Shopify App Bridge and contain:
- iss: Shop domain (https://shop.myshopify.com/admin)
- dest: Shop domain
- aud: API key
- sub: Staff member GID
- exp: Expiration time
"""
import os
import logging
import jwt
from functools import wraps
from flask import request, g, current_app
from ..models import Shop
from ..utils.errors import unauthorized, not_found, forbidden, ErrorCode

logger = logging.getLogger(__name__)


def is_dev_mode() -> bool:
    """Relaxed auth for local development and tests."""
    return bool(
        current_app.config.get('DEBUG')
        or current_app.config.get('TESTING')
        or os.getenv('SHOPIFY_AUTH_DEV_MODE') == 'true'
    )


def decode_session_token(token: str) -> dict | None:
    """
    Decode and verify a Shopify session token.

    Returns:
        Decoded token payload or None if invalid
    """
    if not token:
        return None

    api_key = current_app.config.get('SHOPIFY_API_KEY')
    try:
        return jwt.decode(
            token,
            current_app.config.get('SHOPIFY_API_SECRET'),
            algorithms=['HS256'],
            audience=api_key,
            options={
                'verify_aud': bool(api_key),
                'verify_exp': True,
            }
        )
    except jwt.ExpiredSignatureError:
        logger.info('Session token expired')
        return None
    except jwt.InvalidAudienceError:
        logger.warning('Invalid session token audience')
        return None
    except jwt.InvalidTokenError as e:
        logger.warning(f'Invalid session token: {e}')
        return None


def get_shop_from_token(payload: dict) -> str | None:
    """
    Extract shop domain from session token payload.

    dest holds https://shop.myshopify.com, iss the same with /admin.
    """
    for claim in ('dest', 'iss'):
        value = payload.get(claim, '')
        if value:
            value = value.replace('https://', '').replace('http://', '')
            return value.split('/')[0]
    return None


def get_staff_id_from_token(payload: dict) -> str | None:
    """Staff member GID (sub claim)."""
    return payload.get('sub')


def require_shopify_auth(f):
    """
    Decorator to require Shopify authentication.

    Sets g.shop (Shop row), g.shop_domain, g.staff_id and g.auth_method.

    Usage:
        @require_shopify_auth
        def my_endpoint():
            shop = g.shop
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        shop_domain = None
        staff_id = None
        authenticated_via = None

        auth_header = request.headers.get('Authorization', '')
        if auth_header.startswith('Bearer '):
            payload = decode_session_token(auth_header.split(' ', 1)[1])
            if payload:
                shop_domain = get_shop_from_token(payload)
                staff_id = get_staff_id_from_token(payload)
                authenticated_via = 'session_token'

        if not shop_domain and is_dev_mode():
            shop_domain = request.args.get('shop') or request.headers.get('X-Shop-Domain')
            if shop_domain:
                authenticated_via = 'dev_shop_param'

        if not shop_domain:
            return unauthorized('Missing or invalid session token')

        shop = Shop.query.filter_by(shop_domain=shop_domain).first()
        if not shop:
            return not_found('This shop has not installed the app', ErrorCode.SHOP_NOT_FOUND)

        if not shop.is_active:
            return forbidden("This shop's access has been disabled")

        if not shop.access_token:
            return forbidden('Please reinstall the app from the Shopify admin')

        g.shop = shop
        g.shop_domain = shop_domain
        g.staff_id = staff_id
        g.auth_method = authenticated_via

        return f(*args, **kwargs)

    return decorated_function
