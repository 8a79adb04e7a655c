"""
Webhook handlers for the partner program.
Processes Shopify webhooks for orders and app lifecycle.
"""
import hmac
import hashlib
import base64
from functools import wraps
from flask import request, jsonify, current_app, g
from ..models import Shop


def verify_shopify_webhook_signature(data: bytes, hmac_header: str, secret: str) -> bool:
    """
    Verify Shopify webhook HMAC-SHA256 signature.

    Args:
        data: Raw request body bytes
        hmac_header: The X-Shopify-Hmac-SHA256 header value
        secret: The shop webhook secret, or the app API secret

    Returns:
        True if signature is valid, False otherwise
    """
    if not secret:
        current_app.logger.warning('No webhook secret configured for verification')
        return False

    if not hmac_header:
        current_app.logger.warning('No HMAC header in webhook request')
        return False

    computed_hmac = base64.b64encode(
        hmac.new(secret.encode('utf-8'), data, hashlib.sha256).digest()
    ).decode('utf-8')

    return hmac.compare_digest(computed_hmac, hmac_header)


def get_shop_from_webhook_headers():
    shop_domain = request.headers.get('X-Shopify-Shop-Domain', '')
    if not shop_domain:
        return None
    return Shop.query.filter_by(shop_domain=shop_domain).first()


def require_webhook_verification(f):
    """
    Decorator to require Shopify webhook signature verification.

    Looks up the shop from X-Shopify-Shop-Domain and checks the body
    signature against the shop's webhook secret (falling back to the app
    secret). Webhooks for shops we do not know are acknowledged with 200
    so Shopify stops retrying them.

    Usage:
        @orders_bp.route('/orders/create', methods=['POST'])
        @require_webhook_verification
        def handle_order_created():
            shop = g.webhook_shop
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        shop_domain = request.headers.get('X-Shopify-Shop-Domain', '')
        if not shop_domain:
            current_app.logger.warning('Webhook missing X-Shopify-Shop-Domain header')
            return jsonify({'error': 'Missing shop domain header'}), 400

        shop = Shop.query.filter_by(shop_domain=shop_domain).first()
        if not shop:
            current_app.logger.warning(f'Webhook from unknown shop: {shop_domain}')
            return '', 200

        hmac_header = request.headers.get('X-Shopify-Hmac-SHA256', '')
        secret = shop.webhook_secret or current_app.config.get('SHOPIFY_API_SECRET')
        if not verify_shopify_webhook_signature(request.get_data(), hmac_header, secret):
            current_app.logger.warning(f'Invalid webhook signature from {shop_domain}')
            return jsonify({'error': 'Invalid signature'}), 401

        g.webhook_shop = shop
        return f(*args, **kwargs)

    return decorated_function


from .orders import orders_bp
from .app_lifecycle import app_lifecycle_bp

__all__ = [
    'orders_bp',
    'app_lifecycle_bp',
    'verify_shopify_webhook_signature',
    'require_webhook_verification',
    'get_shop_from_webhook_headers',
]
