"""
Shopify OAuth flow for app installation.
Handles the OAuth dance for installing the partner program app on a store.
"""
import hmac
import hashlib
import logging
import secrets
from datetime import datetime
from urllib.parse import urlencode

import requests
from flask import Blueprint, request, redirect, jsonify, current_app

from ..extensions import db
from ..models import Shop
from ..services.partner_service import client_for_shop
from ..services.settings_service import settings_service
from ..utils.exceptions import ShopifyError

logger = logging.getLogger(__name__)

shopify_oauth_bp = Blueprint('shopify_oauth', __name__)

# Metaobjects, discounts, customers/metafields, store credit, orders
SCOPES = [
    'read_customers',
    'write_customers',
    'read_orders',
    'read_discounts',
    'write_discounts',
    'read_metaobjects',
    'write_metaobjects',
    'read_metaobject_definitions',
    'write_metaobject_definitions',
    'read_store_credit_accounts',
    'write_store_credit_account_transactions',
]

# (GraphQL topic, callback path)
WEBHOOK_TOPICS = [
    ('ORDERS_CREATE', '/webhook/orders/create'),
    ('APP_UNINSTALLED', '/webhook/app/uninstalled'),
    ('APP_SCOPES_UPDATE', '/webhook/app/scopes_update'),
]


def _api_secret() -> str:
    return current_app.config.get('SHOPIFY_API_SECRET', '')


def verify_hmac(query_params: dict) -> bool:
    """
    Verify the HMAC signature Shopify adds to install/callback redirects.

    Args:
        query_params: Query parameters from Shopify request

    Returns:
        True if HMAC is valid
    """
    secret = _api_secret()
    if not secret:
        return False

    received_hmac = query_params.get('hmac', '')

    params = {k: v for k, v in query_params.items() if k != 'hmac'}
    message = '&'.join(f'{k}={v}' for k, v in sorted(params.items()))

    computed_hmac = hmac.new(
        secret.encode('utf-8'),
        message.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()

    return hmac.compare_digest(computed_hmac, received_hmac)


def generate_state(shop: str) -> str:
    """Generate a state parameter that encodes the shop: nonce.hmac(nonce:shop)."""
    nonce = secrets.token_urlsafe(16)
    signature = hmac.new(
        _api_secret().encode('utf-8'),
        f'{nonce}:{shop}'.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()[:16]
    return f'{nonce}.{signature}'


def verify_state(state: str, shop: str) -> bool:
    """Verify the state parameter matches the shop."""
    try:
        nonce, signature = state.split('.', 1)
    except (ValueError, AttributeError):
        return False

    expected = hmac.new(
        _api_secret().encode('utf-8'),
        f'{nonce}:{shop}'.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()[:16]
    return hmac.compare_digest(signature, expected)


def is_valid_shop_domain(shop: str) -> bool:
    return bool(shop) and shop.endswith('.myshopify.com') and '/' not in shop


def register_webhooks(shop: Shop) -> list:
    """
    Subscribe the shop to the webhooks the app needs.

    Topics already pointing at our callback are left alone. Returns one
    entry per topic with its outcome.
    """
    app_url = current_app.config['APP_URL'].rstrip('/')
    client = client_for_shop(shop)
    existing = {
        (sub['topic'], sub['callback_url'])
        for sub in client.list_webhook_subscriptions()
    }

    results = []
    for topic, path in WEBHOOK_TOPICS:
        callback_url = f'{app_url}{path}'
        if (topic, callback_url) in existing:
            results.append({'topic': topic, 'status': 'exists'})
            continue
        try:
            client.create_webhook_subscription(topic, callback_url)
            results.append({'topic': topic, 'status': 'created'})
        except ShopifyError as e:
            logger.error(f'Failed to register {topic} for {shop.shop_domain}: {e.message}')
            results.append({'topic': topic, 'status': 'failed', 'error': e.message})
    return results


@shopify_oauth_bp.route('/install', methods=['GET'])
def install():
    """
    Start the OAuth flow when the merchant installs the app.

    Shopify redirects here with: shop, timestamp, hmac
    """
    shop = request.args.get('shop')
    if not is_valid_shop_domain(shop):
        return jsonify({'error': 'Missing or invalid shop parameter'}), 400

    if request.args.get('hmac') and not verify_hmac(dict(request.args)):
        return jsonify({'error': 'Invalid HMAC signature'}), 401

    api_key = current_app.config['SHOPIFY_API_KEY']

    existing = Shop.query.filter_by(shop_domain=shop).first()
    if existing and existing.access_token and existing.is_active:
        return redirect(f'https://{shop}/admin/apps/{api_key}')

    oauth_params = {
        'client_id': api_key,
        'scope': ','.join(SCOPES),
        'redirect_uri': f"{current_app.config['APP_URL'].rstrip('/')}/api/shopify/callback",
        'state': generate_state(shop),
    }
    return redirect(f'https://{shop}/admin/oauth/authorize?{urlencode(oauth_params)}')


@shopify_oauth_bp.route('/callback', methods=['GET'])
def callback():
    """
    Handle OAuth callback from Shopify after merchant approves.

    Shopify redirects here with: code, hmac, shop, state, timestamp
    """
    shop_domain = request.args.get('shop')
    code = request.args.get('code')
    state = request.args.get('state')

    if not all([shop_domain, code, state]) or not is_valid_shop_domain(shop_domain):
        return jsonify({'error': 'Missing required parameters'}), 400

    if not verify_hmac(dict(request.args)):
        return jsonify({'error': 'Invalid HMAC signature'}), 401

    if not verify_state(state, shop_domain):
        return jsonify({'error': 'Invalid state parameter'}), 401

    try:
        token_response = requests.post(
            f'https://{shop_domain}/admin/oauth/access_token',
            json={
                'client_id': current_app.config['SHOPIFY_API_KEY'],
                'client_secret': _api_secret(),
                'code': code,
            },
            timeout=30,
        )
    except requests.RequestException as e:
        logger.error(f'Token exchange failed for {shop_domain}: {e}')
        return jsonify({'error': 'Failed to get access token'}), 502

    if not token_response.ok:
        logger.error(f'Token exchange rejected for {shop_domain}: {token_response.status_code}')
        return jsonify({'error': 'Failed to get access token'}), 502

    token_data = token_response.json()
    access_token = token_data.get('access_token')
    if not access_token:
        return jsonify({'error': 'No access token returned'}), 502

    shop = Shop.query.filter_by(shop_domain=shop_domain).first()
    if not shop:
        shop = Shop(shop_domain=shop_domain, shop_name=shop_domain.replace('.myshopify.com', ''))
        db.session.add(shop)

    shop.access_token = access_token
    shop.scopes = token_data.get('scope', '')
    shop.is_active = True
    shop.installed_at = datetime.utcnow()
    shop.uninstalled_at = None
    db.session.commit()
    logger.info(f'App installed on {shop_domain}')

    try:
        register_webhooks(shop)
    except ShopifyError as e:
        # Installation stands; `flask partners register-webhooks` can retry
        logger.error(f'Webhook registration failed for {shop_domain}: {e.message}')

    try:
        settings_service.seed_currency(shop, client_for_shop(shop).get_shop_currency())
    except ShopifyError as e:
        logger.warning(f'Could not read currency for {shop_domain}: {e.message}')

    return redirect(f"https://{shop_domain}/admin/apps/{current_app.config['SHOPIFY_API_KEY']}")


@shopify_oauth_bp.route('/verify', methods=['GET'])
def verify_installation():
    """
    Verify the app is properly installed for a shop.
    Used by the embedded app to check installation status.
    """
    shop_domain = request.args.get('shop')
    if not shop_domain:
        return jsonify({'error': 'Missing shop parameter'}), 400

    shop = Shop.query.filter_by(shop_domain=shop_domain).first()
    if not shop or not shop.access_token:
        return jsonify({
            'installed': False,
            'message': 'App not installed'
        })

    return jsonify({
        'installed': True,
        'active': shop.is_active,
        'scopes': shop.to_dict()['scopes'],
    })
