"""
Tests for webhook signature checks and handlers.

Signatures are computed the way Shopify does: base64 HMAC-SHA256 of the
raw body with the shop's webhook secret.
"""
import json
import hmac
import hashlib
import base64
from decimal import Decimal
from unittest.mock import patch

from prohealth.extensions import db
from prohealth.models import ReconciliationRecord, ReconciliationStatus
from prohealth.webhooks import verify_shopify_webhook_signature

from conftest import SHOP_DOMAIN, make_shopify_mock, partner_entry

WEBHOOK_SECRET = 'test-webhook-secret'


def generate_hmac_signature(payload: bytes, secret: str) -> str:
    """Generate Shopify-compatible HMAC signature."""
    return base64.b64encode(
        hmac.new(secret.encode('utf-8'), payload, hashlib.sha256).digest()
    ).decode('utf-8')


def post_webhook(client, path, payload, secret=WEBHOOK_SECRET, shop_domain=SHOP_DOMAIN):
    body = json.dumps(payload).encode('utf-8')
    headers = {
        'Content-Type': 'application/json',
        'X-Shopify-Shop-Domain': shop_domain,
        'X-Shopify-Hmac-SHA256': generate_hmac_signature(body, secret),
    }
    return client.post(path, data=body, headers=headers)


SAMPLE_ORDER = {
    'id': 5678901234567,
    'name': '#1001',
    'email': 'patient@example.com',
    'currency': 'EUR',
    'total_line_items_price': '120.00',
    'subtotal_price': '108.00',
    'total_discounts': '12.00',
    'discount_codes': [{'code': 'PRO_DUJE', 'amount': '12.00', 'type': 'percentage'}],
    'discount_applications': [
        {'type': 'discount_code', 'code': 'PRO_DUJE', 'value': '10.0', 'value_type': 'percentage'},
    ],
}


class TestSignature:

    def test_valid_signature(self, app):
        body = b'{"id": 1}'
        assert verify_shopify_webhook_signature(body, generate_hmac_signature(body, 's3cret'), 's3cret')

    def test_tampered_body(self, app):
        signature = generate_hmac_signature(b'{"id": 1}', 's3cret')
        assert not verify_shopify_webhook_signature(b'{"id": 2}', signature, 's3cret')

    def test_missing_header_or_secret(self, app):
        assert not verify_shopify_webhook_signature(b'{}', '', 's3cret')
        assert not verify_shopify_webhook_signature(b'{}', 'abc', '')


class TestOrderCreated:

    def test_invalid_signature_rejected(self, client, sample_shop):
        response = post_webhook(client, '/webhook/orders/create', SAMPLE_ORDER, secret='wrong')
        assert response.status_code == 401

    def test_missing_shop_header(self, client, sample_shop):
        response = client.post('/webhook/orders/create', data=b'{}', headers={'Content-Type': 'application/json'})
        assert response.status_code == 400

    def test_unknown_shop_acknowledged(self, client, sample_shop):
        response = post_webhook(client, '/webhook/orders/create', SAMPLE_ORDER, shop_domain='nobody.myshopify.com')
        assert response.status_code == 200

    def test_order_reconciled(self, client, sample_shop):
        shopify = make_shopify_mock([partner_entry(cache_revenue='400', cache_orders_count=2)])
        with patch('prohealth.webhooks.orders.client_for_shop', return_value=shopify):
            response = post_webhook(client, '/webhook/orders/create', SAMPLE_ORDER)

        assert response.status_code == 200
        shopify.credit_store_credit_account.assert_called_once()
        fields = shopify.store['gid://shopify/Metaobject/1']['fields']
        assert Decimal(fields['cache_revenue']) == Decimal('520')
        assert Decimal(fields['cache_credit_earned']) == Decimal('10')

        record = ReconciliationRecord.query.filter_by(order_id='5678901234567').one()
        assert record.status == ReconciliationStatus.APPLIED

    def test_app_secret_used_without_shop_secret(self, client, sample_shop):
        sample_shop.webhook_secret = None
        db.session.commit()
        shopify = make_shopify_mock([partner_entry()])
        with patch('prohealth.webhooks.orders.client_for_shop', return_value=shopify):
            response = post_webhook(client, '/webhook/orders/create', SAMPLE_ORDER, secret='test-api-secret')

        assert response.status_code == 200
        shopify.update_metaobject.assert_called_once()

    def test_failure_still_acknowledged(self, client, sample_shop):
        shopify = make_shopify_mock([partner_entry()])
        shopify.list_metaobjects.side_effect = RuntimeError('boom')
        with patch('prohealth.webhooks.orders.client_for_shop', return_value=shopify):
            response = post_webhook(client, '/webhook/orders/create', SAMPLE_ORDER)

        assert response.status_code == 200

    def test_inactive_shop_ignored(self, client, sample_shop):
        sample_shop.is_active = False
        db.session.commit()
        with patch('prohealth.webhooks.orders.client_for_shop') as client_for_shop:
            response = post_webhook(client, '/webhook/orders/create', SAMPLE_ORDER)

        assert response.status_code == 200
        client_for_shop.assert_not_called()


class TestAppLifecycle:

    def test_uninstall_drops_credentials(self, client, sample_shop):
        response = post_webhook(client, '/webhook/app/uninstalled', {'id': 1, 'domain': SHOP_DOMAIN})

        assert response.status_code == 200
        assert sample_shop.is_active is False
        assert sample_shop.access_token is None
        assert sample_shop.webhook_secret is None
        assert sample_shop.uninstalled_at is not None

    def test_scopes_update(self, client, sample_shop):
        response = post_webhook(client, '/webhook/app/scopes_update', {
            'id': 1,
            'previous': ['read_customers'],
            'current': ['read_customers', 'write_customers', 'read_orders'],
        })

        assert response.status_code == 200
        assert sample_shop.scopes == 'read_customers,write_customers,read_orders'
