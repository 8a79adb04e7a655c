"""
Shared fixtures for the partner program tests.

Shopify is never called: tests patch client_for_shop (or pass a client
directly) with the MagicMock built by make_shopify_mock, which keeps
partner metaobjects in a dict so reads see earlier writes.
"""
import copy
import itertools
import pytest
from unittest.mock import MagicMock

from prohealth import create_app
from prohealth.extensions import db
from prohealth.models import Shop


SHOP_DOMAIN = 'test-shop.myshopify.com'


def metaobject_value(value):
    """Stringify a field the way Shopify stores metaobject values."""
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def partner_entry(partner_id='gid://shopify/Metaobject/1', code='PRO_DUJE', **fields):
    """A partner metaobject entry as returned by ShopifyClient.list_metaobjects."""
    values = {
        'identification': 'JEDU0001',
        'first_name': 'Jean',
        'last_name': 'Dupont',
        'name': 'Jean Dupont',
        'email': 'jean.dupont@example.com',
        'code': code,
        'montant': '10',
        'type': '%',
        'discount_id': f'gid://shopify/DiscountCodeNode/{code}',
        'customer_id': 'gid://shopify/Customer/100',
        'profession': 'Kinesitherapeute',
        'adresse': '1 rue de la Paix, Paris',
        'status': 'true',
        'cache_revenue': '0',
        'cache_orders_count': '0',
        'cache_credit_earned': '0',
    }
    values.update({k: metaobject_value(v) for k, v in fields.items() if v is not None})
    return {'id': partner_id, 'handle': code.lower(), 'updated_at': None, 'fields': values}


def make_shopify_mock(entries=None):
    """
    MagicMock ShopifyClient backed by an in-memory metaobject store.

    The store is exposed as client.store for assertions.
    """
    store = {e['id']: copy.deepcopy(e) for e in (entries or [])}
    ids = itertools.count(500)

    client = MagicMock()
    client.store = store

    def list_metaobjects(*args, **kwargs):
        return [copy.deepcopy(e) for e in store.values()]

    def get_metaobject(metaobject_id):
        entry = store.get(metaobject_id)
        return copy.deepcopy(entry) if entry else None

    def create_metaobject(fields, *args, **kwargs):
        metaobject_id = f'gid://shopify/Metaobject/{next(ids)}'
        store[metaobject_id] = {
            'id': metaobject_id,
            'handle': str(fields.get('code', '')).lower(),
            'updated_at': None,
            'fields': {k: metaobject_value(v) for k, v in fields.items() if v is not None},
        }
        return {'success': True, 'id': metaobject_id, 'handle': store[metaobject_id]['handle']}

    def update_metaobject(metaobject_id, fields):
        store[metaobject_id]['fields'].update(
            {k: metaobject_value(v) for k, v in fields.items() if v is not None}
        )
        return {'success': True, 'id': metaobject_id}

    def delete_metaobject(metaobject_id):
        store.pop(metaobject_id, None)
        return {'success': True, 'deleted_id': metaobject_id}

    def create_code_discount(title, code, value, discount_type='%'):
        return {'success': True, 'discount_id': f'gid://shopify/DiscountCodeNode/{code}', 'code': code}

    def get_discount_by_code(code):
        for entry in store.values():
            if entry['fields'].get('code', '').upper() == str(code).upper() and entry['fields'].get('discount_id'):
                return {'discount_id': entry['fields']['discount_id'], 'title': '', 'status': 'ACTIVE'}
        return None

    def create_customer(email, first_name=None, last_name=None, tags=None, accepts_marketing=True):
        return {'success': True, 'id': f'gid://shopify/Customer/{next(ids)}', 'email': email, 'tags': tags or []}

    def credit_store_credit_account(customer_id, amount, currency='EUR'):
        return {
            'success': True,
            'transaction_id': f'gid://shopify/StoreCreditAccountCreditTransaction/{next(ids)}',
            'amount': float(amount),
            'currency': currency,
            'account_id': 'gid://shopify/StoreCreditAccount/1',
            'new_balance': float(amount),
        }

    client.list_metaobjects.side_effect = list_metaobjects
    client.get_metaobject.side_effect = get_metaobject
    client.create_metaobject.side_effect = create_metaobject
    client.update_metaobject.side_effect = update_metaobject
    client.delete_metaobject.side_effect = delete_metaobject
    client.create_code_discount.side_effect = create_code_discount
    client.get_discount_by_code.side_effect = get_discount_by_code
    client.create_customer.side_effect = create_customer
    client.credit_store_credit_account.side_effect = credit_store_credit_account
    client.search_customers_by_email.return_value = []
    return client


@pytest.fixture
def app():
    """Application with a fresh in-memory database."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sample_shop(app):
    shop = Shop(
        shop_domain=SHOP_DOMAIN,
        shop_name='Test Shop',
        access_token='shpat_test_token',
        webhook_secret='test-webhook-secret',
        scopes='read_customers,write_customers',
    )
    db.session.add(shop)
    db.session.commit()
    return shop


@pytest.fixture
def auth_headers(sample_shop):
    """Dev-mode shop header (TESTING enables the header fallback)."""
    return {
        'X-Shop-Domain': sample_shop.shop_domain,
        'Content-Type': 'application/json',
    }


@pytest.fixture
def edit_headers(app, sample_shop, auth_headers):
    """Auth headers plus a valid edit-mode token."""
    from prohealth.middleware.edit_mode import issue_edit_token, EDIT_TOKEN_HEADER

    token = issue_edit_token(sample_shop)['token']
    return {**auth_headers, EDIT_TOKEN_HEADER: token}


@pytest.fixture
def shopify_mock():
    """Mock client holding one active partner, PRO_DUJE."""
    return make_shopify_mock([partner_entry()])
