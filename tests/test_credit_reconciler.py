"""
Tests for the revenue / store-credit reconciler.

Covers:
- The step function floor(revenue / threshold) * credit_amount
- Only the delta over credit already paid is deposited
- Case-insensitive code matching
- Failed deposits leave counters untouched
- Webhook redeliveries are ignored
- A deposit whose counter update failed is not repeated on retry
- Orders stuck behind a busy partner lock are queued for retry
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from prohealth.extensions import db
from prohealth.models import PartnerLock, ReconciliationRecord, ReconciliationStatus
from prohealth.services.credit_reconciler import (
    CreditReconciler,
    compute_reconciliation,
    extract_applied_codes,
    extract_order_amount,
    tier_credit,
)
from prohealth.utils.exceptions import ConfigurationError, ShopifyError

from conftest import make_shopify_mock, partner_entry

PARTNER_ID = 'gid://shopify/Metaobject/1'


def make_order(order_id=1001, amount='100.00', code='PRO_DUJE', **extra):
    order = {
        'id': order_id,
        'name': f'#{order_id}',
        'total_line_items_price': amount,
        'subtotal_price': amount,
        'total_discounts': '0.00',
        'discount_codes': [{'code': code, 'amount': '10.00', 'type': 'percentage'}] if code else [],
    }
    order.update(extra)
    return order


def stored(client, key):
    return Decimal(client.store[PARTNER_ID]['fields'][key])


class TestStepFunction:

    def test_tier_credit_floors_revenue_steps(self):
        assert tier_credit(Decimal('499.99'), 500, 10) == Decimal('0')
        assert tier_credit(Decimal('500'), 500, 10) == Decimal('10')
        assert tier_credit(Decimal('1499'), 500, 10) == Decimal('20')

    def test_tier_credit_rejects_non_positive_threshold(self):
        with pytest.raises(ConfigurationError):
            tier_credit(100, 0, 10)

    def test_crossing_one_step_deposits_credit_amount(self):
        plan = compute_reconciliation(Decimal('450'), 3, Decimal('0'), Decimal('100'), 500, 10)
        assert plan.new_revenue == Decimal('550')
        assert plan.new_count == 4
        assert plan.delta == Decimal('10')
        assert plan.credit_after == Decimal('10')

    def test_crossing_two_steps_in_one_order(self):
        plan = compute_reconciliation(Decimal('0'), 0, Decimal('0'), Decimal('1050'), 500, 10)
        assert plan.delta == Decimal('20')

    def test_only_delta_is_deposited(self):
        plan = compute_reconciliation(Decimal('550'), 4, Decimal('10'), Decimal('460'), 500, 10)
        assert plan.new_revenue == Decimal('1010')
        assert plan.tier_credit == Decimal('20')
        assert plan.delta == Decimal('10')

    def test_no_deposit_within_a_step(self):
        plan = compute_reconciliation(Decimal('510'), 1, Decimal('10'), Decimal('50'), 500, 10)
        assert not plan.should_deposit
        assert plan.credit_after == Decimal('10')

    def test_credit_never_decreases(self):
        # Threshold raised after credit was paid out
        plan = compute_reconciliation(Decimal('600'), 1, Decimal('10'), Decimal('10'), 1000, 10)
        assert plan.delta == Decimal('0')
        assert plan.credit_after == Decimal('10')


class TestOrderPayload:

    def test_amount_is_pre_discount(self):
        order = {'total_line_items_price': '120.00', 'subtotal_price': '108.00', 'total_discounts': '12.00'}
        assert extract_order_amount(order) == Decimal('120.00')

    def test_amount_falls_back_to_subtotal_plus_discounts(self):
        order = {'subtotal_price': '108.00', 'total_discounts': '12.00'}
        assert extract_order_amount(order) == Decimal('120.00')

    def test_codes_are_normalized_and_deduplicated(self):
        order = {
            'discount_codes': [{'code': ' pro_duje '}],
            'discount_applications': [
                {'type': 'discount_code', 'code': 'PRO_DUJE'},
                {'type': 'automatic', 'title': 'Summer'},
                {'type': 'discount_code', 'code': 'welcome10'},
            ],
        }
        assert extract_applied_codes(order) == ['PRO_DUJE', 'WELCOME10']


class TestReconcileOrder:

    def test_deposit_when_crossing_threshold(self, app, sample_shop):
        client = make_shopify_mock([partner_entry(cache_revenue='450', cache_orders_count=3)])
        result = CreditReconciler(sample_shop, client).reconcile_order(make_order(amount='100.00'))

        assert result.status == ReconciliationStatus.APPLIED
        assert result.deposited == Decimal('10')
        client.credit_store_credit_account.assert_called_once()
        args = client.credit_store_credit_account.call_args[0]
        assert args[0] == 'gid://shopify/Customer/100'
        assert args[1] == Decimal('10')
        assert args[2] == 'EUR'

        assert stored(client, 'cache_revenue') == Decimal('550')
        assert stored(client, 'cache_orders_count') == Decimal('4')
        assert stored(client, 'cache_credit_earned') == Decimal('10')

        record = ReconciliationRecord.query.filter_by(order_id='1001').one()
        assert record.status == ReconciliationStatus.APPLIED
        assert record.deposited == Decimal('10')

    def test_code_matching_is_case_insensitive(self, app, sample_shop):
        client = make_shopify_mock([partner_entry(code='PRO_DUJE')])
        result = CreditReconciler(sample_shop, client).reconcile_order(make_order(code='pro_duje'))

        assert result.partner_id == PARTNER_ID
        assert result.status == ReconciliationStatus.NO_DEPOSIT
        assert stored(client, 'cache_revenue') == Decimal('100')

    def test_below_threshold_only_updates_counters(self, app, sample_shop):
        client = make_shopify_mock([partner_entry()])
        result = CreditReconciler(sample_shop, client).reconcile_order(make_order(amount='80.00'))

        assert result.status == ReconciliationStatus.NO_DEPOSIT
        client.credit_store_credit_account.assert_not_called()
        assert stored(client, 'cache_orders_count') == Decimal('1')

    def test_order_without_code_is_ignored(self, app, sample_shop):
        client = make_shopify_mock([partner_entry()])
        result = CreditReconciler(sample_shop, client).reconcile_order(make_order(code=None))

        assert result.status == 'no_code'
        assert ReconciliationRecord.query.count() == 0

    def test_unknown_code_records_no_partner(self, app, sample_shop):
        client = make_shopify_mock([partner_entry()])
        result = CreditReconciler(sample_shop, client).reconcile_order(make_order(code='SUMMER10'))

        assert result.status == ReconciliationStatus.NO_PARTNER
        client.update_metaobject.assert_not_called()
        record = ReconciliationRecord.query.filter_by(order_id='1001').one()
        assert record.code == 'SUMMER10'

    def test_inactive_partner_is_not_credited(self, app, sample_shop):
        client = make_shopify_mock([partner_entry(status=False, cache_revenue='490')])
        result = CreditReconciler(sample_shop, client).reconcile_order(make_order(amount='100.00'))

        assert result.status == ReconciliationStatus.NO_PARTNER
        client.credit_store_credit_account.assert_not_called()

    def test_failed_deposit_leaves_counters_untouched(self, app, sample_shop):
        client = make_shopify_mock([partner_entry(cache_revenue='450', cache_orders_count=3)])
        client.credit_store_credit_account.side_effect = ShopifyError('Store credit unavailable')

        result = CreditReconciler(sample_shop, client).reconcile_order(make_order(amount='100.00'))

        assert result.status == ReconciliationStatus.DEPOSIT_FAILED
        assert 'Store credit unavailable' in result.error
        client.update_metaobject.assert_not_called()
        assert stored(client, 'cache_revenue') == Decimal('450')
        assert stored(client, 'cache_orders_count') == Decimal('3')

        record = ReconciliationRecord.query.filter_by(order_id='1001').one()
        assert record.status == ReconciliationStatus.DEPOSIT_FAILED

    def test_redelivered_webhook_is_ignored(self, app, sample_shop):
        client = make_shopify_mock([partner_entry(cache_revenue='450')])
        reconciler = CreditReconciler(sample_shop, client)

        first = reconciler.reconcile_order(make_order(amount='100.00'))
        second = reconciler.reconcile_order(make_order(amount='100.00'))

        assert first.status == ReconciliationStatus.APPLIED
        assert second.status == 'duplicate'
        assert client.credit_store_credit_account.call_count == 1
        assert stored(client, 'cache_revenue') == Decimal('550')

    def test_retry_after_counter_failure_does_not_deposit_twice(self, app, sample_shop):
        client = make_shopify_mock([partner_entry(cache_revenue='450', cache_orders_count=3)])
        write_counters = client.update_metaobject.side_effect
        calls = {'count': 0}

        def flaky_update(metaobject_id, fields):
            calls['count'] += 1
            if calls['count'] == 1:
                raise ShopifyError('Throttled')
            return write_counters(metaobject_id, fields)

        client.update_metaobject.side_effect = flaky_update
        reconciler = CreditReconciler(sample_shop, client)

        first = reconciler.reconcile_order(make_order(amount='100.00'))
        assert first.status == ReconciliationStatus.COUNTERS_PENDING
        assert stored(client, 'cache_revenue') == Decimal('450')

        results = reconciler.retry_failed()

        assert [r.status for r in results] == [ReconciliationStatus.APPLIED]
        assert client.credit_store_credit_account.call_count == 1
        assert stored(client, 'cache_revenue') == Decimal('550')
        assert stored(client, 'cache_credit_earned') == Decimal('10')

        record = ReconciliationRecord.query.filter_by(order_id='1001').one()
        assert record.deposited == Decimal('10')
        assert record.attempts == 2

    def test_retry_of_failed_deposit(self, app, sample_shop):
        client = make_shopify_mock([partner_entry(cache_revenue='450')])
        deposit = client.credit_store_credit_account.side_effect
        client.credit_store_credit_account.side_effect = ShopifyError('Timeout')
        reconciler = CreditReconciler(sample_shop, client)

        reconciler.reconcile_order(make_order(amount='100.00'))
        client.credit_store_credit_account.side_effect = deposit
        results = reconciler.retry_failed()

        assert results[0].status == ReconciliationStatus.APPLIED
        assert results[0].deposited == Decimal('10')
        assert stored(client, 'cache_revenue') == Decimal('550')

    def test_partner_without_customer_linked_by_email(self, app, sample_shop):
        client = make_shopify_mock([partner_entry(customer_id='', cache_revenue='450')])
        client.search_customers_by_email.return_value = [
            {'id': 'gid://shopify/Customer/777', 'email': 'jean.dupont@example.com', 'tags': []}
        ]

        result = CreditReconciler(sample_shop, client).reconcile_order(make_order(amount='100.00'))

        assert result.status == ReconciliationStatus.APPLIED
        assert client.credit_store_credit_account.call_args[0][0] == 'gid://shopify/Customer/777'
        assert client.store[PARTNER_ID]['fields']['customer_id'] == 'gid://shopify/Customer/777'

    def test_partner_without_customer_and_no_match_fails(self, app, sample_shop):
        client = make_shopify_mock([partner_entry(customer_id='', cache_revenue='450')])

        result = CreditReconciler(sample_shop, client).reconcile_order(make_order(amount='100.00'))

        assert result.status == ReconciliationStatus.DEPOSIT_FAILED
        client.credit_store_credit_account.assert_not_called()
        assert stored(client, 'cache_revenue') == Decimal('450')

    def test_shop_settings_change_the_step(self, app, sample_shop):
        sample_shop.settings = {'credit_program': {'threshold': 100, 'credit_amount': 5}}
        db.session.commit()
        client = make_shopify_mock([partner_entry()])

        result = CreditReconciler(sample_shop, client).reconcile_order(make_order(amount='250.00'))

        assert result.deposited == Decimal('10')


class TestRecovery:

    def hold_lock(self, shop):
        lease = PartnerLock(
            shop_id=shop.id,
            partner_id=PARTNER_ID,
            owner='other-worker',
            locked_until=datetime.utcnow() + timedelta(seconds=60),
        )
        db.session.add(lease)
        db.session.commit()
        return lease

    def test_lock_timeout_queues_order(self, app, sample_shop):
        app.config['PARTNER_LOCK_WAIT'] = 0
        self.hold_lock(sample_shop)
        client = make_shopify_mock([partner_entry(cache_revenue='450')])

        result = CreditReconciler(sample_shop, client).reconcile_order(make_order(order_id=777, amount='600.00'))

        assert result.status == ReconciliationStatus.QUEUED
        assert 'busy' in result.error
        client.credit_store_credit_account.assert_not_called()
        client.update_metaobject.assert_not_called()

        record = ReconciliationRecord.query.filter_by(order_id='777').one()
        assert record.status == ReconciliationStatus.QUEUED
        assert record.partner_id == PARTNER_ID
        assert record.code == 'PRO_DUJE'
        assert record.order_amount == Decimal('600.00')

    def test_queued_order_is_applied_on_retry(self, app, sample_shop):
        app.config['PARTNER_LOCK_WAIT'] = 0
        lease = self.hold_lock(sample_shop)
        client = make_shopify_mock([partner_entry(cache_revenue='450', cache_orders_count=3)])
        reconciler = CreditReconciler(sample_shop, client)
        reconciler.reconcile_order(make_order(order_id=777, amount='600.00'))

        lease.locked_until = datetime.utcnow() - timedelta(seconds=1)
        db.session.commit()
        results = reconciler.retry_failed()

        assert [r.status for r in results] == [ReconciliationStatus.APPLIED]
        assert results[0].deposited == Decimal('20')
        assert stored(client, 'cache_revenue') == Decimal('1050')
        assert stored(client, 'cache_orders_count') == Decimal('4')
        assert ReconciliationRecord.query.filter_by(order_id='777').one().attempts == 1

    def test_redelivery_while_queued_is_not_counted_twice(self, app, sample_shop):
        app.config['PARTNER_LOCK_WAIT'] = 0
        lease = self.hold_lock(sample_shop)
        client = make_shopify_mock([partner_entry()])
        reconciler = CreditReconciler(sample_shop, client)
        reconciler.reconcile_order(make_order(order_id=777, amount='100.00'))

        lease.locked_until = None
        db.session.commit()
        reconciler.reconcile_order(make_order(order_id=777, amount='100.00'))
        again = reconciler.reconcile_order(make_order(order_id=777, amount='100.00'))

        assert again.status == 'duplicate'
        assert stored(client, 'cache_orders_count') == Decimal('1')
        assert ReconciliationRecord.query.filter_by(order_id='777').count() == 1

    def test_partner_deleted_before_locked_read(self, app, sample_shop):
        client = make_shopify_mock([partner_entry(cache_revenue='450')])
        client.get_metaobject.side_effect = lambda metaobject_id: None
        reconciler = CreditReconciler(sample_shop, client)

        result = reconciler.reconcile_order(make_order(amount='100.00'))

        assert result.status == ReconciliationStatus.NO_PARTNER
        assert result.partner_id == PARTNER_ID
        client.credit_store_credit_account.assert_not_called()
        client.update_metaobject.assert_not_called()

        record = ReconciliationRecord.query.filter_by(order_id='1001').one()
        assert record.status == ReconciliationStatus.NO_PARTNER
        assert record.error == 'Partner no longer exists'
        assert reconciler.retry_failed() == []
        assert reconciler.reconcile_order(make_order(amount='100.00')).status == 'duplicate'
