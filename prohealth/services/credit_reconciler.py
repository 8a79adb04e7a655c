"""
Revenue / Credit Reconciler.

For each order placed with a partner's code:

1. The pre-discount order amount is added to the partner's cumulative revenue.
2. The credit owed is recomputed with the step function
   floor(revenue / threshold) * credit_amount.
3. Only the positive difference with what was already paid is deposited
   into the partner's Shopify store-credit account.

Counters on the metaobject advance only once the deposit is done. A
failed deposit leaves them untouched and is kept in the ledger for
`flask partners retry-deposits`, as is an order that timed out waiting on
the partner lock. Every order gets one ledger row, which makes webhook
redeliveries no-ops.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR, ROUND_HALF_UP
from typing import Optional, List, Dict, Any

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models.reconciliation import ReconciliationRecord, ReconciliationStatus
from ..utils.exceptions import (
    ConfigurationError,
    LockTimeoutError,
    PartnerNotFoundError,
    ProHealthError,
    ShopifyError,
    ValidationError,
)
from .partner_lock import partner_lock
from .partner_service import PartnerService, Partner, parse_decimal
from .promo_codes import normalize_code
from .settings_service import settings_service

logger = logging.getLogger(__name__)

CENTS = Decimal('0.01')

COUNTERS_PENDING = ReconciliationStatus.COUNTERS_PENDING


def tier_credit(revenue, threshold, credit_amount) -> Decimal:
    """
    Credit owed for a cumulative revenue.

    Raises:
        ConfigurationError: threshold is not positive
    """
    revenue = Decimal(str(revenue))
    threshold = Decimal(str(threshold))
    credit_amount = Decimal(str(credit_amount))
    if threshold <= 0:
        raise ConfigurationError('Credit threshold must be greater than 0')
    if revenue <= 0:
        return Decimal('0')
    steps = (revenue / threshold).to_integral_value(rounding=ROUND_FLOOR)
    return steps * credit_amount


@dataclass
class ReconciliationPlan:
    """Counters and deposit for one order."""
    revenue_before: Decimal
    new_revenue: Decimal
    new_count: int
    credit_paid: Decimal
    tier_credit: Decimal
    delta: Decimal

    @property
    def should_deposit(self) -> bool:
        return self.delta > 0

    @property
    def credit_after(self) -> Decimal:
        # Credit is never clawed back
        return max(self.tier_credit, self.credit_paid)


def compute_reconciliation(revenue, orders_count, credit_paid, order_amount,
                           threshold, credit_amount) -> ReconciliationPlan:
    """Pure step: current counters + one order -> new counters and deposit."""
    revenue = Decimal(str(revenue or 0))
    credit_paid = Decimal(str(credit_paid or 0))
    order_amount = Decimal(str(order_amount or 0))

    new_revenue = (revenue + order_amount).quantize(CENTS, rounding=ROUND_HALF_UP)
    owed = tier_credit(new_revenue, threshold, credit_amount)
    delta = owed - credit_paid
    if delta < 0:
        delta = Decimal('0')

    return ReconciliationPlan(
        revenue_before=revenue,
        new_revenue=new_revenue,
        new_count=int(orders_count or 0) + 1,
        credit_paid=credit_paid,
        tier_credit=owed,
        delta=delta,
    )


def extract_order_amount(order: Dict[str, Any]) -> Decimal:
    """
    Pre-discount subtotal of an orders/create payload.

    total_line_items_price is the line total before discounts. Older
    payloads without it fall back to subtotal + discounts, then total.
    """
    if order.get('total_line_items_price') not in (None, ''):
        amount = parse_decimal(order['total_line_items_price'])
    elif order.get('subtotal_price') not in (None, ''):
        amount = parse_decimal(order['subtotal_price']) + parse_decimal(order.get('total_discounts'))
    else:
        amount = parse_decimal(order.get('total_price'))
    return max(amount, Decimal('0')).quantize(CENTS, rounding=ROUND_HALF_UP)


def extract_applied_codes(order: Dict[str, Any]) -> List[str]:
    """Normalized discount codes on the order, first-applied first."""
    codes = []
    for discount in order.get('discount_codes') or []:
        codes.append(normalize_code(discount.get('code')))
    for application in order.get('discount_applications') or []:
        if application.get('type') == 'discount_code':
            codes.append(normalize_code(application.get('code')))

    seen = set()
    unique = []
    for code in codes:
        if code and code not in seen:
            seen.add(code)
            unique.append(code)
    return unique


@dataclass
class ReconciliationResult:
    """What happened to one order."""
    status: str
    order_id: str
    partner_id: Optional[str] = None
    code: Optional[str] = None
    order_amount: Decimal = Decimal('0')
    deposited: Decimal = Decimal('0')
    revenue: Optional[Decimal] = None
    credit_earned: Optional[Decimal] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status,
            'order_id': self.order_id,
            'partner_id': self.partner_id,
            'code': self.code,
            'order_amount': float(self.order_amount),
            'deposited': float(self.deposited),
            'revenue': float(self.revenue) if self.revenue is not None else None,
            'credit_earned': float(self.credit_earned) if self.credit_earned is not None else None,
            'error': self.error,
        }


class CreditReconciler:
    """
    Applies orders to partner counters and deposits store credit.

    Usage:
        reconciler = CreditReconciler(shop, client_for_shop(shop))
        result = reconciler.reconcile_order(order_payload)
    """

    def __init__(self, shop, client):
        self.shop = shop
        self.client = client
        self.partners = PartnerService(client)

    def _get_record(self, order_id: str) -> Optional[ReconciliationRecord]:
        return ReconciliationRecord.query.filter_by(shop_id=self.shop.id, order_id=order_id).first()

    def reconcile_order(self, order: Dict[str, Any]) -> ReconciliationResult:
        """
        Reconcile one orders/create payload.

        Returns a result with status no_code, duplicate, no_partner,
        applied, no_deposit, deposit_failed, counters_pending or queued.
        """
        order_id = str(order.get('id') or '').strip()
        if not order_id:
            raise ValidationError('Order payload has no id', 'id')

        codes = extract_applied_codes(order)
        if not codes:
            return ReconciliationResult(status='no_code', order_id=order_id)

        record = self._get_record(order_id)
        if record and record.is_terminal:
            logger.info(f'Order {order_id} already reconciled ({record.status}), skipping')
            return ReconciliationResult(status='duplicate', order_id=order_id,
                                        partner_id=record.partner_id, code=record.code)

        amount = extract_order_amount(order)
        all_partners = self.partners.list_partners()

        partner = None
        for code in codes:
            partner = self.partners.find_partner_by_code(code, active_only=True, partners=all_partners)
            if partner:
                break

        if not partner:
            logger.info(f'Order {order_id}: codes {codes} match no active partner')
            record = record or ReconciliationRecord(shop_id=self.shop.id, order_id=order_id)
            record.order_name = order.get('name')
            record.code = codes[0]
            record.order_amount = amount
            record.status = ReconciliationStatus.NO_PARTNER
            db.session.add(record)
            db.session.commit()
            return ReconciliationResult(status=ReconciliationStatus.NO_PARTNER, order_id=order_id,
                                        code=codes[0], order_amount=amount)

        if record is None:
            self._queue(order_id, order.get('name'), partner, amount)

        try:
            return self._apply(partner.id, order_id, partner.normalized_code, amount, order.get('name'))
        except LockTimeoutError as e:
            return self._defer(order_id, e.message)

    def _queue(self, order_id: str, order_name: Optional[str], partner: Partner, amount: Decimal) -> None:
        """Persist the order before waiting on the partner lock."""
        db.session.add(ReconciliationRecord(
            shop_id=self.shop.id,
            order_id=order_id,
            order_name=order_name,
            partner_id=partner.id,
            code=partner.normalized_code,
            order_amount=amount,
            status=ReconciliationStatus.QUEUED,
            attempts=0,
        ))
        try:
            db.session.commit()
        except IntegrityError:
            # Same order delivered twice at once; the other row wins
            db.session.rollback()

    def _defer(self, order_id: str, error: str) -> ReconciliationResult:
        record = self._get_record(order_id)
        record.error = error
        db.session.commit()
        logger.warning(f'Order {order_id} left as {record.status} for retry-deposits: {error}')
        return ReconciliationResult(
            status=record.status, order_id=order_id, partner_id=record.partner_id,
            code=record.code, order_amount=parse_decimal(record.order_amount), error=error,
        )

    def _resolve_customer(self, partner: Partner) -> Optional[str]:
        if partner.customer_id:
            return partner.customer_id
        customer_id = self.partners.find_customer_by_email(partner.email)
        if customer_id:
            logger.warning(f'Partner {partner.code} had no customer_id, linked by email to {customer_id}')
        return customer_id

    def _apply(self, partner_id: str, order_id: str, code: str, amount: Decimal,
               order_name: str = None) -> ReconciliationResult:
        program = settings_service.get_credit_program(self.shop)

        with partner_lock(self.shop.id, partner_id):
            record = self._get_record(order_id)
            if record and record.is_terminal:
                return ReconciliationResult(status='duplicate', order_id=order_id,
                                            partner_id=partner_id, code=code)
            if record is None:
                record = ReconciliationRecord(shop_id=self.shop.id, order_id=order_id, attempts=0)
                db.session.add(record)

            # Counters must be read while holding the lock
            try:
                partner = self.partners.get_partner(partner_id)
            except PartnerNotFoundError:
                logger.warning(f'Partner {code} was deleted before order {order_id} was applied')
                record.partner_id = partner_id
                record.code = code
                record.order_amount = amount
                record.status = ReconciliationStatus.NO_PARTNER
                record.error = 'Partner no longer exists'
                db.session.commit()
                return ReconciliationResult(status=ReconciliationStatus.NO_PARTNER, order_id=order_id,
                                            partner_id=partner_id, code=code, order_amount=amount,
                                            error=record.error)

            already_deposited = parse_decimal(record.deposited)
            plan = compute_reconciliation(
                partner.revenue, partner.orders_count, partner.credit_earned + already_deposited,
                amount, program['threshold'], program['credit_amount'],
            )

            record.order_name = order_name or record.order_name
            record.partner_id = partner_id
            record.code = code
            record.order_amount = amount
            record.currency = program['currency']
            record.revenue_before = partner.revenue
            record.credit_before = partner.credit_earned
            record.attempts = (record.attempts or 0) + 1

            result = ReconciliationResult(status='', order_id=order_id, partner_id=partner_id,
                                          code=code, order_amount=amount)

            customer_id = partner.customer_id
            if plan.should_deposit:
                customer_id = self._resolve_customer(partner)
                if not customer_id:
                    return self._fail(record, result, 'Partner has no linked customer account')
                try:
                    deposit = self.client.credit_store_credit_account(
                        customer_id, plan.delta, program['currency']
                    )
                except ShopifyError as e:
                    logger.error(f'Deposit of {plan.delta} for partner {code} failed: {e}')
                    return self._fail(record, result, str(e))

                record.transaction_id = deposit.get('transaction_id')
                record.deposited = already_deposited + plan.delta
                record.status = COUNTERS_PENDING
                db.session.commit()
                result.deposited = plan.delta
                logger.info(f'Deposited {plan.delta} {program["currency"]} for partner {code} (order {order_id})')

            counters = {
                'cache_revenue': plan.new_revenue,
                'cache_orders_count': plan.new_count,
                'cache_credit_earned': plan.credit_after,
            }
            if customer_id and customer_id != partner.customer_id:
                counters['customer_id'] = customer_id

            try:
                self.client.update_metaobject(partner_id, counters)
            except ShopifyError as e:
                logger.error(f'Counter update for partner {code} failed after order {order_id}: {e}')
                record.error = str(e)
                if record.status != COUNTERS_PENDING:
                    record.status = ReconciliationStatus.DEPOSIT_FAILED
                db.session.commit()
                result.status = record.status
                result.error = str(e)
                return result

            record.revenue_after = plan.new_revenue
            record.credit_after = plan.credit_after
            record.status = (
                ReconciliationStatus.APPLIED if parse_decimal(record.deposited) > 0
                else ReconciliationStatus.NO_DEPOSIT
            )
            record.error = None
            db.session.commit()

            result.status = record.status
            result.revenue = plan.new_revenue
            result.credit_earned = plan.credit_after
            return result

    def _fail(self, record: ReconciliationRecord, result: ReconciliationResult, error: str) -> ReconciliationResult:
        record.status = ReconciliationStatus.DEPOSIT_FAILED
        record.error = error
        db.session.commit()
        result.status = ReconciliationStatus.DEPOSIT_FAILED
        result.error = error
        return result

    def retry_failed(self, limit: int = 50) -> List[ReconciliationResult]:
        """Re-run every ledger row still waiting on a deposit or counter update."""
        records = ReconciliationRecord.query.filter(
            ReconciliationRecord.shop_id == self.shop.id,
            ReconciliationRecord.status.in_(ReconciliationStatus.PENDING),
        ).order_by(ReconciliationRecord.created_at).limit(limit).all()

        results = []
        for record in records:
            logger.info(f'Retrying order {record.order_id} (attempt {(record.attempts or 0) + 1})')
            try:
                results.append(self._apply(
                    record.partner_id, record.order_id, record.code,
                    parse_decimal(record.order_amount), record.order_name,
                ))
            except ProHealthError as e:
                logger.error(f'Retry of order {record.order_id} failed: {e.message}')
                results.append(ReconciliationResult(
                    status=record.status, order_id=record.order_id,
                    partner_id=record.partner_id, code=record.code, error=e.message,
                ))
        return results
