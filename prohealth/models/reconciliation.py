"""
Order reconciliation ledger and per-partner locks.

The ledger gives each (shop, order) pair exactly one terminal outcome so
webhook redeliveries never double-count revenue or double-deposit credit.
"""
from datetime import datetime
from ..extensions import db


class ReconciliationStatus:
    """Outcome of reconciling one order."""
    APPLIED = 'applied'                # counters advanced, credit deposited
    NO_DEPOSIT = 'no_deposit'          # counters advanced, nothing owed
    DEPOSIT_FAILED = 'deposit_failed'  # counters untouched, retry pending
    COUNTERS_PENDING = 'counters_pending'  # credit deposited, counters not yet written
    NO_PARTNER = 'no_partner'          # code did not match an active partner
    QUEUED = 'queued'                  # partner matched, lock not obtained yet

    TERMINAL = (APPLIED, NO_DEPOSIT, NO_PARTNER)
    PENDING = (DEPOSIT_FAILED, COUNTERS_PENDING, QUEUED)
    ALL = (APPLIED, NO_DEPOSIT, DEPOSIT_FAILED, COUNTERS_PENDING, NO_PARTNER, QUEUED)


class ReconciliationRecord(db.Model):
    """One row per order seen by the orders/create webhook."""
    __tablename__ = 'reconciliation_records'
    __table_args__ = (
        db.UniqueConstraint('shop_id', 'order_id', name='uq_reconciliation_shop_order'),
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey('shops.id'), nullable=False)
    order_id = db.Column(db.String(64), nullable=False)
    order_name = db.Column(db.String(64))

    partner_id = db.Column(db.String(255))  # metaobject GID
    code = db.Column(db.String(100))
    order_amount = db.Column(db.Numeric(12, 2), default=0)

    revenue_before = db.Column(db.Numeric(12, 2))
    revenue_after = db.Column(db.Numeric(12, 2))
    credit_before = db.Column(db.Numeric(12, 2))
    credit_after = db.Column(db.Numeric(12, 2))
    deposited = db.Column(db.Numeric(12, 2), default=0)
    currency = db.Column(db.String(3))

    status = db.Column(db.String(20), nullable=False, index=True)
    error = db.Column(db.Text)
    transaction_id = db.Column(db.String(255))
    attempts = db.Column(db.Integer, default=1)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f'<ReconciliationRecord {self.order_id} {self.status}>'

    @property
    def is_terminal(self) -> bool:
        return self.status in ReconciliationStatus.TERMINAL

    def to_dict(self):
        return {
            'id': self.id,
            'order_id': self.order_id,
            'order_name': self.order_name,
            'partner_id': self.partner_id,
            'code': self.code,
            'order_amount': float(self.order_amount or 0),
            'revenue_before': float(self.revenue_before) if self.revenue_before is not None else None,
            'revenue_after': float(self.revenue_after) if self.revenue_after is not None else None,
            'credit_after': float(self.credit_after) if self.credit_after is not None else None,
            'deposited': float(self.deposited or 0),
            'currency': self.currency,
            'status': self.status,
            'error': self.error,
            'attempts': self.attempts,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class PartnerLock(db.Model):
    """
    Lease row used to serialize read-modify-write cycles on a partner record.

    A worker owns the lock while locked_until is in the future and owner
    matches its token. Expired leases can be taken over.
    """
    __tablename__ = 'partner_locks'
    __table_args__ = (
        db.UniqueConstraint('shop_id', 'partner_id', name='uq_partner_lock'),
    )

    id = db.Column(db.Integer, primary_key=True)
    shop_id = db.Column(db.Integer, db.ForeignKey('shops.id'), nullable=False)
    partner_id = db.Column(db.String(255), nullable=False)
    owner = db.Column(db.String(64))
    locked_until = db.Column(db.DateTime)

    def __repr__(self):
        return f'<PartnerLock {self.partner_id} owner={self.owner}>'
