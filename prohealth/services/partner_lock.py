"""
Per-partner lease locks backed by the partner_locks table.

Two orders for the same partner arriving together would otherwise both
read the same counters and one increment would be lost. The lease is
taken with a conditional UPDATE so it works across gunicorn workers.
"""
import time
import uuid
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models.reconciliation import PartnerLock
from ..utils.exceptions import LockTimeoutError

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05


def _try_acquire(shop_id: int, partner_id: str, owner: str, ttl: int) -> bool:
    now = datetime.utcnow()
    updated = PartnerLock.query.filter(
        PartnerLock.shop_id == shop_id,
        PartnerLock.partner_id == partner_id,
        or_(PartnerLock.locked_until.is_(None), PartnerLock.locked_until < now),
    ).update(
        {'owner': owner, 'locked_until': now + timedelta(seconds=ttl)},
        synchronize_session=False,
    )
    db.session.commit()
    if updated:
        return True

    exists = PartnerLock.query.filter_by(shop_id=shop_id, partner_id=partner_id).first()
    if exists:
        return False

    try:
        db.session.add(PartnerLock(
            shop_id=shop_id,
            partner_id=partner_id,
            owner=owner,
            locked_until=now + timedelta(seconds=ttl),
        ))
        db.session.commit()
        return True
    except IntegrityError:
        # Another worker inserted the row first
        db.session.rollback()
        return False


def release(shop_id: int, partner_id: str, owner: str) -> None:
    PartnerLock.query.filter_by(
        shop_id=shop_id, partner_id=partner_id, owner=owner
    ).update({'owner': None, 'locked_until': None}, synchronize_session=False)
    db.session.commit()


@contextmanager
def partner_lock(shop_id: int, partner_id: str, ttl: int = None, wait: float = None):
    """
    Hold the lease on a partner for the duration of the block.

    Raises:
        LockTimeoutError: lease still held by someone else after `wait` seconds
    """
    ttl = ttl or current_app.config.get('PARTNER_LOCK_TIMEOUT', 30)
    wait = current_app.config.get('PARTNER_LOCK_WAIT', 10) if wait is None else wait
    owner = uuid.uuid4().hex
    deadline = time.monotonic() + wait

    while not _try_acquire(shop_id, partner_id, owner, ttl):
        if time.monotonic() >= deadline:
            logger.warning(f'Timed out waiting for lock on partner {partner_id}')
            raise LockTimeoutError(partner_id)
        time.sleep(POLL_INTERVAL)

    try:
        yield owner
    except Exception:
        db.session.rollback()
        raise
    finally:
        release(shop_id, partner_id, owner)
