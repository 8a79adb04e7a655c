"""
Database models.
"""
from .shop import Shop
from .reconciliation import ReconciliationRecord, ReconciliationStatus, PartnerLock

__all__ = [
    'Shop',
    'ReconciliationRecord',
    'ReconciliationStatus',
    'PartnerLock',
]
