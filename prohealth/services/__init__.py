"""
Business logic services for the partner program.
"""
from .partner_service import PartnerService, Partner
from .signup_service import SignupService
from .credit_reconciler import CreditReconciler
from .import_service import ImportService
from .analytics_service import AnalyticsService

__all__ = [
    'PartnerService',
    'Partner',
    'SignupService',
    'CreditReconciler',
    'ImportService',
    'AnalyticsService',
]
