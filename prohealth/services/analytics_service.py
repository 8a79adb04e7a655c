"""
Program analytics.

Totals come from the counters cached on each partner record, so the
overview needs a single metaobject listing. Order-level history is
fetched from Shopify per partner code on demand.
"""
import math
from datetime import datetime
from decimal import Decimal
from typing import Optional, Dict, Any

from ..utils.exceptions import ValidationError
from .partner_service import PartnerService

RANKING_PAGE_SIZE = 25


def _parse_date(value: Optional[str], field: str) -> Optional[str]:
    if not value:
        return None
    try:
        return datetime.strptime(value, '%Y-%m-%d').date().isoformat()
    except ValueError:
        raise ValidationError(f'{field} must be a date formatted YYYY-MM-DD', field)


class AnalyticsService:
    """Read-only reporting over partner records and orders."""

    def __init__(self, client):
        self.client = client
        self.partners = PartnerService(client)

    def program_stats(self, page: int = 1, per_page: int = RANKING_PAGE_SIZE) -> Dict[str, Any]:
        """
        Program totals and a revenue ranking.

        Returns:
            Dict with total_orders, total_revenue, total_credit_earned,
            active_partners, total_partners and one page of the ranking
        """
        partners = self.partners.list_partners()
        ranking = sorted(partners, key=lambda p: p.revenue, reverse=True)

        page = max(int(page or 1), 1)
        pages = max(math.ceil(len(ranking) / per_page), 1)
        start = (page - 1) * per_page

        return {
            'total_orders': sum(p.orders_count for p in partners),
            'total_revenue': float(sum((p.revenue for p in partners), Decimal('0'))),
            'total_credit_earned': float(sum((p.credit_earned for p in partners), Decimal('0'))),
            'active_partners': sum(1 for p in partners if p.active),
            'total_partners': len(partners),
            'ranking': [
                {
                    'rank': start + i + 1,
                    'id': p.id,
                    'name': p.name,
                    'code': p.code,
                    'profession': p.profession,
                    'active': p.active,
                    'revenue': float(p.revenue),
                    'orders_count': p.orders_count,
                    'credit_earned': float(p.credit_earned),
                }
                for i, p in enumerate(ranking[start:start + per_page])
            ],
            'page': page,
            'pages': pages,
            'per_page': per_page,
        }

    def partner_orders(self, since: str = None, until: str = None,
                       profession: str = None, code: str = None) -> Dict[str, Any]:
        """
        Order history per partner, filtered by date range and profession.

        Revenue here is the pre-discount amount, same as the credit counters.
        """
        since = _parse_date(since, 'since')
        until = _parse_date(until, 'until')
        if since and until and since > until:
            raise ValidationError('since must be before until', 'since')

        partners = self.partners.list_partners()
        professions = sorted({p.profession for p in partners if p.profession}, key=str.lower)

        if profession:
            wanted = profession.strip().lower()
            partners = [p for p in partners if p.profession.strip().lower() == wanted]
        if code:
            partner = self.partners.find_partner_by_code(code, partners=partners)
            partners = [partner] if partner else []

        results = []
        total_orders = 0
        total_revenue = Decimal('0')
        for partner in partners:
            if not partner.code:
                continue
            orders = self.client.list_orders_with_discount_code(partner.code, since=since, until=until)
            revenue = sum(
                (Decimal(str(o['subtotal'])) + Decimal(str(o['total_discounts'])) for o in orders),
                Decimal('0'),
            )
            total_orders += len(orders)
            total_revenue += revenue
            results.append({
                'partner_id': partner.id,
                'name': partner.name,
                'code': partner.code,
                'profession': partner.profession,
                'orders_count': len(orders),
                'revenue': float(revenue),
                'orders': orders,
            })

        results.sort(key=lambda r: r['revenue'], reverse=True)
        return {
            'partners': results,
            'total_orders': total_orders,
            'total_revenue': float(total_revenue),
            'professions': professions,
            'filters': {'since': since, 'until': until, 'profession': profession, 'code': code},
        }
