"""
Pending signup workflow.

Storefront signups land as Shopify customers carrying the metafield
custom.pro_en_attente_de_validation. Accepting one turns the customer into
a partner; rejecting one stamps the metafield with the rejected marker so
the customer drops out of the queue.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any, Tuple

from ..models.shop import Shop
from ..utils.cache import cache
from ..utils.exceptions import ProHealthError, ShopifyError, SignupNotFoundError, ValidationError
from .partner_service import PartnerService, Partner, clean_email, clean_text, client_for_shop
from .promo_codes import normalize_code
from .settings_service import settings_service
from .shopify_client import PENDING_KEY, PROFESSION_KEY, ADDRESS_KEY

logger = logging.getLogger(__name__)

REJECTED_MARKER = 'rejeté'
PENDING_NOT_CLEARED = 'Partner created but the pending flag could not be cleared'
PAGE_SIZE = 250
MAX_PAGES = 20


def is_pending(value) -> bool:
    """Non-blank metafield that is not the rejected marker."""
    value = (value or '').strip()
    return bool(value) and value.lower() != REJECTED_MARKER


def format_address(customer: Dict[str, Any]) -> str:
    """Address metafield, else the default address joined with ', '."""
    if customer.get('address'):
        return clean_text(customer['address'])
    default = customer.get('default_address') or {}
    parts = [default.get(key) for key in ('address1', 'city', 'zip', 'country')]
    return ', '.join(p for p in parts if p)


@dataclass
class BatchItemResult:
    """Outcome for one customer in a bulk action."""
    customer_id: str
    ok: bool
    code: Optional[str] = None
    partner_id: Optional[str] = None
    error: Optional[str] = None
    warning: Optional[str] = None


@dataclass
class BatchResult:
    """Per-item report of a bulk accept or reject."""
    action: str
    items: List[BatchItemResult] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for item in self.items if item.ok)

    @property
    def failed(self) -> int:
        return sum(1 for item in self.items if not item.ok)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'action': self.action,
            'succeeded': self.succeeded,
            'failed': self.failed,
            'items': [item.__dict__ for item in self.items],
        }


class SignupService:
    """Lists, accepts and rejects pending partner signups for one shop."""

    def __init__(self, shop, client):
        self.shop = shop
        self.client = client
        self.partners = PartnerService(client)

    @staticmethod
    def _to_signup(customer: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'customer_id': customer['id'],
            'first_name': customer.get('first_name') or '',
            'last_name': customer.get('last_name') or '',
            'email': clean_email(customer.get('email')),
            'profession': clean_text(customer.get('profession')),
            'address': format_address(customer),
            'pending_value': customer.get('pending_value'),
            'created_at': customer.get('created_at'),
        }

    def list_pending(self, max_pages: int = MAX_PAGES) -> Dict[str, Any]:
        """
        Walk the customer list and keep those awaiting validation.

        Returns:
            Dict with signups, the codes already in use (for client-side
            previews) and whether the page cap cut the scan short
        """
        signups = []
        cursor = None
        truncated = False
        for page in range(max_pages):
            result = self.client.list_customers_page(cursor=cursor, first=PAGE_SIZE)
            signups.extend(
                self._to_signup(c) for c in result['customers'] if is_pending(c.get('pending_value'))
            )
            if not result['has_next_page']:
                break
            cursor = result['end_cursor']
            if page == max_pages - 1:
                truncated = True
                logger.warning(f'Pending signup scan for {self.shop.shop_domain} stopped after {max_pages} pages')

        return {
            'signups': signups,
            'count': len(signups),
            'existing_codes': sorted(self.partners.existing_codes()),
            'truncated': truncated,
        }

    def _get_pending_customer(self, customer_id: str) -> Dict[str, Any]:
        customer = self.client.get_customer(customer_id)
        if not customer:
            raise SignupNotFoundError(customer_id)
        if not is_pending(customer.get('pending_value')):
            raise ValidationError('Customer is not awaiting validation', 'customer_id')
        return customer

    def accept(self, customer_id: str, code: str = None, value=None, discount_type: str = None,
               prefix: str = None) -> Partner:
        """Turn a pending signup into a partner."""
        partner, _ = self.accept_customer(customer_id, code=code, value=value,
                                          discount_type=discount_type, prefix=prefix)
        return partner

    def accept_customer(self, customer_id: str, code: str = None, value=None, discount_type: str = None,
                        prefix: str = None, partners: List[Partner] = None,
                        used_codes: set = None) -> Tuple[Partner, Optional[str]]:
        """
        Turn a pending signup into a partner.

        Omitted value/type/prefix fall back to the shop's validation
        defaults. Without an explicit code one is generated from the name.
        A customer who already has a partner record gets that record back
        instead of a second one.

        Returns:
            (partner, warning) where warning is set when the partner exists
            but the pending flag is still on the customer
        """
        customer = self._get_pending_customer(customer_id)
        partners = partners if partners is not None else self.partners.list_partners()

        existing = next((p for p in partners if p.customer_id == customer['id']), None)
        if existing:
            logger.info(f'Signup {customer_id} is already partner {existing.code}, clearing pending flag')
            warning = self._clear_pending(customer['id'])
            self._invalidate_count()
            return existing, warning

        defaults = settings_service.get_validation_defaults(self.shop)
        code = normalize_code(code)
        if not code:
            code = self.partners.suggest_code(
                customer.get('first_name'), customer.get('last_name'),
                prefix or defaults['code_prefix'],
                extra_taken=used_codes, partners=partners,
            )

        partner = self.partners.create_partner({
            'first_name': customer.get('first_name'),
            'last_name': customer.get('last_name'),
            'email': customer.get('email'),
            'code': code,
            'montant': value if value is not None else defaults['value'],
            'type': discount_type or defaults['type'],
            'profession': customer.get('profession'),
            'adresse': format_address(customer),
            'customer_id': customer['id'],
        }, partners=partners)

        warning = self._clear_pending(customer['id'])
        self._invalidate_count()
        logger.info(f'Signup {customer_id} accepted as partner {partner.code}')
        return partner, warning

    def _clear_pending(self, customer_id: str) -> Optional[str]:
        try:
            self.client.delete_customer_metafield(customer_id, PENDING_KEY)
        except ShopifyError as e:
            logger.warning(f'Pending flag of {customer_id} not cleared: {e.message}')
            return PENDING_NOT_CLEARED
        return None

    def reject(self, customer_id: str) -> Dict[str, Any]:
        self._get_pending_customer(customer_id)
        self.client.set_customer_metafield(customer_id, PENDING_KEY, REJECTED_MARKER)
        self._invalidate_count()
        logger.info(f'Signup {customer_id} rejected')
        return {'success': True, 'customer_id': customer_id}

    def update_pending_customer(self, customer_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Correct a signup's name, email, profession or address before acceptance."""
        self._get_pending_customer(customer_id)

        update = {}
        if 'first_name' in data:
            update['first_name'] = clean_text(data['first_name'])
        if 'last_name' in data:
            update['last_name'] = clean_text(data['last_name'])
        if 'email' in data:
            email = clean_email(data['email'])
            if not email or '@' not in email:
                raise ValidationError('A valid email is required', 'email')
            update['email'] = email

        metafields = []
        if 'profession' in data:
            metafields.append({'key': PROFESSION_KEY, 'value': clean_text(data['profession'])})
        if 'address' in data:
            metafields.append({'key': ADDRESS_KEY, 'value': clean_text(data['address'])})
        if metafields:
            update['metafields'] = metafields

        if update:
            self.client.update_customer(customer_id, **update)
        return self._to_signup(self.client.get_customer(customer_id))

    def bulk_accept(self, customer_ids: List[str], value=None, discount_type: str = None,
                    prefix: str = None) -> BatchResult:
        """
        Accept several signups in order.

        Codes generated earlier in the batch count as taken for later ones,
        so two signups with the same initials get distinct codes.
        """
        result = BatchResult(action='accept')
        partners = self.partners.list_partners()
        used_codes = self.partners.existing_codes(partners)

        for customer_id in customer_ids:
            try:
                partner, warning = self.accept_customer(
                    customer_id, value=value, discount_type=discount_type,
                    prefix=prefix, partners=partners, used_codes=used_codes,
                )
            except ProHealthError as e:
                logger.warning(f'Bulk accept failed for {customer_id}: {e.message}')
                result.items.append(BatchItemResult(customer_id=customer_id, ok=False, error=e.message))
                continue
            if partner not in partners:
                partners.append(partner)
            used_codes.add(partner.normalized_code)
            result.items.append(BatchItemResult(
                customer_id=customer_id, ok=True, code=partner.code, partner_id=partner.id, warning=warning
            ))

        logger.info(f'Bulk accept: {result.succeeded} accepted, {result.failed} failed')
        return result

    def bulk_reject(self, customer_ids: List[str]) -> BatchResult:
        result = BatchResult(action='reject')
        for customer_id in customer_ids:
            try:
                self.reject(customer_id)
            except ProHealthError as e:
                result.items.append(BatchItemResult(customer_id=customer_id, ok=False, error=e.message))
                continue
            result.items.append(BatchItemResult(customer_id=customer_id, ok=True))
        return result

    def _invalidate_count(self):
        cache.delete_memoized(count_pending_signups, self.shop.id)


@cache.memoize(timeout=60)
def count_pending_signups(shop_id: int) -> int:
    """Pending signup count for the navigation badge."""
    shop = Shop.query.get(shop_id)
    if not shop or not shop.access_token:
        return 0
    service = SignupService(shop, client_for_shop(shop))
    return service.list_pending()['count']
