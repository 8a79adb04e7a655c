"""
Partner Service.

ARCHITECTURE: Shopify holds every partner record. A partner is one
metaobject entry plus a basic code discount plus a tagged customer. This
service keeps the three in step:

- create: discount first, then customer, then metaobject (discount removed
  again if the metaobject cannot be written)
- update: customer sync, discount sync, then metaobject fields
- delete: untag customer, delete discount, delete metaobject
"""
import logging
from dataclasses import dataclass, asdict
from decimal import Decimal, InvalidOperation
from typing import Optional, List, Dict, Any, Tuple

from flask import current_app

from ..utils.exceptions import (
    ValidationError,
    DuplicateError,
    PartnerNotFoundError,
    ShopifyError,
)
from ..utils.settings_defaults import DISCOUNT_TYPES
from .promo_codes import normalize_code, generate_promo_code, generate_identification
from .shopify_client import ShopifyClient, PARTNER_CUSTOMER_TAG

logger = logging.getLogger(__name__)

DISCOUNT_TITLE = 'Code promo Pro Sante - {name}'


def client_for_shop(shop) -> ShopifyClient:
    """ShopifyClient bound to a shop's stored credentials."""
    return ShopifyClient(shop, api_version=current_app.config.get('SHOPIFY_API_VERSION', '2025-01'))


def clean_email(email) -> str:
    return (email or '').strip().lower()


def clean_text(value) -> str:
    """Collapse line breaks and surrounding whitespace."""
    if value is None:
        return ''
    return ' '.join(str(value).replace('\r', ' ').replace('\n', ' ').split())


def parse_decimal(value, default: Decimal = Decimal('0')) -> Decimal:
    if value is None or value == '':
        return default
    try:
        amount = Decimal(str(value).replace(',', '.'))
    except (InvalidOperation, ValueError):
        return default
    return amount if amount.is_finite() else default


def parse_bool(value) -> bool:
    """JSON booleans as given; strings must read 'true' like metaobject values."""
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes', 'on')
    return bool(value)


def split_name(full_name: str) -> Tuple[str, str]:
    """'Jean Pierre Dupont' -> ('Jean', 'Pierre Dupont')."""
    parts = clean_text(full_name).split(' ', 1)
    first = parts[0] if parts else ''
    rest = parts[1] if len(parts) > 1 else ''
    return first, rest


@dataclass
class Partner:
    """A pro-health partner, parsed from its metaobject entry."""
    id: str
    identification: str
    first_name: str
    last_name: str
    name: str
    email: str
    code: str
    value: Decimal
    discount_type: str
    discount_id: Optional[str] = None
    customer_id: Optional[str] = None
    profession: str = ''
    address: str = ''
    active: bool = True
    revenue: Decimal = Decimal('0')
    orders_count: int = 0
    credit_earned: Decimal = Decimal('0')
    customer_tags: Optional[List[str]] = None

    @classmethod
    def from_metaobject(cls, entry: Dict[str, Any]) -> 'Partner':
        fields = entry.get('fields') or {}
        name = fields.get('name') or ''
        first_name = fields.get('first_name') or ''
        last_name = fields.get('last_name') or ''
        if not first_name and not last_name and name:
            first_name, last_name = split_name(name)
        if not name:
            name = f'{first_name} {last_name}'.strip()

        return cls(
            id=entry.get('id'),
            identification=fields.get('identification') or '',
            first_name=first_name,
            last_name=last_name,
            name=name,
            email=clean_email(fields.get('email')),
            code=fields.get('code') or '',
            value=parse_decimal(fields.get('montant')),
            discount_type=fields.get('type') or '%',
            discount_id=fields.get('discount_id') or None,
            customer_id=fields.get('customer_id') or None,
            profession=fields.get('profession') or '',
            address=fields.get('adresse') or '',
            # Missing status means active
            active=str(fields.get('status')).lower() != 'false',
            revenue=parse_decimal(fields.get('cache_revenue')),
            orders_count=int(parse_decimal(fields.get('cache_orders_count'))),
            credit_earned=parse_decimal(fields.get('cache_credit_earned')),
        )

    @property
    def normalized_code(self) -> str:
        return normalize_code(self.code)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['value'] = float(self.value)
        data['revenue'] = float(self.revenue)
        data['credit_earned'] = float(self.credit_earned)
        return data


class PartnerService:
    """
    Partner CRUD against Shopify.

    Usage:
        service = PartnerService(client_for_shop(shop))
        partner = service.create_partner({...})
    """

    def __init__(self, client: ShopifyClient):
        self.client = client

    # ==================== READ ====================

    def list_partners(self, with_tags: bool = False) -> List[Partner]:
        """All partner records; with_tags adds each linked customer's current tags."""
        partners = [Partner.from_metaobject(entry) for entry in self.client.list_metaobjects()]
        if with_tags:
            tags = self.client.get_customer_tags_bulk([p.customer_id for p in partners if p.customer_id])
            for partner in partners:
                partner.customer_tags = tags.get(partner.customer_id, []) if partner.customer_id else []
        return partners

    def get_partner(self, partner_id: str) -> Partner:
        entry = self.client.get_metaobject(partner_id)
        if not entry:
            raise PartnerNotFoundError(partner_id)
        return Partner.from_metaobject(entry)

    def find_partner_by_code(self, code: str, active_only: bool = False,
                             partners: List[Partner] = None) -> Optional[Partner]:
        """First partner whose code matches after normalization."""
        wanted = normalize_code(code)
        if not wanted:
            return None
        for partner in partners if partners is not None else self.list_partners():
            if partner.normalized_code == wanted and (partner.active or not active_only):
                return partner
        return None

    def existing_codes(self, partners: List[Partner] = None) -> set:
        partners = partners if partners is not None else self.list_partners()
        return {p.normalized_code for p in partners if p.code}

    # ==================== VALIDATION ====================

    @staticmethod
    def validate_discount(value, discount_type: str) -> Decimal:
        if discount_type not in DISCOUNT_TYPES:
            raise ValidationError(f"type must be one of {', '.join(DISCOUNT_TYPES)}", 'type')
        amount = parse_decimal(value, default=None)
        if amount is None or amount <= 0:
            raise ValidationError('montant must be a number greater than 0', 'montant')
        if discount_type == '%' and amount > 100:
            raise ValidationError('A percentage discount cannot exceed 100', 'montant')
        return amount

    def _prepare_create(self, data: Dict[str, Any], taken_refs: set = frozenset()) -> Dict[str, Any]:
        first_name = clean_text(data.get('first_name'))
        last_name = clean_text(data.get('last_name'))
        if not first_name and not last_name and data.get('name'):
            first_name, last_name = split_name(data['name'])
        name = clean_text(data.get('name')) or f'{first_name} {last_name}'.strip()
        if not name:
            raise ValidationError('name is required', 'name')

        email = clean_email(data.get('email'))
        if not email or '@' not in email:
            raise ValidationError('A valid email is required', 'email')

        code = normalize_code(data.get('code'))
        if not code:
            raise ValidationError('code is required', 'code')

        discount_type = data.get('type') or '%'
        value = self.validate_discount(data.get('montant', data.get('value')), discount_type)

        return {
            'identification': (
                clean_text(data.get('identification'))
                or generate_identification(first_name, last_name, existing=taken_refs)
            ),
            'first_name': first_name,
            'last_name': last_name,
            'name': name,
            'email': email,
            'code': code,
            'montant': value,
            'type': discount_type,
            'profession': clean_text(data.get('profession')),
            'adresse': clean_text(data.get('adresse', data.get('address'))),
            'customer_id': data.get('customer_id') or None,
        }

    # ==================== CUSTOMERS ====================

    def ensure_customer(self, email: str, first_name: str = '', last_name: str = '') -> Optional[str]:
        """
        Find or create the partner's customer and make sure it carries the tag.

        Returns:
            Customer GID
        """
        matches = self.client.search_customers_by_email(email)
        if matches:
            customer = matches[0]
            if PARTNER_CUSTOMER_TAG not in customer.get('tags', []):
                self.client.add_tags(customer['id'], [PARTNER_CUSTOMER_TAG])
            return customer['id']

        created = self.client.create_customer(
            email=email,
            first_name=first_name or None,
            last_name=last_name or None,
            tags=[PARTNER_CUSTOMER_TAG],
        )
        logger.info(f'Created customer {created["id"]} for partner {email}')
        return created['id']

    def find_customer_by_email(self, email: str) -> Optional[str]:
        """Customer GID when exactly one customer has this email."""
        email = clean_email(email)
        if not email:
            return None
        matches = self.client.search_customers_by_email(email)
        if len(matches) != 1:
            if matches:
                logger.warning(f'{len(matches)} customers share email {email}, not linking')
            return None
        return matches[0]['id']

    def list_partner_customers(self) -> List[Dict[str, Any]]:
        """Tagged customers with the partner each one is linked to (by id, then email)."""
        partners = self.list_partners()
        by_customer = {p.customer_id: p for p in partners if p.customer_id}
        by_email = {p.email: p for p in partners if p.email}

        customers = []
        for customer in self.client.list_customers_by_tag(PARTNER_CUSTOMER_TAG):
            partner = by_customer.get(customer['id']) or by_email.get(clean_email(customer.get('email')))
            customers.append({
                'customer_id': customer['id'],
                'email': customer.get('email'),
                'first_name': customer.get('first_name'),
                'last_name': customer.get('last_name'),
                'partner_id': partner.id if partner else None,
                'code': partner.code if partner else None,
                'linked_by': (
                    'customer_id' if partner and partner.customer_id == customer['id']
                    else 'email' if partner else None
                ),
            })
        return customers

    # ==================== CREATE ====================

    def create_partner(self, data: Dict[str, Any], partners: List[Partner] = None) -> Partner:
        """
        Create discount, customer link and metaobject for a new partner.

        Args:
            data: identification, first_name/last_name or name, email, code,
                  montant, type, profession, adresse, customer_id
            partners: Current partner list, to skip a re-fetch in batch flows

        Raises:
            ValidationError: Missing or invalid field
            DuplicateError: Code or identification already used
            ShopifyError: Any Shopify failure (partial work is undone)
        """
        partners = partners if partners is not None else self.list_partners()
        taken_refs = {p.identification.upper() for p in partners if p.identification}
        fields = self._prepare_create(data, taken_refs)

        if fields['code'] in self.existing_codes(partners):
            raise DuplicateError('Partner', f"code {fields['code']}")
        if fields['identification'].upper() in taken_refs:
            raise DuplicateError('Partner', f"identification {fields['identification']}")

        discount = self.client.create_code_discount(
            title=DISCOUNT_TITLE.format(name=fields['name']),
            code=fields['code'],
            value=fields['montant'],
            discount_type=fields['type'],
        )
        discount_id = discount['discount_id']

        try:
            customer_id = fields['customer_id']
            if customer_id:
                self.client.add_tags(customer_id, [PARTNER_CUSTOMER_TAG])
            else:
                customer_id = self.ensure_customer(fields['email'], fields['first_name'], fields['last_name'])

            metaobject_fields = {
                **fields,
                'customer_id': customer_id,
                'discount_id': discount_id,
                'status': True,
                'cache_revenue': 0,
                'cache_orders_count': 0,
                'cache_credit_earned': 0,
            }
            created = self.client.create_metaobject(metaobject_fields)
        except ShopifyError:
            logger.error(f"Partner creation failed for {fields['code']}, removing discount {discount_id}")
            try:
                self.client.delete_code_discount(discount_id)
            except ShopifyError as cleanup_error:
                logger.error(f'Could not remove orphan discount {discount_id}: {cleanup_error}')
            raise

        logger.info(f"Partner {fields['code']} created ({created['id']})")
        return Partner.from_metaobject({
            'id': created['id'],
            'fields': {k: v for k, v in metaobject_fields.items() if v is not None},
        })

    # ==================== UPDATE ====================

    def revalidate_discount_link(self, partner: Partner) -> Tuple[Optional[str], bool]:
        """
        Make sure partner.discount_id points at the discount carrying its code.

        Returns:
            (discount_id, repaired) - discount_id is None when no discount
            with the code exists
        """
        found = self.client.get_discount_by_code(partner.code) if partner.code else None
        discount_id = found['discount_id'] if found else None

        if discount_id != partner.discount_id:
            logger.warning(
                f'Discount link for partner {partner.id} was {partner.discount_id}, now {discount_id}'
            )
            self.client.update_metaobject(partner.id, {'discount_id': discount_id or ''})
            partner.discount_id = discount_id
            return discount_id, True

        return discount_id, False

    def update_partner(self, partner_id: str, data: Dict[str, Any]) -> Partner:
        """
        Apply edits to a partner and keep customer and discount in step.

        Raises:
            PartnerNotFoundError, ValidationError, DuplicateError, ShopifyError
        """
        partner = self.get_partner(partner_id)
        changes = {}

        for key in ('identification', 'first_name', 'last_name', 'profession'):
            if key in data:
                changes[key] = clean_text(data[key])
        if 'adresse' in data or 'address' in data:
            changes['adresse'] = clean_text(data.get('adresse', data.get('address')))

        if 'first_name' in changes or 'last_name' in changes or 'name' in data:
            first = changes.get('first_name', partner.first_name)
            last = changes.get('last_name', partner.last_name)
            changes['name'] = clean_text(data.get('name')) or f'{first} {last}'.strip()
            if not changes['name']:
                raise ValidationError('name is required', 'name')

        if 'email' in data:
            email = clean_email(data['email'])
            if not email or '@' not in email:
                raise ValidationError('A valid email is required', 'email')
            changes['email'] = email

        if 'code' in data:
            code = normalize_code(data['code'])
            if not code:
                raise ValidationError('code is required', 'code')
            if code != partner.normalized_code:
                others = [p for p in self.list_partners() if p.id != partner.id]
                if code in self.existing_codes(others):
                    raise DuplicateError('Partner', f'code {code}')
            changes['code'] = code

        new_type = data.get('type', partner.discount_type)
        if 'montant' in data or 'value' in data or 'type' in data:
            changes['montant'] = self.validate_discount(data.get('montant', data.get('value', partner.value)), new_type)
            changes['type'] = new_type

        status = parse_bool(data['status']) if 'status' in data else None
        self._sync_customer(partner, changes)
        self._sync_discount(partner, changes, status)

        if status is not None:
            changes['status'] = status

        if changes:
            self.client.update_metaobject(partner.id, changes)
        return self.get_partner(partner.id)

    def _sync_customer(self, partner: Partner, changes: Dict[str, Any]) -> None:
        email_changed = 'email' in changes and changes['email'] != partner.email
        name_changed = any(
            k in changes and changes[k] != getattr(partner, k) for k in ('first_name', 'last_name')
        )
        if not partner.customer_id:
            if email_changed or name_changed:
                changes['customer_id'] = self.ensure_customer(
                    changes.get('email', partner.email),
                    changes.get('first_name', partner.first_name),
                    changes.get('last_name', partner.last_name),
                )
            return

        if email_changed:
            self.client.update_customer(partner.customer_id, email=changes['email'])
        elif name_changed:
            self.client.update_customer(
                partner.customer_id,
                first_name=changes.get('first_name', partner.first_name),
                last_name=changes.get('last_name', partner.last_name),
            )

    def _sync_discount(self, partner: Partner, changes: Dict[str, Any], status=None) -> None:
        discount_fields_changed = any(
            key in changes for key in ('code', 'montant', 'type', 'name')
        )
        status_changed = status is not None and status != partner.active
        if not discount_fields_changed and not status_changed:
            return

        discount_id, _ = self.revalidate_discount_link(partner)
        if not discount_id:
            # The discount vanished; recreate it with the new values
            created = self.client.create_code_discount(
                title=DISCOUNT_TITLE.format(name=changes.get('name', partner.name)),
                code=changes.get('code', partner.code),
                value=changes.get('montant', partner.value),
                discount_type=changes.get('type', partner.discount_type),
            )
            changes['discount_id'] = created['discount_id']
            discount_id = created['discount_id']
        elif discount_fields_changed:
            self.client.update_code_discount(
                discount_id,
                title=DISCOUNT_TITLE.format(name=changes.get('name', partner.name)),
                code=changes.get('code'),
                value=changes.get('montant', partner.value),
                discount_type=changes.get('type', partner.discount_type),
            )

        if status_changed:
            if status:
                self.client.activate_code_discount(discount_id)
            else:
                self.client.deactivate_code_discount(discount_id)

    def set_partner_status(self, partner_id: str, active: bool) -> Partner:
        """Activate or deactivate a partner and its discount code."""
        return self.update_partner(partner_id, {'status': active})

    # ==================== DELETE ====================

    def delete_partner(self, partner_id: str, hard: bool = True) -> Dict[str, Any]:
        """
        Remove a partner.

        hard=True untags the customer, deletes the discount then the
        metaobject. hard=False only deactivates (record and counters kept).
        """
        partner = self.get_partner(partner_id)
        if not hard:
            self.set_partner_status(partner_id, False)
            return {'success': True, 'deleted': False, 'deactivated': True, 'id': partner_id}

        if partner.customer_id:
            self.client.remove_tags(partner.customer_id, [PARTNER_CUSTOMER_TAG])

        discount_id = partner.discount_id
        if not discount_id:
            discount_id, _ = self.revalidate_discount_link(partner)
        if discount_id:
            self.client.delete_code_discount(discount_id)

        self.client.delete_metaobject(partner.id)
        logger.info(f'Partner {partner.code} ({partner.id}) deleted')
        return {'success': True, 'deleted': True, 'id': partner_id}

    # ==================== STRUCTURE ====================

    def structure_status(self) -> Dict[str, Any]:
        return {'exists': self.client.metaobject_definition_exists()}

    def setup_structure(self) -> Dict[str, Any]:
        """Create the metaobject definition and customer metafield definitions."""
        created_definition = False
        if not self.client.metaobject_definition_exists():
            self.client.create_metaobject_definition()
            created_definition = True
        metafields = self.client.create_customer_metafield_definitions()
        return {'success': True, 'definition_created': created_definition, 'metafields': metafields}

    def destroy_structure(self) -> Dict[str, Any]:
        """Delete the metaobject definition along with every partner entry."""
        result = self.client.delete_metaobject_definition()
        logger.warning(f'Partner structure destroyed ({result.get("deleted_id")})')
        return {'success': True, 'deleted_id': result.get('deleted_id')}

    # ==================== HELPERS ====================

    def suggest_code(self, first_name: str, last_name: str, prefix: str,
                     extra_taken: set = None, partners: List[Partner] = None) -> str:
        taken = self.existing_codes(partners) | (extra_taken or set())
        return generate_promo_code(first_name, last_name, prefix, taken)
