"""
Shop settings service.

The credit program threshold and amount are read from here by both the
admin API and the order webhook.
"""
import logging
from decimal import Decimal, InvalidOperation

from flask import current_app
from sqlalchemy.orm.attributes import flag_modified

from ..extensions import db
from ..utils.exceptions import ValidationError
from ..utils.settings_defaults import DISCOUNT_TYPES

logger = logging.getLogger(__name__)

MAX_PREFIX_LENGTH = 20


def _to_decimal(value, field: str) -> Decimal:
    try:
        number = Decimal(str(value).replace(',', '.'))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number', field)
    if not number.is_finite():
        raise ValidationError(f'{field} must be a finite number', field)
    return number


class SettingsService:
    """Read and update shop-level program settings."""

    def get_settings(self, shop) -> dict:
        return shop.get_settings(current_app.config)

    def get_credit_program(self, shop) -> dict:
        """Threshold, credit amount and currency as Decimals/str."""
        program = self.get_settings(shop)['credit_program']
        return {
            'threshold': _to_decimal(program['threshold'], 'threshold'),
            'credit_amount': _to_decimal(program['credit_amount'], 'credit_amount'),
            'currency': program.get('currency') or 'EUR',
        }

    def get_validation_defaults(self, shop) -> dict:
        return self.get_settings(shop)['validation_defaults']

    def update_credit_program(self, shop, data: dict) -> dict:
        """
        Validate and store credit program settings.

        Raises:
            ValidationError: threshold not positive, amount negative
        """
        updates = {}
        if 'threshold' in data:
            threshold = _to_decimal(data['threshold'], 'threshold')
            if threshold <= 0:
                raise ValidationError('threshold must be greater than 0', 'threshold')
            updates['threshold'] = float(threshold)
        if 'credit_amount' in data:
            credit_amount = _to_decimal(data['credit_amount'], 'credit_amount')
            if credit_amount < 0:
                raise ValidationError('credit_amount cannot be negative', 'credit_amount')
            updates['credit_amount'] = float(credit_amount)
        if 'currency' in data:
            currency = str(data['currency'] or '').strip().upper()
            if len(currency) != 3:
                raise ValidationError('currency must be a 3-letter ISO code', 'currency')
            updates['currency'] = currency

        self._save_section(shop, 'credit_program', updates)
        logger.info(f'Credit program updated for {shop.shop_domain}: {updates}')
        return self.get_settings(shop)['credit_program']

    def update_validation_defaults(self, shop, data: dict) -> dict:
        """Validate and store the defaults applied when accepting signups."""
        updates = {}
        if 'value' in data:
            value = _to_decimal(data['value'], 'value')
            if value <= 0:
                raise ValidationError('value must be greater than 0', 'value')
            updates['value'] = float(value)
        if 'type' in data:
            if data['type'] not in DISCOUNT_TYPES:
                raise ValidationError(f"type must be one of {', '.join(DISCOUNT_TYPES)}", 'type')
            updates['type'] = data['type']
        if 'code_prefix' in data:
            prefix = str(data['code_prefix'] or '').strip().upper()
            if not prefix or len(prefix) > MAX_PREFIX_LENGTH:
                raise ValidationError(
                    f'code_prefix must be 1 to {MAX_PREFIX_LENGTH} characters', 'code_prefix'
                )
            updates['code_prefix'] = prefix

        merged = {**self.get_validation_defaults(shop), **updates}
        if merged['type'] == '%' and float(merged['value']) > 100:
            raise ValidationError('A percentage discount cannot exceed 100', 'value')

        self._save_section(shop, 'validation_defaults', updates)
        return self.get_settings(shop)['validation_defaults']

    def seed_currency(self, shop, currency: str) -> bool:
        """Store the shop currency on first install; an explicit choice is kept."""
        program = (shop.settings or {}).get('credit_program') or {}
        if program.get('currency') or not currency:
            return False
        self._save_section(shop, 'credit_program', {'currency': currency.upper()})
        logger.info(f'Credit currency for {shop.shop_domain} set to {currency.upper()}')
        return True

    def _save_section(self, shop, section: str, updates: dict) -> None:
        settings = dict(shop.settings or {})
        settings[section] = {**(settings.get(section) or {}), **updates}
        shop.settings = settings
        flag_modified(shop, 'settings')
        db.session.commit()


settings_service = SettingsService()
