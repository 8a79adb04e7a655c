"""
Default shop settings.

Shared between the settings API, the settings service and the credit
reconciler so the credit step function has a single source of truth.
"""
import copy

# Discount types a partner code can carry
DISCOUNT_TYPES = {
    '%': 'Percentage off the order',
    '€': 'Fixed amount off the order',
}


DEFAULT_SETTINGS = {
    'credit_program': {
        'threshold': 500,       # Revenue step that earns one credit unit
        'credit_amount': 10,    # Store credit awarded per step
        'currency': 'EUR',      # Store-credit currency
    },
    'validation_defaults': {
        'value': 10,            # Discount value applied when accepting a signup
        'type': '%',            # '%' or '€'
        'code_prefix': 'PRO_',  # Prefix for generated partner codes
    },
}


def _env_overrides(config) -> dict:
    """Read CREDIT_* values from the Flask config (populated from the environment)."""
    if not config:
        return {}
    overrides = {}
    if config.get('CREDIT_THRESHOLD') not in (None, ''):
        overrides['threshold'] = float(config['CREDIT_THRESHOLD'])
    if config.get('CREDIT_AMOUNT') not in (None, ''):
        overrides['credit_amount'] = float(config['CREDIT_AMOUNT'])
    if config.get('CREDIT_CURRENCY'):
        overrides['currency'] = config['CREDIT_CURRENCY']
    return overrides


def get_default_settings(config=None) -> dict:
    """Static defaults with environment overrides applied."""
    defaults = copy.deepcopy(DEFAULT_SETTINGS)
    defaults['credit_program'].update(_env_overrides(config))
    return defaults


def get_settings_with_defaults(settings: dict, config=None) -> dict:
    """Merge shop settings with defaults."""
    settings = settings or {}
    result = {}
    for key, default_value in get_default_settings(config).items():
        if isinstance(default_value, dict):
            result[key] = {**default_value, **(settings.get(key) or {})}
        else:
            result[key] = settings.get(key, default_value)
    return result
