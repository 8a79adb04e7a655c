"""
Shop Settings API endpoints.

Credit program (threshold, amount, currency) and signup validation
defaults (discount value, type, code prefix).
"""
from flask import Blueprint, request, jsonify, g
from ..middleware.shopify_auth import require_shopify_auth
from ..middleware.edit_mode import require_edit_mode
from ..services.settings_service import settings_service
from ..utils.settings_defaults import DISCOUNT_TYPES

settings_bp = Blueprint('settings', __name__)


@settings_bp.route('', methods=['GET'])
@require_shopify_auth
def get_settings():
    """Current settings merged with defaults."""
    return jsonify({
        'settings': settings_service.get_settings(g.shop),
        'discount_types': DISCOUNT_TYPES,
    })


@settings_bp.route('/credit-program', methods=['PUT'])
@require_shopify_auth
@require_edit_mode
def update_credit_program():
    """Update the revenue threshold, credit per step or currency."""
    data = request.get_json(silent=True) or {}
    program = settings_service.update_credit_program(g.shop, data)
    return jsonify({'credit_program': program})


@settings_bp.route('/validation-defaults', methods=['PUT'])
@require_shopify_auth
@require_edit_mode
def update_validation_defaults():
    """Update the defaults applied when accepting signups."""
    data = request.get_json(silent=True) or {}
    defaults = settings_service.update_validation_defaults(g.shop, data)
    return jsonify({'validation_defaults': defaults})
