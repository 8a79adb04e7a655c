"""
Edit-mode lock/unlock endpoints.
"""
from flask import Blueprint, request, jsonify, g, current_app
from ..middleware.shopify_auth import require_shopify_auth
from ..middleware.edit_mode import (
    EDIT_TOKEN_HEADER,
    check_admin_password,
    issue_edit_token,
    verify_edit_token,
    revoke_edit_tokens,
)
from ..utils.errors import unauthorized, ErrorCode

edit_mode_bp = Blueprint('edit_mode', __name__)


@edit_mode_bp.route('/unlock', methods=['POST'])
@require_shopify_auth
def unlock():
    """Exchange the admin password for an edit token."""
    data = request.get_json(silent=True) or {}
    if not check_admin_password(data.get('password')):
        current_app.logger.warning(f'Failed edit-mode unlock on {g.shop.shop_domain}')
        return unauthorized('Incorrect password', ErrorCode.INVALID_PASSWORD)

    return jsonify({'unlocked': True, **issue_edit_token(g.shop, g.staff_id)})


@edit_mode_bp.route('/lock', methods=['POST'])
@require_shopify_auth
def lock():
    """Revoke every edit token for this shop."""
    revoke_edit_tokens(g.shop)
    return jsonify({'unlocked': False})


@edit_mode_bp.route('/status', methods=['GET'])
@require_shopify_auth
def status():
    return jsonify({'unlocked': verify_edit_token(request.headers.get(EDIT_TOKEN_HEADER), g.shop)})
