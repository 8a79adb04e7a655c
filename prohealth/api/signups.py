"""
Pending signup API endpoints.

Customer IDs in URLs are numeric Shopify customer IDs.
"""
from flask import Blueprint, request, jsonify, g
from ..middleware.shopify_auth import require_shopify_auth
from ..middleware.edit_mode import require_edit_mode
from ..services.partner_service import client_for_shop
from ..services.signup_service import SignupService, count_pending_signups
from ..services.shopify_client import to_customer_gid
from ..utils.errors import bad_request

signups_bp = Blueprint('signups', __name__)

MAX_BULK_SIZE = 250


def get_service() -> SignupService:
    return SignupService(g.shop, client_for_shop(g.shop))


def _customer_ids_from_body(data: dict):
    ids = data.get('customer_ids')
    if not isinstance(ids, list) or not ids:
        return None
    # Preserve order, drop repeats
    return list(dict.fromkeys(to_customer_gid(cid) for cid in ids if cid))


@signups_bp.route('', methods=['GET'])
@require_shopify_auth
def list_pending():
    """Customers awaiting validation."""
    return jsonify(get_service().list_pending())


@signups_bp.route('/count', methods=['GET'])
@require_shopify_auth
def pending_count():
    """Badge count for the navigation (cached for a minute)."""
    return jsonify({'count': count_pending_signups(g.shop.id)})


@signups_bp.route('/<customer_id>/accept', methods=['POST'])
@require_shopify_auth
@require_edit_mode
def accept_signup(customer_id):
    """Accept one signup; code, value and type are optional overrides."""
    data = request.get_json(silent=True) or {}
    partner, warning = get_service().accept_customer(
        to_customer_gid(customer_id),
        code=data.get('code'),
        value=data.get('value'),
        discount_type=data.get('type'),
        prefix=data.get('prefix'),
    )
    payload = partner.to_dict()
    if warning:
        payload['warning'] = warning
    return jsonify(payload), 201


@signups_bp.route('/<customer_id>/reject', methods=['POST'])
@require_shopify_auth
@require_edit_mode
def reject_signup(customer_id):
    return jsonify(get_service().reject(to_customer_gid(customer_id)))


@signups_bp.route('/<customer_id>', methods=['PUT'])
@require_shopify_auth
@require_edit_mode
def update_signup(customer_id):
    """Edit a signup's details before accepting it."""
    data = request.get_json(silent=True) or {}
    return jsonify(get_service().update_pending_customer(to_customer_gid(customer_id), data))


@signups_bp.route('/bulk-accept', methods=['POST'])
@require_shopify_auth
@require_edit_mode
def bulk_accept():
    """
    Accept several signups with shared discount settings.

    Body: {"customer_ids": [...], "value": 10, "type": "%", "prefix": "PRO_"}
    Returns one entry per customer with its code or error.
    """
    data = request.get_json(silent=True) or {}
    ids = _customer_ids_from_body(data)
    if not ids:
        return bad_request('customer_ids must be a non-empty list')
    if len(ids) > MAX_BULK_SIZE:
        return bad_request(f'At most {MAX_BULK_SIZE} signups per batch')

    result = get_service().bulk_accept(
        ids,
        value=data.get('value'),
        discount_type=data.get('type'),
        prefix=data.get('prefix'),
    )
    return jsonify(result.to_dict())


@signups_bp.route('/bulk-reject', methods=['POST'])
@require_shopify_auth
@require_edit_mode
def bulk_reject():
    data = request.get_json(silent=True) or {}
    ids = _customer_ids_from_body(data)
    if not ids:
        return bad_request('customer_ids must be a non-empty list')
    if len(ids) > MAX_BULK_SIZE:
        return bad_request(f'At most {MAX_BULK_SIZE} signups per batch')

    return jsonify(get_service().bulk_reject(ids).to_dict())
