"""
Partner API endpoints.

Partner records live in Shopify metaobjects; IDs in URLs are the numeric
tail of the metaobject GID.
"""
from flask import Blueprint, request, jsonify, g, current_app
from ..middleware.shopify_auth import require_shopify_auth
from ..middleware.edit_mode import require_edit_mode
from ..services.partner_service import PartnerService, client_for_shop, parse_bool
from ..services.import_service import ImportService
from ..utils.errors import bad_request

partners_bp = Blueprint('partners', __name__)


def to_metaobject_gid(partner_id: str) -> str:
    if str(partner_id).startswith('gid://'):
        return partner_id
    return f'gid://shopify/Metaobject/{partner_id}'


def get_service() -> PartnerService:
    return PartnerService(client_for_shop(g.shop))


# ==================== Partner CRUD ====================

@partners_bp.route('', methods=['GET'])
@require_shopify_auth
def list_partners():
    """List partners, optionally filtered by status or search text."""
    with_tags = request.args.get('with_tags', 'false').lower() == 'true'
    partners = get_service().list_partners(with_tags=with_tags)

    status = request.args.get('status')
    if status == 'active':
        partners = [p for p in partners if p.active]
    elif status == 'inactive':
        partners = [p for p in partners if not p.active]

    search = (request.args.get('q') or '').strip().lower()
    if search:
        partners = [
            p for p in partners
            if search in f'{p.name} {p.email} {p.code} {p.profession} {p.identification}'.lower()
        ]

    return jsonify({
        'partners': [p.to_dict() for p in partners],
        'total': len(partners),
    })


@partners_bp.route('/<partner_id>', methods=['GET'])
@require_shopify_auth
def get_partner(partner_id):
    """Get partner details."""
    partner = get_service().get_partner(to_metaobject_gid(partner_id))
    return jsonify(partner.to_dict())


@partners_bp.route('', methods=['POST'])
@require_shopify_auth
@require_edit_mode
def create_partner():
    """Create a partner with its discount code and customer link."""
    data = request.get_json(silent=True) or {}
    partner = get_service().create_partner(data)
    current_app.logger.info(f'Partner {partner.code} created on {g.shop.shop_domain}')
    return jsonify(partner.to_dict()), 201


@partners_bp.route('/<partner_id>', methods=['PUT'])
@require_shopify_auth
@require_edit_mode
def update_partner(partner_id):
    """Update a partner. Discount and customer are kept in step."""
    data = request.get_json(silent=True) or {}
    partner = get_service().update_partner(to_metaobject_gid(partner_id), data)
    return jsonify(partner.to_dict())


@partners_bp.route('/<partner_id>/status', methods=['POST'])
@require_shopify_auth
@require_edit_mode
def set_partner_status(partner_id):
    """Activate or deactivate a partner's code."""
    data = request.get_json(silent=True) or {}
    if 'active' not in data:
        return bad_request('active is required')
    partner = get_service().set_partner_status(to_metaobject_gid(partner_id), parse_bool(data['active']))
    return jsonify(partner.to_dict())


@partners_bp.route('/<partner_id>', methods=['DELETE'])
@require_shopify_auth
@require_edit_mode
def delete_partner(partner_id):
    """
    Delete a partner.

    ?soft=true only deactivates the partner and its code.
    """
    soft = request.args.get('soft', 'false').lower() == 'true'
    result = get_service().delete_partner(to_metaobject_gid(partner_id), hard=not soft)
    return jsonify(result)


@partners_bp.route('/<partner_id>/revalidate-discount', methods=['POST'])
@require_shopify_auth
@require_edit_mode
def revalidate_discount(partner_id):
    """Repair the partner's discount_id from its code."""
    service = get_service()
    partner = service.get_partner(to_metaobject_gid(partner_id))
    discount_id, repaired = service.revalidate_discount_link(partner)
    return jsonify({'discount_id': discount_id, 'repaired': repaired})


@partners_bp.route('/customers', methods=['GET'])
@require_shopify_auth
def list_partner_customers():
    """Tagged customers and the partner each is linked to."""
    customers = get_service().list_partner_customers()
    return jsonify({'customers': customers, 'total': len(customers)})


# ==================== Structure ====================

@partners_bp.route('/structure', methods=['GET'])
@require_shopify_auth
def structure_status():
    """Whether the partner metaobject definition exists."""
    return jsonify(get_service().structure_status())


@partners_bp.route('/structure', methods=['POST'])
@require_shopify_auth
@require_edit_mode
def create_structure():
    """Create the metaobject and customer metafield definitions."""
    return jsonify(get_service().setup_structure()), 201


@partners_bp.route('/structure', methods=['DELETE'])
@require_shopify_auth
@require_edit_mode
def destroy_structure():
    """Delete the metaobject definition and every partner entry."""
    if (request.args.get('confirm') or '').lower() != 'true':
        return bad_request('Pass confirm=true to delete every partner record')
    return jsonify(get_service().destroy_structure())


# ==================== Import ====================

@partners_bp.route('/import', methods=['POST'])
@require_shopify_auth
@require_edit_mode
def import_partners():
    """Import partners from a CSV or Excel upload (multipart field 'file')."""
    if 'file' not in request.files:
        return bad_request('No file provided')

    upload = request.files['file']
    filename = (upload.filename or '').lower()
    if not filename.endswith(('.csv', '.xlsx', '.xls')):
        return bad_request('File must be a CSV or Excel file')

    report = ImportService(g.shop, client_for_shop(g.shop)).import_file(upload.read(), filename)
    return jsonify(report.to_dict())
