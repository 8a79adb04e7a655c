"""
Analytics API endpoints.
"""
from flask import Blueprint, request, jsonify, g
from ..middleware.shopify_auth import require_shopify_auth
from ..models.reconciliation import ReconciliationRecord
from ..services.analytics_service import AnalyticsService
from ..services.partner_service import client_for_shop

analytics_bp = Blueprint('analytics', __name__)


@analytics_bp.route('/stats', methods=['GET'])
@require_shopify_auth
def program_stats():
    """Program totals and the paginated revenue ranking."""
    page = request.args.get('page', 1, type=int)
    service = AnalyticsService(client_for_shop(g.shop))
    return jsonify(service.program_stats(page=page))


@analytics_bp.route('/orders', methods=['GET'])
@require_shopify_auth
def partner_orders():
    """
    Orders per partner code.

    Query params: since, until (YYYY-MM-DD), profession, code
    """
    service = AnalyticsService(client_for_shop(g.shop))
    return jsonify(service.partner_orders(
        since=request.args.get('since'),
        until=request.args.get('until'),
        profession=request.args.get('profession'),
        code=request.args.get('code'),
    ))


@analytics_bp.route('/reconciliations', methods=['GET'])
@require_shopify_auth
def list_reconciliations():
    """Recent ledger rows, optionally filtered by status."""
    query = ReconciliationRecord.query.filter_by(shop_id=g.shop.id)
    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)

    limit = min(request.args.get('limit', 50, type=int), 200)
    records = query.order_by(ReconciliationRecord.created_at.desc()).limit(limit).all()
    return jsonify({'reconciliations': [r.to_dict() for r in records]})
