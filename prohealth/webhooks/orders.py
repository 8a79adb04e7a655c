"""
Order webhook handlers.

orders/create feeds the credit reconciler. The response is always an empty
200 once the signature checks out: failures are kept in the reconciliation
ledger and retried by `flask partners retry-deposits`, not by Shopify.
"""
from flask import Blueprint, request, g, current_app

from . import require_webhook_verification
from ..extensions import db
from ..services.credit_reconciler import CreditReconciler
from ..services.partner_service import client_for_shop
from ..utils.exceptions import ProHealthError

orders_bp = Blueprint('order_webhooks', __name__)


@orders_bp.route('/orders/create', methods=['POST'])
@require_webhook_verification
def handle_order_created():
    """Handle ORDERS_CREATE webhook."""
    shop = g.webhook_shop
    if not shop.is_active or not shop.access_token:
        current_app.logger.info(f'Ignoring order for inactive shop {shop.shop_domain}')
        return '', 200

    order = request.get_json(silent=True) or {}

    try:
        result = CreditReconciler(shop, client_for_shop(shop)).reconcile_order(order)
        current_app.logger.info(
            f"Order {order.get('id')} on {shop.shop_domain}: {result.status}"
            + (f' (deposited {result.deposited})' if result.deposited else '')
        )
    except ProHealthError as e:
        db.session.rollback()
        current_app.logger.error(f"Reconciliation of order {order.get('id')} failed: {e.message}")
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception(f"Unexpected error reconciling order {order.get('id')}: {e}")

    return '', 200
