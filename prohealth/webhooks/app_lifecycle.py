"""
App lifecycle webhook handlers.
"""
from datetime import datetime
from flask import Blueprint, request, jsonify, g, current_app

from . import require_webhook_verification
from ..extensions import db

app_lifecycle_bp = Blueprint('app_lifecycle', __name__)


@app_lifecycle_bp.route('/app/uninstalled', methods=['POST'])
@require_webhook_verification
def handle_app_uninstalled():
    """
    Handle APP_UNINSTALLED webhook.

    Marks the shop inactive and drops its credentials. Settings and the
    reconciliation ledger are kept for a re-install.
    """
    shop = g.webhook_shop

    shop.is_active = False
    shop.uninstalled_at = datetime.utcnow()
    shop.access_token = None
    shop.webhook_secret = None
    db.session.commit()

    current_app.logger.info(f'App uninstalled by {shop.shop_domain}')
    return jsonify({'success': True, 'shop': shop.shop_domain, 'action': 'marked_uninstalled'})


@app_lifecycle_bp.route('/app/scopes_update', methods=['POST'])
@require_webhook_verification
def handle_scopes_update():
    """Handle APP_SCOPES_UPDATE webhook: store the granted scope list."""
    shop = g.webhook_shop
    payload = request.get_json(silent=True) or {}

    scopes = payload.get('current') or []
    if isinstance(scopes, str):
        scopes = [s.strip() for s in scopes.split(',') if s.strip()]
    shop.scopes = ','.join(scopes)
    db.session.commit()

    current_app.logger.info(f'Scopes updated for {shop.shop_domain}: {shop.scopes}')
    return jsonify({'success': True, 'scopes': scopes})
