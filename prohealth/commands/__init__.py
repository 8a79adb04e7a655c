"""
CLI Commands for the partner program.

Usage:
    flask partners setup-structure --shop my-shop.myshopify.com
    flask partners register-webhooks [--shop ...]
    flask partners retry-deposits [--shop ...] [--limit 50]
    flask partners reconcile-order --shop ... order.json
    flask partners stats --shop ...
"""
from .partners import init_app as init_partner_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_partner_commands(app)
