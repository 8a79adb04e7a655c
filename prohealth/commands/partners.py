"""
CLI Commands for the partner program.

# Retry failed store-credit deposits (every 15 minutes)
*/15 * * * * cd /app && flask partners retry-deposits
"""
import json

import click
from flask.cli import with_appcontext

from ..models import Shop, ReconciliationStatus
from ..services.credit_reconciler import CreditReconciler
from ..services.partner_service import PartnerService, client_for_shop
from ..services.analytics_service import AnalyticsService
from ..utils.exceptions import ProHealthError


@click.group('partners')
def partners_cli():
    """Partner program commands."""
    pass


def _get_shop(shop_domain):
    shop = Shop.query.filter_by(shop_domain=shop_domain).first()
    if not shop:
        raise click.ClickException(f'Shop {shop_domain} not found')
    if not shop.access_token:
        raise click.ClickException(f'Shop {shop_domain} has no access token (not installed?)')
    return shop


def _shops(shop_domain):
    if shop_domain:
        return [_get_shop(shop_domain)]
    return Shop.query.filter(Shop.is_active.is_(True), Shop.access_token.isnot(None)).all()


@partners_cli.command('setup-structure')
@click.option('--shop', 'shop_domain', required=True, help='myshopify.com domain')
@with_appcontext
def setup_structure(shop_domain):
    """Create the partner metaobject and customer metafield definitions."""
    shop = _get_shop(shop_domain)
    service = PartnerService(client_for_shop(shop))
    try:
        result = service.setup_structure()
    except ProHealthError as e:
        raise click.ClickException(e.message)
    click.echo(json.dumps(result, indent=2, default=str))


@partners_cli.command('register-webhooks')
@click.option('--shop', 'shop_domain', help='Specific shop (or all active shops if not specified)')
@with_appcontext
def register_webhooks_command(shop_domain):
    """Subscribe shops to orders/create and app lifecycle webhooks."""
    from ..api.shopify_oauth import register_webhooks

    for shop in _shops(shop_domain):
        click.echo(f"\nRegistering webhooks for {shop.shop_domain}")
        try:
            results = register_webhooks(shop)
        except ProHealthError as e:
            click.echo(f"  Failed: {e.message}")
            continue
        for entry in results:
            click.echo(f"  {entry['topic']}: {entry['status']}")


@partners_cli.command('retry-deposits')
@click.option('--shop', 'shop_domain', help='Specific shop (or all active shops if not specified)')
@click.option('--limit', default=50, show_default=True, help='Max ledger rows per shop')
@with_appcontext
def retry_deposits(shop_domain, limit):
    """Retry ledger rows still pending (failed deposit, counter update or lock wait)."""
    total_done = 0
    total_pending = 0

    for shop in _shops(shop_domain):
        results = CreditReconciler(shop, client_for_shop(shop)).retry_failed(limit=limit)
        if not results:
            continue

        click.echo(f"\nProcessing shop: {shop.shop_domain}")
        for result in results:
            line = f"  Order {result.order_id}: {result.status}"
            if result.deposited:
                line += f" (deposited {result.deposited})"
            if result.error:
                line += f" - {result.error}"
            click.echo(line)
            if result.status in ReconciliationStatus.PENDING:
                total_pending += 1
            else:
                total_done += 1

    click.echo(f"\nTOTAL: {total_done} completed, {total_pending} still pending")


@partners_cli.command('reconcile-order')
@click.option('--shop', 'shop_domain', required=True, help='myshopify.com domain')
@click.argument('payload', type=click.File('r'))
@with_appcontext
def reconcile_order(shop_domain, payload):
    """
    Reconcile an orders/create payload saved as JSON.

    Useful to replay an order the webhook missed.
    """
    shop = _get_shop(shop_domain)
    try:
        order = json.load(payload)
    except ValueError as e:
        raise click.ClickException(f'Invalid JSON: {e}')

    try:
        result = CreditReconciler(shop, client_for_shop(shop)).reconcile_order(order)
    except ProHealthError as e:
        raise click.ClickException(e.message)
    click.echo(json.dumps(result.to_dict(), indent=2))


@partners_cli.command('stats')
@click.option('--shop', 'shop_domain', required=True, help='myshopify.com domain')
@click.option('--top', default=5, show_default=True, help='Partners to list')
@with_appcontext
def stats(shop_domain, top):
    """Show program totals and the top partners by revenue."""
    shop = _get_shop(shop_domain)
    result = AnalyticsService(client_for_shop(shop)).program_stats(per_page=top)

    click.echo(f"\nPartner program for {shop.shop_domain}:")
    click.echo(f"  Partners: {result['active_partners']} active / {result['total_partners']} total")
    click.echo(f"  Orders: {result['total_orders']}")
    click.echo(f"  Revenue: {result['total_revenue']:.2f}")
    click.echo(f"  Credit earned: {result['total_credit_earned']:.2f}")

    if result['ranking']:
        click.echo("\n  Top Partners:")
        for p in result['ranking']:
            click.echo(f"    {p['rank']}. {p['code']} {p['name']}: {p['revenue']:.2f} "
                       f"({p['orders_count']} orders, {p['credit_earned']:.2f} credit)")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(partners_cli)
