import json
from decimal import Decimal, InvalidOperation

import click
from flask.cli import with_appcontext

from diocese_site.extensions import db


def _decimal(ctx, param, value):
    if value is None:
        return None
    try:
        d = Decimal(str(value).replace(",", "."))
    except InvalidOperation:
        raise click.BadParameter(f"not a number: {value!r}")
    if not d.is_finite() or d <= 0:
        raise click.BadParameter("must be a positive number")
    return d.quantize(Decimal("0.01"))


@click.group("donations")
def donations_cli():
    """Donation pipeline operator commands."""


@donations_cli.command("seed-campaign")
@click.option("--title", required=True)
@click.option("--slug", default=None, help="Defaults to a slug of the title.")
@click.option("--description", default=None)
@click.option("--image-url", default=None)
@click.option("--goal", default=None, callback=_decimal, help="Goal amount (BRL).")
@click.option("--min-amount", default="1.00", callback=_decimal, show_default=True)
@click.option("--amounts", default="", help="Comma-separated suggested amounts, e.g. 20,50,100")
@click.option("--inactive", is_flag=True, default=False)
@with_appcontext
def seed_campaign(title, slug, description, image_url, goal, min_amount, amounts, inactive):
    """Create or update a donation campaign."""
    # lazy import to prevent circular imports
    from diocese_site.models import DonationCampaign, slugify

    suggested = [str(_decimal(None, None, a.strip())) for a in amounts.split(",") if a.strip()]
    slug = slug or slugify(title)

    campaign = DonationCampaign.query.filter_by(slug=slug).first()
    if campaign:
        click.echo(f"🔁 Updating existing campaign: {slug}")
    else:
        campaign = DonationCampaign(slug=slug)
        db.session.add(campaign)
        click.echo(f"✨ Creating campaign: {slug}")

    campaign.title = title
    campaign.description = description or campaign.description
    campaign.image_url = image_url or campaign.image_url
    campaign.goal_amount = goal if goal is not None else campaign.goal_amount
    campaign.min_amount = min_amount
    campaign.default_amounts = suggested
    campaign.active = not inactive

    try:
        db.session.commit()
    except ValueError as exc:
        db.session.rollback()
        raise click.ClickException(str(exc))

    click.echo(f"   → id={campaign.id} min={campaign.min_amount} amounts={suggested or '-'}")


@donations_cli.command("set-gateway")
@click.argument("provider", type=click.Choice(["mercadopago", "stripe"]))
@click.option("--environment", type=click.Choice(["test", "live"]), default=None, help="Active environment.")
@click.option("--test-public-key", default=None)
@click.option("--test-secret-key", default=None)
@click.option("--live-public-key", default=None)
@click.option("--live-secret-key", default=None)
@click.option("--webhook-secret", default=None)
@with_appcontext
def set_gateway(provider, environment, test_public_key, test_secret_key, live_public_key, live_secret_key, webhook_secret):
    """Create or update a gateway's credentials. Only the options given are changed."""
    from diocese_site.models import GatewaySettings

    row = GatewaySettings.query.filter_by(provider=provider).first()
    if row is None:
        row = GatewaySettings(provider=provider, active_environment=environment or "test")
        db.session.add(row)

    updates = {
        "test_public_key": test_public_key,
        "test_secret_key": test_secret_key,
        "live_public_key": live_public_key,
        "live_secret_key": live_secret_key,
        "webhook_secret": webhook_secret,
        "active_environment": environment,
    }
    for attr, value in updates.items():
        if value is not None:
            setattr(row, attr, value.strip())
    db.session.commit()

    env = row.active_environment
    click.echo(
        f"✅ {provider}: env={env} public_key={'set' if row.public_key_for(env) else 'MISSING'} "
        f"secret_key={'set' if row.secret_key_for(env) else 'MISSING'} "
        f"webhook_secret={'set' if row.webhook_secret else 'unset'}"
    )


@donations_cli.command("reconcile")
@click.argument("donation_id")
@click.option("--transaction-id", default=None, help="Provider payment id or Stripe PaymentIntent id (pi_...).")
@with_appcontext
def reconcile(donation_id, transaction_id):
    """Re-check a donation against its provider and print the stored view."""
    from diocese_site.errors import DonationError
    from diocese_site.services.resolver import resolve_status

    try:
        view = resolve_status(donation_id, transaction_id)
    except DonationError as exc:
        raise click.ClickException(f"{exc.code}: {exc}")
    click.echo(json.dumps(view, indent=2, ensure_ascii=False, default=str))
