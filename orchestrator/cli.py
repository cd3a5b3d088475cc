import click
from flask.cli import with_appcontext
from orchestrator.extensions import db
from orchestrator.models import Organization, Event, Edition, InvoiceCounter
from orchestrator.models.api_key import PERMISSIONS
from orchestrator.models.webhook import DEFAULT_RETRY_COUNT, WEBHOOK_EVENTS
from orchestrator.billing import documents
from orchestrator.services import api_keys, webhook_dispatch
from orchestrator.utils.validators import clean_str, slugify

def _get_or_create_org(name: str, slug=None) -> Organization:
    slug = slug or slugify(name)
    org = db.session.query(Organization).filter(Organization.slug == slug).one_or_none()
    if org:
        return org
    org = Organization(name=name, slug=slug, is_active=True)
    db.session.add(org)
    db.session.flush()
    return org

@click.group()
def orgs():
    """Organization management."""

@orgs.command("create")
@click.option("--name", required=True)
@click.option("--slug", default=None, help="Defaults to a slug of --name")
@with_appcontext
def orgs_create(name, slug):
    name = clean_str(name)
    if not name:
        raise click.ClickException("Name is required")
    org = _get_or_create_org(name, slug)
    db.session.commit()
    click.echo(f"Organization id={org.id} slug={org.slug}")

@click.group()
def events():
    """Event and edition setup."""

@events.command("create")
@click.option("--org-id", type=int, required=True)
@click.option("--name", required=True)
@with_appcontext
def events_create(org_id, name):
    if not db.session.get(Organization, org_id):
        raise click.ClickException(f"Organization id {org_id} not found")
    ev = Event(organization_id=org_id, name=name, slug=slugify(name))
    db.session.add(ev)
    db.session.commit()
    click.echo(f"Event id={ev.id} slug={ev.slug}")

@events.command("add-edition")
@click.option("--event-id", type=int, required=True)
@click.option("--name", required=True)
@click.option("--year", type=int, default=None)
@click.option("--publish/--draft", default=False)
@with_appcontext
def events_add_edition(event_id, name, year, publish):
    ev = db.session.get(Event, event_id)
    if not ev:
        raise click.ClickException(f"Event id {event_id} not found")
    ed = Edition(
        organization_id=ev.organization_id,
        event_id=ev.id,
        name=name,
        slug=slugify(name),
        year=year,
        status="published" if publish else "draft",
    )
    db.session.add(ed)
    db.session.commit()
    click.echo(f"Edition id={ed.id} slug={ed.slug} status={ed.status}")

@click.group("api-keys")
def api_keys_group():
    """Public API key lifecycle."""

@api_keys_group.command("create")
@click.option("--name", required=True)
@click.option("--permission", "permissions", multiple=True, required=True, type=click.Choice(PERMISSIONS))
@click.option("--org-id", type=int, default=None)
@click.option("--event-id", type=int, default=None)
@click.option("--edition-id", type=int, default=None)
@click.option("--rate-limit", type=int, default=None, help="Requests per minute")
@click.option("--expires-in-days", type=int, default=None)
@click.option("--created-by", default=None)
@with_appcontext
def api_keys_create(name, permissions, org_id, event_id, edition_id, rate_limit, expires_in_days, created_by):
    try:
        key, plaintext = api_keys.generate(
            name=name,
            permissions=permissions,
            organization_id=org_id,
            event_id=event_id,
            edition_id=edition_id,
            rate_limit=rate_limit,
            expires_in_days=expires_in_days,
            created_by=created_by,
        )
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"API key id={key.id} prefix={key.key_prefix} expires_at={key.expires_at}")
    # Shown once; only the hash is stored
    click.echo(plaintext)

@api_keys_group.command("list")
@click.option("--org-id", type=int, default=None)
@with_appcontext
def api_keys_list(org_id):
    for key in api_keys.list_keys(organization_id=org_id):
        state = "active" if key.is_valid() else ("expired" if key.is_expired() else "revoked")
        soon = " (expiring soon)" if key.is_expiring_soon() else ""
        click.echo(f"{key.id}\t{key.key_prefix}\t{key.name}\t{state}{soon}\t{','.join(key.permissions or [])}")

@api_keys_group.command("revoke")
@click.option("--id", "key_id", type=int, required=True)
@with_appcontext
def api_keys_revoke(key_id):
    try:
        api_keys.revoke(key_id)
    except LookupError as e:
        raise click.ClickException(str(e))
    click.echo(f"Revoked API key {key_id}")

@api_keys_group.command("reactivate")
@click.option("--id", "key_id", type=int, required=True)
@with_appcontext
def api_keys_reactivate(key_id):
    try:
        api_keys.reactivate(key_id)
    except LookupError as e:
        raise click.ClickException(str(e))
    click.echo(f"Reactivated API key {key_id}")

@api_keys_group.command("delete")
@click.option("--id", "key_id", type=int, required=True)
@click.confirmation_option(prompt="Delete this API key permanently?")
@with_appcontext
def api_keys_delete(key_id):
    try:
        api_keys.delete(key_id)
    except LookupError as e:
        raise click.ClickException(str(e))
    click.echo(f"Deleted API key {key_id}")

@click.group()
def counters():
    """Document numbering counters (read-only)."""

@counters.command("show")
@click.option("--org-id", type=int, required=True)
@with_appcontext
def counters_show(org_id):
    rows = db.session.query(InvoiceCounter).filter_by(organization_id=org_id).order_by(InvoiceCounter.prefix).all()
    if not rows:
        click.echo(f"No documents issued for organization {org_id}")
        return
    for row in rows:
        click.echo(f"{row.prefix}\t{row.value}")

@click.group("documents")
def documents_group():
    """Invoice / credit-note PDFs."""

@documents_group.command("regenerate")
@click.option("--send/--no-send", default=False, help="Email regenerated documents again")
@with_appcontext
def documents_regenerate(send):
    count = documents.regenerate_missing(send=send)
    click.echo(f"Regenerated {count} document(s)")

@click.group("webhooks")
def webhooks_group():
    """Outgoing webhook subscriptions and deliveries."""

@webhooks_group.command("create")
@click.option("--name", required=True)
@click.option("--url", required=True)
@click.option("--event", "events", multiple=True, required=True, type=click.Choice(WEBHOOK_EVENTS))
@click.option("--org-id", type=int, default=None)
@click.option("--event-id", type=int, default=None)
@click.option("--edition-id", type=int, default=None)
@click.option("--header", "headers", multiple=True, help="Extra request header, as Name:value")
@click.option("--retry-count", type=int, default=DEFAULT_RETRY_COUNT, show_default=True)
@click.option("--created-by", default=None)
@with_appcontext
def webhooks_create(name, url, events, org_id, event_id, edition_id, headers, retry_count, created_by):
    extra = {}
    for raw in headers:
        key, sep, value = raw.partition(":")
        if not sep or not key.strip():
            raise click.ClickException(f"Header must look like Name:value, got {raw!r}")
        extra[key.strip()] = value.strip()
    try:
        webhook = webhook_dispatch.create_webhook(
            name=name,
            url=url,
            events=events,
            organization_id=org_id,
            event_id=event_id,
            edition_id=edition_id,
            headers=extra,
            retry_count=retry_count,
            created_by=created_by,
        )
    except ValueError as e:
        raise click.ClickException(str(e))
    click.echo(f"Webhook id={webhook.id} events={','.join(webhook.events)}")
    # Receivers need the secret to verify X-OEO-Signature
    click.echo(webhook.secret)

@webhooks_group.command("list")
@click.option("--org-id", type=int, default=None)
@with_appcontext
def webhooks_list(org_id):
    for webhook in webhook_dispatch.list_webhooks(organization_id=org_id):
        stats = webhook_dispatch.delivery_stats(webhook.id)
        state = "active" if webhook.is_active else "disabled"
        click.echo(f"{webhook.id}\t{webhook.name}\t{webhook.url}\t{state}\t{','.join(webhook.events or [])}"
                   f"\t{stats['delivered']}/{stats['total']} delivered")

@webhooks_group.command("disable")
@click.option("--id", "webhook_id", type=int, required=True)
@with_appcontext
def webhooks_disable(webhook_id):
    try:
        webhook_dispatch.set_active(webhook_id, False)
    except LookupError as e:
        raise click.ClickException(str(e))
    click.echo(f"Disabled webhook {webhook_id}")

@webhooks_group.command("enable")
@click.option("--id", "webhook_id", type=int, required=True)
@with_appcontext
def webhooks_enable(webhook_id):
    try:
        webhook_dispatch.set_active(webhook_id, True)
    except LookupError as e:
        raise click.ClickException(str(e))
    click.echo(f"Enabled webhook {webhook_id}")

@webhooks_group.command("delete")
@click.option("--id", "webhook_id", type=int, required=True)
@click.confirmation_option(prompt="Delete this webhook and its delivery history?")
@with_appcontext
def webhooks_delete(webhook_id):
    try:
        webhook_dispatch.delete_webhook(webhook_id)
    except LookupError as e:
        raise click.ClickException(str(e))
    click.echo(f"Deleted webhook {webhook_id}")

@webhooks_group.command("deliveries")
@click.option("--id", "webhook_id", type=int, required=True)
@click.option("--page", type=int, default=1)
@with_appcontext
def webhooks_deliveries(webhook_id, page):
    for d in webhook_dispatch.delivery_history(webhook_id, page=page).items:
        code = d.status_code if d.status_code is not None else "-"
        click.echo(f"{d.id}\t{d.event}\t{d.status}\tattempt={d.attempt}\t{code}\t{d.error or ''}".rstrip())

@webhooks_group.command("retry")
@click.option("--delivery-id", type=int, required=True)
@with_appcontext
def webhooks_retry(delivery_id):
    try:
        d = webhook_dispatch.retry_delivery(delivery_id)
    except LookupError as e:
        raise click.ClickException(str(e))
    click.echo(f"Delivery {d.id}: {d.status}")

@webhooks_group.command("retry-pending")
@with_appcontext
def webhooks_retry_pending():
    """Send deliveries whose retry time has come (run from cron)."""
    done = webhook_dispatch.process_pending_retries()
    ok = sum(1 for d in done if d.delivered_at is not None)
    click.echo(f"Retried {len(done)} delivery(ies), {ok} succeeded")

def register_cli(app):
    app.cli.add_command(orgs)
    app.cli.add_command(events)
    app.cli.add_command(api_keys_group)
    app.cli.add_command(counters)
    app.cli.add_command(documents_group)
    app.cli.add_command(webhooks_group)
