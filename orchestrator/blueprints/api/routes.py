from flask import jsonify, request
from . import bp
from .errors import api_error
from orchestrator.extensions import db
from orchestrator.models import Organization, Event, Edition, TicketType, EditionSponsor
from orchestrator.services import orders as order_service
from orchestrator.services.policy import (
    get_scoped_or_none,
    require_api_key,
    scoped_select,
)
from orchestrator.utils.helpers import safe_int

API_VERSION = "v1"
MAX_PER_PAGE = 100
PUBLIC_SPONSOR_STATUSES = ("confirmed", "paid")


def _paginated(select):
    """db.paginate reads ?page=&per_page= (default 20, capped at MAX_PER_PAGE)."""
    page = db.paginate(select, max_per_page=MAX_PER_PAGE, error_out=False)
    return jsonify({
        "data": [row.to_api() for row in page.items],
        "meta": {
            "page": page.page,
            "perPage": page.per_page,
            "total": page.total,
            "totalPages": page.pages,
        },
    })


def _single(model, record_id, label):
    record = get_scoped_or_none(model, record_id)
    if record is None:
        return None, api_error(f"{label} not found", 404)
    return record, None


@bp.get("")
@bp.get("/")
def index():
    return jsonify({"data": {
        "version": API_VERSION,
        "endpoints": [
            "/organizations",
            "/events",
            "/editions",
            "/editions/<id>/ticket-types",
            "/editions/<id>/sponsors",
            "/editions/<id>/orders",
        ],
    }})


# ---------- Organizations ----------

@bp.get("/organizations")
@require_api_key("read:organizations")
def list_organizations():
    q = scoped_select(Organization, Organization.is_active.is_(True)).order_by(Organization.id)
    return _paginated(q)


@bp.get("/organizations/<int:org_id>")
@require_api_key("read:organizations")
def get_organization(org_id):
    org, err = _single(Organization, org_id, "Organization")
    return err or jsonify({"data": org.to_api()})


# ---------- Events ----------

@bp.get("/events")
@require_api_key("read:events")
def list_events():
    where = []
    org_id = safe_int(request.args.get("organization_id"))
    if org_id is not None:
        where.append(Event.organization_id == org_id)
    return _paginated(scoped_select(Event, *where).order_by(Event.id))


@bp.get("/events/<int:event_id>")
@require_api_key("read:events")
def get_event(event_id):
    event, err = _single(Event, event_id, "Event")
    return err or jsonify({"data": event.to_api()})


# ---------- Editions ----------

@bp.get("/editions")
@require_api_key("read:editions")
def list_editions():
    where = []
    event_id = safe_int(request.args.get("event_id"))
    if event_id is not None:
        where.append(Edition.event_id == event_id)
    status = (request.args.get("status") or "").strip()
    if status:
        where.append(Edition.status == status)
    return _paginated(scoped_select(Edition, *where).order_by(Edition.id))


@bp.get("/editions/<int:edition_id>")
@require_api_key("read:editions")
def get_edition(edition_id):
    edition, err = _single(Edition, edition_id, "Edition")
    return err or jsonify({"data": edition.to_api()})


@bp.get("/editions/<int:edition_id>/ticket-types")
@require_api_key("read:ticket-types")
def list_ticket_types(edition_id):
    edition, err = _single(Edition, edition_id, "Edition")
    if err:
        return err
    q = scoped_select(
        TicketType,
        TicketType.edition_id == edition.id,
        TicketType.is_active.is_(True),
    ).order_by(TicketType.price, TicketType.id)
    return _paginated(q)


@bp.get("/editions/<int:edition_id>/sponsors")
@require_api_key("read:sponsors")
def list_sponsors(edition_id):
    edition, err = _single(Edition, edition_id, "Edition")
    if err:
        return err
    q = scoped_select(
        EditionSponsor,
        EditionSponsor.edition_id == edition.id,
        EditionSponsor.status.in_(PUBLIC_SPONSOR_STATUSES),
    ).order_by(EditionSponsor.company_name)
    return _paginated(q)


# ---------- Orders ----------

@bp.post("/editions/<int:edition_id>/orders")
@require_api_key("write:orders")
def create_order(edition_id):
    edition, err = _single(Edition, edition_id, "Edition")
    if err:
        return err
    if edition.status != "published":
        return api_error("Edition is not open for orders", 422)

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error("Request body must be a JSON object", 422)

    ticket_type = db.session.get(TicketType, safe_int(data.get("ticketTypeId"), 0))
    created = order_service.create_order(edition, ticket_type, data)
    order = created["order"]
    body = {**order.to_api(), "checkoutUrl": created["checkoutUrl"]}
    return jsonify({"data": body}), 201
