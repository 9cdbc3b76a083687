from datetime import date
from flask import Blueprint, request, g
from app.version import API_PREFIX
from app.utils import auth_required, role_required, transactional, ok
from app.utils.validation import validate_schema
from app.schemas.admin import (
    AddInventoryRequest,
    InventorySummaryQuery,
    ForecastQuery,
    OrderListQuery,
    AdminCancelRequest,
    StatusUpdateRequest,
)
from app.services import inventory_ledger
from app.services.orders import admin_cancel, advance_status, list_orders, get_order, order_history
from app.services.payments import get_gateway

admin_bp = Blueprint("admin", __name__, url_prefix=f"{API_PREFIX}/admin")


@admin_bp.before_request
@auth_required
@role_required("admin")
def _enforce_admin_role():
    """Ensure the requester is an authenticated admin."""
    return None


# --- Inventory ---

@admin_bp.route("/inventory", methods=["POST"])
@validate_schema(AddInventoryRequest)
def add_inventory():
    req = request.validated_data
    with transactional("Failed to add inventory"):
        units = inventory_ledger.create_units(req.city_id, req.product_id, req.quantity)
    return ok({"units": [u.to_dict() for u in units]}, message="Inventory added", status=201)


@admin_bp.route("/inventory/<int:item_id>/retire", methods=["POST"])
def retire_unit(item_id):
    with transactional("Failed to retire unit"):
        item = inventory_ledger.retire(item_id)
    return ok(item.to_dict())


@admin_bp.route("/inventory/<int:item_id>/reactivate", methods=["POST"])
def reactivate_unit(item_id):
    with transactional("Failed to reactivate unit"):
        item = inventory_ledger.reactivate(item_id)
    return ok(item.to_dict())


@admin_bp.route("/inventory/summary", methods=["GET"])
@validate_schema(InventorySummaryQuery, source="args")
def inventory_summary():
    req = request.validated_data
    return ok({"products": inventory_ledger.inventory_summary(req.city_id, req.on_date or date.today())})


@admin_bp.route("/inventory/forecast", methods=["GET"])
@validate_schema(ForecastQuery, source="args")
def occupancy_forecast():
    req = request.validated_data
    return ok({"days": inventory_ledger.occupancy_forecast(req.city_id, req.start, req.end)})


# --- Orders ---

@admin_bp.route("/orders", methods=["GET"])
@validate_schema(OrderListQuery, source="args")
def orders():
    req = request.validated_data
    found = list_orders(req.status, req.page, req.per_page)
    return ok({"orders": [o.to_dict() for o in found], "page": req.page})


@admin_bp.route("/orders/<int:order_id>", methods=["GET"])
def order_detail(order_id):
    order = get_order(order_id)
    data = order.to_dict()
    data["admin_notes"] = order.admin_notes
    data["history"] = [log.to_dict() for log in order_history(order_id)]
    return ok(data)


@admin_bp.route("/orders/<int:order_id>/cancel", methods=["POST"])
@validate_schema(AdminCancelRequest)
def cancel_order(order_id):
    req = request.validated_data
    result = admin_cancel(order_id, g.subject, req.reason, get_gateway(), refund=req.refund)
    return ok(result.to_dict(), message="Order cancelled")


@admin_bp.route("/orders/<int:order_id>/status", methods=["POST"])
@validate_schema(StatusUpdateRequest)
def update_status(order_id):
    order = advance_status(order_id, request.validated_data.status, g.subject)
    return ok(order.to_dict(), message="Status updated")
