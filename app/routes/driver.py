from datetime import date
from flask import Blueprint, request, g
from app.version import API_PREFIX
from app.utils import auth_required, role_required, ok
from app.utils.validation import validate_schema
from app.schemas.admin import StatusUpdateRequest, RouteQuery
from app.services.orders import advance_status
from models import Order
from models.order import CONFIRMED, DELIVERED, RETURN_PICKUP

driver_bp = Blueprint("driver", __name__, url_prefix=f"{API_PREFIX}/driver")


def _stop(order, kind):
    return {
        "order_id": order.id,
        "kind": kind,
        "customer_name": order.customer_name,
        "address": order.delivery_address if kind == "delivery" else order.return_address,
        "window": order.delivery_window if kind == "delivery" else order.return_window,
        "status": order.status,
    }


@driver_bp.route("/route", methods=["GET"])
@auth_required
@role_required(["driver:view_route", "admin"])
@validate_schema(RouteQuery, source="args")
def route_sheet():
    req = request.validated_data
    day = req.day or date.today()
    deliveries = Order.query.filter_by(delivery_city_id=req.city_id, delivery_date=day, status=CONFIRMED).all()
    pickups = Order.query.filter_by(
        return_city_id=req.city_id, return_date=day, status=DELIVERED, return_method=RETURN_PICKUP
    ).all()
    stops = [_stop(o, "delivery") for o in deliveries] + [_stop(o, "pickup") for o in pickups]
    return ok({"date": day.isoformat(), "stops": stops})


@driver_bp.route("/orders/<int:order_id>/status", methods=["POST"])
@auth_required
@role_required(["driver:advance_order", "admin"])
@validate_schema(StatusUpdateRequest)
def update_status(order_id):
    order = advance_status(order_id, request.validated_data.status, g.subject)
    return ok({"order_id": order.id, "status": order.status}, message="Status updated")
