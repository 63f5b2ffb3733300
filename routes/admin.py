"""Administrator routes: order status updates and coupon management."""

from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from common.services.errors import ForbiddenError
from common.utils.auth import Caller, caller_from_header


admin_bp = Blueprint("store_admin", __name__, url_prefix="/api/admin")


def _components() -> dict:
    return current_app.extensions["store_components"]


def _config():
    return current_app.config["STORE_CONFIG"]


def _require_admin() -> Caller:
    caller = caller_from_header(request.headers.get("Authorization"), _config().jwt_access_secret)
    if not caller.is_admin:
        raise ForbiddenError()
    return caller


@admin_bp.before_request
def guard_admin_routes():
    _require_admin()
    return None


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object")
    return payload


def _bad_request(exc: ValueError):
    return jsonify({"error": "ValidationError", "message": str(exc)}), 400


@admin_bp.patch("/orders/<order_id>/status")
def update_order_status(order_id: str):
    try:
        payload = _json_body()
        order = _components()["order_status_service"].update_status(
            order_id,
            _require_admin(),
            status=payload.get("status"),
            note=payload.get("note"),
            tracking_number=payload.get("tracking_number"),
        )
    except ValueError as exc:
        return _bad_request(exc)
    return jsonify({"order": order})


@admin_bp.get("/coupons")
def list_coupons():
    return jsonify({"coupons": _components()["coupon_service"].list_coupons()})


@admin_bp.post("/coupons")
def create_coupon():
    try:
        payload = _json_body()
        coupon = _components()["coupon_service"].create_coupon(payload)
    except ValueError as exc:
        return _bad_request(exc)
    return jsonify({"coupon": coupon}), 201


@admin_bp.patch("/coupons/<coupon_id>")
def update_coupon(coupon_id: str):
    try:
        payload = _json_body()
        coupon = _components()["coupon_service"].update_coupon(coupon_id, payload)
    except ValueError as exc:
        return _bad_request(exc)
    return jsonify({"coupon": coupon})


@admin_bp.delete("/coupons/<coupon_id>")
def delete_coupon(coupon_id: str):
    _components()["coupon_service"].delete_coupon(coupon_id)
    return jsonify({"message": "Coupon deleted successfully"})
