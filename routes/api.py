"""Shopper-facing order, coupon and checkout routes."""

from __future__ import annotations

from typing import Any, Dict

from flask import Blueprint, current_app, jsonify, request

from common.utils.auth import Caller, caller_from_header


api_bp = Blueprint("store_api", __name__, url_prefix="/api")


def _components() -> Dict[str, Any]:
    return current_app.extensions["store_components"]


def _config():
    return current_app.config["STORE_CONFIG"]


def _caller() -> Caller:
    return caller_from_header(request.headers.get("Authorization"), _config().jwt_access_secret)


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object")
    return payload


@api_bp.post("/orders")
def create_order():
    caller = _caller()
    try:
        payload = _json_body()
        order = _components()["order_service"].create_order(
            user_id=caller.id,
            items=payload.get("items"),
            coupon_code=payload.get("coupon_code"),
            currency=payload.get("currency"),
        )
    except ValueError as exc:
        return jsonify({"error": "ValidationError", "message": str(exc)}), 400
    return jsonify({"order": order}), 201


@api_bp.get("/orders")
def list_orders():
    caller = _caller()
    include_all = request.args.get("all", "").lower() == "true"
    orders = _components()["order_service"].list_orders(caller, include_all=include_all)
    return jsonify({"orders": orders})


@api_bp.get("/orders/history")
def order_history():
    caller = _caller()
    try:
        result = _components()["order_service"].order_history(
            caller,
            status=request.args.get("status"),
            start_date=request.args.get("start_date"),
            end_date=request.args.get("end_date"),
            limit=request.args.get("limit"),
            offset=request.args.get("offset"),
        )
    except ValueError as exc:
        return jsonify({"error": "ValidationError", "message": str(exc)}), 400
    return jsonify(result)


@api_bp.get("/orders/<order_id>")
def get_order(order_id: str):
    order = _components()["order_service"].get_order(order_id, _caller())
    return jsonify({"order": order})


@api_bp.get("/orders/<order_id>/tracking")
def get_order_tracking(order_id: str):
    order = _components()["order_service"].get_tracking(order_id, _caller())
    return jsonify({"order": order})


@api_bp.post("/orders/<order_id>/cancel")
def cancel_order(order_id: str):
    order = _components()["order_status_service"].cancel_order(order_id, _caller())
    return jsonify({"order": order})


@api_bp.post("/coupons/validate")
def validate_coupon():
    try:
        payload = _json_body()
        result = _components()["coupon_service"].validate_coupon(
            code=payload.get("code"),
            total_cents=payload.get("total_cents"),
        )
    except ValueError as exc:
        return jsonify({"error": "ValidationError", "message": str(exc)}), 400
    return jsonify(result)


@api_bp.post("/payments/checkout")
def create_checkout():
    caller = _caller()
    try:
        payload = _json_body()
    except ValueError as exc:
        return jsonify({"error": "ValidationError", "message": str(exc)}), 400
    order_id = payload.get("order_id")
    if not isinstance(order_id, str) or not order_id.strip():
        return jsonify({"error": "ValidationError", "message": "order_id is required"}), 400
    order_id = order_id.strip()
    result = _components()["payment_service"].create_checkout(order_id, caller)
    return jsonify(result)
