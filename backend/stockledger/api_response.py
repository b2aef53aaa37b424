# Overview: JSON envelope shared by the stock and transaction blueprints.

from __future__ import annotations

from typing import Any

from flask import jsonify


def success_response(data: Any, status: int = 200, meta: Any = None):
    body: dict = {"success": True, "data": data}
    if meta is not None:
        body["meta"] = meta
    return jsonify(body), status


def error_response(message: str, status: int = 500, details: Any = None):
    body: dict = {"success": False, "error": message}
    if details:
        body["details"] = details
    return jsonify(body), status
