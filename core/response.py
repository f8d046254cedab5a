from typing import Any


def ok(data: Any = None):
    """Standard success envelope."""
    return {"ok": True, "data": data, "error": None}


def error(code: str = "internal_error", message: str = "An internal error occurred", data: Any = None):
    """Standard error envelope; data may carry a structured result (e.g. a rejected booking action)."""
    return {"ok": False, "data": data, "error": {"code": code, "message": message}}
