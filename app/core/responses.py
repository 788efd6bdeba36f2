"""Standardized API response utilities."""

import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse


class CustomJSONEncoder(json.JSONEncoder):
    """JSON encoder for datetimes and numeric types coming back from asyncpg."""

    def default(self, obj):
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return int(obj) if obj == obj.to_integral_value() else float(obj)
        if isinstance(obj, bytes):
            return obj.decode("utf-8")
        return super().default(obj)


def success_response(data: Any = None, message: str | None = None) -> dict[str, Any]:
    """Create a successful API response."""
    return {"success": True, "data": data, "message": message}


def error_body(
    message: str,
    code: str,
    errors: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return {"success": False, "message": message, "code": code, "data": None, "errors": errors}


def error_response_dict(
    error_dict: dict[str, Any],
    status_code: int = status.HTTP_400_BAD_REQUEST,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Create an error response as a JSONResponse (for exception handlers)."""
    content = json.loads(json.dumps(error_dict, cls=CustomJSONEncoder))
    return JSONResponse(status_code=status_code, content=content, headers=headers)
