"""Standard JSON envelope used by every API response"""

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def success_response(
    data: Any = None, message: Optional[str] = None, status_code: int = 200
) -> JSONResponse:
    """Wrap a successful result as {success, data, message?, timestamp}"""
    content = {"success": True, "data": data, "timestamp": utc_timestamp()}
    if message:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


def error_response(message: str, status_code: int = 500, errors: Any = None) -> JSONResponse:
    """Wrap a failure as {success: false, message, errors?, timestamp}"""
    content = {"success": False, "message": message, "timestamp": utc_timestamp()}
    if errors is not None:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


def paginated(items: list, page: int, limit: int, total: int) -> dict:
    """Build a page of results with pagination metadata"""
    total_pages = (total + limit - 1) // limit if limit else 0
    return {
        "items": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
