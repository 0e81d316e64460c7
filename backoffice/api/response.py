# FILE: backoffice/api/response.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from backoffice.core.errors import BackofficeError


def ok(
    data: Any = None,
    *,
    meta: Optional[Dict[str, Any]] = None,
    status_code: int = 200,
) -> JSONResponse:
    """
    Standard success wrapper:
    {
      "success": true,
      "data": ...,
      "meta": {...} (optional)
    }
    """
    payload: Dict[str, Any] = {"success": True, "data": data}
    if meta is not None:
        payload["meta"] = meta

    # jsonable_encoder converts datetime/date/Decimal/Enum etc. to JSON-safe types
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def err(
    message: str = "Something went wrong",
    *,
    status_code: int = 400,
    code: str = "ERROR",
    details: Any = None,
) -> JSONResponse:
    """
    Standard error wrapper:
    {
      "success": false,
      "error": {
        "code": "...",
        "message": "...",
        "details": ... (optional)
      }
    }
    """
    error: Dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    payload = {"success": False, "error": error}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def err_from(exc: BackofficeError) -> JSONResponse:
    return err(exc.message, status_code=exc.status_code, code=exc.code, details=exc.details)


def page_meta(total: int, limit: int, offset: int) -> Dict[str, Any]:
    return {"total": total, "limit": limit, "offset": offset}
