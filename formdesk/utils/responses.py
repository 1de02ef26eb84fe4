"""
Uniform JSON response envelopes
"""

from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(
    status_code: int, message: str, data: Optional[Any] = None
) -> JSONResponse:
    content: Dict[str, Any] = {"status_code": status_code, "message": message}
    if data is not None:
        content["data"] = data
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


def error_response(
    status_code: int,
    message: str,
    error: str,
    errors: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    content: Dict[str, Any] = {
        "status_code": status_code,
        "message": message,
        "error": error,
    }
    if errors:
        content["errors"] = errors
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))
