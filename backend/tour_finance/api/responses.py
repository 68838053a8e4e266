"""Response envelope: {"success": true, "data": ...} / {"success": false, "error": {...}}."""
from typing import Any

from pydantic import BaseModel
from starlette.responses import JSONResponse


def _dump(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, (list, tuple)):
        return [_dump(v) for v in value]
    return value


def ok(data: Any) -> dict:
    return {"success": True, "data": _dump(data)}


def error_response(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    error: dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})
