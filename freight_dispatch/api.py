"""
HTTP boundary (FastAPI).

Every response uses the same envelope: {success, code, message, data, meta}.
Business errors map to their status code; anything unexpected becomes a
generic 500 and is logged server-side.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any, Optional

import structlog
from fastapi import Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .core.config import ConfigManager, get_config
from .core.errors import FreightDispatchError, ValidationError
from .core.logging import configure_logging
from .data.models import Page, WireModel
from .service import DispatchService

logger = structlog.get_logger(component="api")

STATUS_MESSAGES = {
    200: "OK",
    201: "Created",
    400: "Bad Request",
    404: "Not Found",
    409: "Conflict",
    500: "Internal Server Error",
    503: "Service Unavailable",
}

# Query keys consumed by the deadhead search itself.
_DEADHEAD_PARAMS = (
    "originLat",
    "originLng",
    "originStr",
    "destinationLat",
    "destinationLng",
    "destinationStr",
    "dhoRadius",
    "dhdRadius",
)


def send(
    status_code: int = 200,
    message: Optional[str] = None,
    data: Any = None,
    meta: Optional[dict[str, Any]] = None,
) -> JSONResponse:
    """Standard response envelope."""
    if isinstance(data, WireModel):
        data = data.to_wire()
    elif isinstance(data, list):
        data = [item.to_wire() if isinstance(item, WireModel) else item for item in data]
    return JSONResponse(
        status_code=status_code,
        content={
            "success": 200 <= status_code < 300,
            "code": status_code,
            "message": message or STATUS_MESSAGES.get(status_code, ""),
            "data": data,
            "meta": meta or {},
        },
    )


def send_page(page: Page, message: str) -> JSONResponse:
    return send(200, message, page.results, page.meta)


def _float(params: dict[str, str], key: str) -> Optional[float]:
    raw = params.get(key)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"Invalid number provided for field {key}") from None


def _point(params: dict[str, str], prefix: str) -> Optional[dict[str, Any]]:
    lat = _float(params, f"{prefix}Lat")
    lng = _float(params, f"{prefix}Lng")
    if lat is None or lng is None:
        return None
    return {"str": params.get(f"{prefix}Str") or f"{lat},{lng}", "lat": lat, "lng": lng}


def create_app(
    service: Optional[DispatchService] = None,
    config_manager: Optional[ConfigManager] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service: Optional pre-built service (tests inject one over InMemoryStore)
        config_manager: Optional config manager (defaults to global instance)
    """
    config_manager = config_manager or get_config()
    if service is None:
        configure_logging(config_manager.env.log_level, config_manager.env.log_json)
        service = DispatchService(config_manager=config_manager)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        service.close()

    app = FastAPI(title="Freight Dispatch API", version="0.1.0", lifespan=lifespan)
    app.state.service = service

    @app.exception_handler(FreightDispatchError)
    async def business_error(request: Request, exc: FreightDispatchError) -> JSONResponse:
        logger.info(
            "request_failed",
            path=request.url.path,
            error=type(exc).__name__,
            status_code=exc.status_code,
        )
        return send(exc.status_code, exc.message, exc.details or None)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"field": ".".join(str(part) for part in e["loc"]), "message": e["msg"]}
            for e in exc.errors()
        ]
        return send(400, ValidationError.default_message, {"errors": errors})

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled_error", path=request.url.path, error=str(exc), exc_info=exc)
        return send(500, "An unexpected server error occurred")

    # Sequences

    @app.post("/api/sequences/{name}/next")
    def allocate_sequence(name: str):
        value = service.allocate_sequence(name)
        return send(200, f"{name} allocated", {"name": name, "value": value})

    @app.get("/api/sequences/{name}")
    def peek_sequence(name: str):
        return send(200, None, {"name": name, "value": service.sequences.peek(name)})

    @app.post("/api/sequences/{name}/reserve")
    def reserve_sequence(name: str, body: dict[str, Any] = Body(...)):
        result = service.reserve_sequence(name, body.get("value"))
        if not result.ok:
            message = f"The provided {name} is already in use. Suggested {name}: {result.suggested}"
            return send(409, message, result)
        return send(200, f"{name} reserved", result)

    # Dispatches

    @app.post("/api/dispatches")
    def create_dispatch(body: dict[str, Any] = Body(...)):
        return send(201, "Dispatch created successfully", service.create_dispatch(body))

    @app.get("/api/dispatches")
    def list_dispatches(request: Request):
        page = service.list_dispatches(dict(request.query_params))
        return send_page(page, "Dispatches retrieved successfully")

    @app.post("/api/dispatches/refresh-age")
    def refresh_dispatch_age(body: dict[str, Any] = Body(...)):
        updated = service.refresh_age("dispatch", body.get("ids"))
        return send(200, f"Age refreshed for {len(updated)} load(s)", updated)

    @app.get("/api/dispatches/{dispatch_id}")
    def get_dispatch(dispatch_id: str):
        return send(200, None, service.get_dispatch(dispatch_id))

    @app.patch("/api/dispatches/{dispatch_id}")
    def update_dispatch(dispatch_id: str, body: dict[str, Any] = Body(...)):
        return send(200, "Dispatch updated successfully", service.update_dispatch(dispatch_id, body))

    @app.delete("/api/dispatches/{dispatch_id}")
    def delete_dispatch(dispatch_id: str):
        service.delete_dispatch(dispatch_id)
        return send(200, "Dispatch deleted successfully")

    @app.put("/api/dispatches/{dispatch_id}/status")
    def transition(dispatch_id: str, body: dict[str, Any] = Body(...)):
        dispatch = service.transition(dispatch_id, body.get("status"))
        return send(200, f"Status updated to {dispatch.status.value}", dispatch)

    @app.get("/api/dispatches/{dispatch_id}/matches")
    def match_trucks(dispatch_id: str, request: Request):
        params = request.query_params
        page = service.match_trucks_for_load(
            dispatch_id,
            page=params.get("page"),
            limit=params.get("limit"),
            sort=params.get("sort"),
        )
        return send_page(page, "Matching trucks retrieved successfully")

    # Load board

    @app.get("/api/loads/deadhead")
    def search_loads_by_deadhead(request: Request):
        params = dict(request.query_params)
        page = service.search_loads_by_deadhead(
            origin=_point(params, "origin"),
            destination=_point(params, "destination"),
            dho_radius=_float(params, "dhoRadius"),
            dhd_radius=_float(params, "dhdRadius"),
            params={k: v for k, v in params.items() if k not in _DEADHEAD_PARAMS},
        )
        return send_page(page, "Loads retrieved successfully")

    # Trucks

    @app.post("/api/trucks")
    def create_truck(body: dict[str, Any] = Body(...)):
        return send(201, "Truck created successfully", service.create_truck(body))

    @app.get("/api/trucks")
    def list_trucks(request: Request):
        page = service.list_trucks(dict(request.query_params))
        return send_page(page, "Trucks retrieved successfully")

    @app.post("/api/trucks/refresh-age")
    def refresh_truck_age(body: dict[str, Any] = Body(...)):
        updated = service.refresh_age("truck", body.get("ids"))
        return send(200, f"Age refreshed for {len(updated)} truck(s)", updated)

    @app.get("/api/trucks/{truck_id}")
    def get_truck(truck_id: str):
        return send(200, None, service.get_truck(truck_id))

    @app.patch("/api/trucks/{truck_id}")
    def update_truck(truck_id: str, body: dict[str, Any] = Body(...)):
        return send(200, "Truck updated successfully", service.update_truck(truck_id, body))

    @app.delete("/api/trucks/{truck_id}")
    def delete_truck(truck_id: str):
        service.delete_truck(truck_id)
        return send(200, "Truck deleted successfully")

    @app.get("/api/trucks/{truck_id}/matches")
    def match_loads(truck_id: str, request: Request):
        params = request.query_params
        page = service.match_loads_for_truck(
            truck_id,
            page=params.get("page"),
            limit=params.get("limit"),
            sort=params.get("sort"),
        )
        return send_page(page, "Matching loads retrieved successfully")

    return app
