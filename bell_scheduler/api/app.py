'''
HTTP front end for the bell dashboard and the appliance pull path.
'''
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bell_scheduler.api.identity import JWTIdentityProvider
from bell_scheduler.exceptions import BellSystemError
from bell_scheduler.gateway.command_gateway import CommandGateway
from bell_scheduler.mqtt.mqtt_functions import iso_now
from bell_scheduler.parsers.request_parser import (
    ClearDayJson,
    DeletePeriodJson,
    RingJson,
    ScheduleJson,
    TimeSyncJson,
    parse_json_body,
)
from bell_scheduler.utils.logging_config import get_api_logger

log = get_api_logger()

bearer_scheme = HTTPBearer(auto_error=False)


def get_gateway(request: Request) -> CommandGateway:
    return request.app.state.gateway


def current_user(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> str:
    """Resolve the caller before the request body is touched."""
    identity: JWTIdentityProvider = request.app.state.identity
    return identity.identify(credentials.credentials if credentials else None)


UserId = Annotated[str, Depends(current_user)]
Gateway = Annotated[CommandGateway, Depends(get_gateway)]


class BellAPI:
    """
    Endpoints for schedule storage, appliance pull, manual ring and time sync.
    """
    def __init__(self):
        self.router = APIRouter(tags=["Bell"])
        self._register_routes()

    def _register_routes(self):
        self.router.add_api_route("/schedule", self.store_schedule, methods=["POST"])
        self.router.add_api_route("/schedule", self.get_schedule, methods=["GET"])
        self.router.add_api_route("/schedule/clear-day", self.clear_day, methods=["POST"])
        self.router.add_api_route("/schedule/clear", self.clear_all, methods=["POST"])
        self.router.add_api_route("/schedule/period", self.delete_period, methods=["DELETE"])
        self.router.add_api_route("/schedule/reconcile", self.reconcile, methods=["POST"])
        self.router.add_api_route("/ring", self.ring_now, methods=["POST"])
        self.router.add_api_route("/time/sync", self.sync_time, methods=["POST"])
        self.router.add_api_route("/health", self.health, methods=["GET"])

    async def store_schedule(self, request: Request, user_id: UserId, gateway: Gateway) -> Dict[str, Any]:
        body = parse_json_body(await request.body(), ScheduleJson)
        log.info(f"Received schedule data for {len(body.periods)} periods from {user_id}")
        result = await run_in_threadpool(gateway.store_schedule, user_id, body.to_periods())
        message = (
            "Schedule stored and sent to the bell"
            if result.delivered
            else "Schedule stored, delivery pending"
        )
        return {
            "success": True,
            "message": message,
            "stored": result.stored,
            "delivered": result.delivered,
            "pendingDelivery": not result.delivered,
            "scheduleId": result.schedule_id,
            "deliveryStats": result.delivery_stats.to_dict(),
            "periodCount": result.period_count,
        }

    async def get_schedule(self, gateway: Gateway) -> Dict[str, Any]:
        merged = await run_in_threadpool(gateway.get_schedule)
        response = {
            "schedule": {"periods": [p.to_dict() for p in merged.periods]},
            "count": merged.count,
            "timestamp": iso_now(),
            "totalSchedules": merged.total_schedules,
            "examMode": merged.exam_mode,
        }
        if merged.total_schedules == 0:
            response["message"] = "No schedules found"
        return response

    async def clear_day(self, request: Request, user_id: UserId, gateway: Gateway) -> Dict[str, Any]:
        body = parse_json_body(await request.body(), ClearDayJson)
        updated = await run_in_threadpool(gateway.clear_day, user_id, body.day)
        return {"success": True, "updated": updated, "message": f"Cleared periods for {body.day}"}

    async def clear_all(self, user_id: UserId, gateway: Gateway) -> Dict[str, Any]:
        deleted = await run_in_threadpool(gateway.clear_all, user_id)
        return {"success": True, "deletedCount": deleted, "message": "All schedules cleared"}

    async def delete_period(self, request: Request, user_id: UserId, gateway: Gateway) -> Dict[str, Any]:
        body = parse_json_body(await request.body(), DeletePeriodJson)
        removed = await run_in_threadpool(gateway.delete_period, user_id, body.start_time, body.day)
        return {"success": True, "removed": removed, "message": f"Deleted period at {body.start_time}"}

    async def reconcile(self, user_id: UserId, gateway: Gateway) -> Dict[str, Any]:
        log.info(f"Manual reconciliation requested by {user_id}")
        stats = await run_in_threadpool(gateway.reconcile)
        return {"success": True, "deliveryStats": stats.to_dict()}

    async def ring_now(self, request: Request, user_id: UserId, gateway: Gateway) -> Dict[str, Any]:
        body = parse_json_body(await request.body(), RingJson, allow_empty=True)
        duration = await run_in_threadpool(gateway.ring_now, user_id, body.duration)
        return {
            "success": True,
            "message": "Bell ring command sent",
            "duration": duration,
            "timestamp": iso_now(),
            "details": f"Bell will ring for {duration} seconds",
        }

    async def sync_time(self, request: Request, user_id: UserId, gateway: Gateway) -> Dict[str, Any]:
        body = parse_json_body(await request.body(), TimeSyncJson, allow_empty=True)
        reading = await run_in_threadpool(gateway.sync_time, user_id, body.hour, body.minute, body.second)
        return {
            "success": True,
            "message": f"Time {reading.formatted()} sent to the bell",
            "time": reading.formatted(),
            "timestamp": reading.timestamp,
            "source": reading.source,
        }

    async def health(self, gateway: Gateway) -> JSONResponse:
        result = await run_in_threadpool(gateway.health)
        code = status.HTTP_200_OK if result["status"] == "healthy" else status.HTTP_503_SERVICE_UNAVAILABLE
        return JSONResponse(status_code=code, content=result)


async def bell_error_handler(request: Request, exc: BellSystemError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path} failed: {exc.error} - {exc.message}")
    else:
        log.warning(f"{request.method} {request.url.path} rejected: {exc.error} - {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(
    gateway: CommandGateway,
    identity: JWTIdentityProvider,
    allowed_origins: Optional[list] = None,
    lifespan=None,
) -> FastAPI:
    app = FastAPI(
        title="Bell Scheduler",
        description="Schedule storage and delivery for the remote bell appliance.",
        lifespan=lifespan,
    )
    app.state.gateway = gateway
    app.state.identity = identity

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(BellSystemError, bell_error_handler)
    app.include_router(BellAPI().router)
    return app
