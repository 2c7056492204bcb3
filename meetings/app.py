"""FastAPI application: HTTP endpoints of the booking engine.

Endpoints:

  GET  /health                        Health check
  POST /api/availability              Open slots for an agent or user
  POST /api/meetings                  Book a meeting (or list slots only)
  POST /api/meetings/{id}/cancel      Cancel a booked meeting
  POST /api/reminders/run             Send day-before reminders (cron)

Response codes:
  200  success, or ``success: false`` for "not available" results
       (scheduling disabled, calendar not connected, no slots, ...)
  400  invalid request body or explicit date
  401/403  bad or missing API token
  404  unknown conversation or meeting
  502  the calendar provider refused to create/cancel the event
  500  anything unexpected
"""

from __future__ import annotations

# Load .env into os.environ early so settings and google-auth see it.
from dotenv import load_dotenv
load_dotenv()

import logging
import time
from typing import Awaitable, Callable, Optional

# Configure root logger early so all meetings.* loggers have a handler
# when run via `uvicorn meetings.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-24s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from meetings.auth import require_api_token
from meetings.calendar_providers.google import GoogleCalendarProvider
from meetings.config import settings
from meetings.errors import BookingError
from meetings.messaging import default_senders
from meetings.models.booking import AvailabilityRequest, BookingRequest
from meetings.orchestrator import BookingOrchestrator
from meetings.reminders import ReminderService
from meetings.store import DataStore
from meetings.tracing import ExecutionTrace

log = logging.getLogger("meetings.app")

_START_TIME = time.time()


async def _respond(
    trace: ExecutionTrace,
    store: DataStore,
    call: Callable[[], Awaitable[dict]],
) -> JSONResponse:
    """Run a use case and turn its result or failure into a JSON response."""
    try:
        payload = await call()
    except BookingError as e:
        trace.save(store, e.status_code, False, f"{e.kind}: {e.message}")
        return JSONResponse(e.to_dict(), status_code=e.status_code)
    except Exception as e:
        log.exception("%s Unexpected failure", trace.prefix)
        trace.save(store, 500, False, str(e))
        return JSONResponse(
            {"success": False, "error": "InternalError", "message": str(e)},
            status_code=500,
        )
    trace.save(store, 200, True)
    return JSONResponse(payload)


def create_app(
    store: Optional[DataStore] = None,
    orchestrator: Optional[BookingOrchestrator] = None,
    reminder_service: Optional[ReminderService] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    store = store or DataStore(settings.data_dir)
    orchestrator = orchestrator or BookingOrchestrator.from_settings(
        store, settings, provider_factory=GoogleCalendarProvider
    )
    reminder_service = reminder_service or ReminderService(
        store,
        default_senders(settings.graph_api_url),
        default_timezone=settings.default_timezone,
    )

    app = FastAPI(
        title="Meeting Booking Engine",
        description="Availability search and meeting booking for the social inbox",
        version="0.1.0",
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:])}: {err['msg']}" for err in exc.errors()
        )
        return JSONResponse(
            {"success": False, "error": "InvalidRequest", "message": errors},
            status_code=400,
        )

    # ── Health check ───────────────────────────────────────────

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check; confirms the event loop is responsive."""
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({"status": "ok", "uptime": uptime})

    # ── Availability ───────────────────────────────────────────

    @app.post("/api/availability", dependencies=[Depends(require_api_token)])
    async def check_availability(body: AvailabilityRequest) -> JSONResponse:
        trace = ExecutionTrace("check-availability", agent_id=body.agent_id, user_id=body.user_id)

        async def call() -> dict:
            result = await orchestrator.check_availability(
                agent_id=body.agent_id,
                user_id=body.user_id,
                horizon_days=body.days_ahead,
                trace=trace,
            )
            return result.model_dump(mode="json", by_alias=True)

        return await _respond(trace, store, call)

    # ── Meetings ───────────────────────────────────────────────

    @app.post("/api/meetings", dependencies=[Depends(require_api_token)])
    async def create_meeting(body: BookingRequest) -> JSONResponse:
        trace = ExecutionTrace(
            "create-meeting", conversation_id=body.conversation_id, agent_id=body.agent_id
        )

        async def call() -> dict:
            result = await orchestrator.create_meeting(body, trace=trace)
            return result.model_dump(mode="json", by_alias=True)

        return await _respond(trace, store, call)

    @app.post("/api/meetings/{meeting_id}/cancel", dependencies=[Depends(require_api_token)])
    async def cancel_meeting(meeting_id: str) -> JSONResponse:
        trace = ExecutionTrace("cancel-meeting", meeting_id=meeting_id)

        async def call() -> dict:
            record = await orchestrator.cancel_meeting(meeting_id)
            trace.step("Meeting canceled", calendar_event_id=record.calendar_event_id)
            return {
                "success": True,
                "meeting": {
                    "id": record.id,
                    "calendarEventId": record.calendar_event_id,
                    "status": record.status,
                },
            }

        return await _respond(trace, store, call)

    # ── Reminders ──────────────────────────────────────────────

    @app.post("/api/reminders/run", dependencies=[Depends(require_api_token)])
    async def run_reminders() -> JSONResponse:
        trace = ExecutionTrace("send-meeting-reminders")

        async def call() -> dict:
            result = await reminder_service.run()
            trace.step("Reminders processed", sent=result.reminders_sent, errors=len(result.errors))
            return result.to_dict()

        return await _respond(trace, store, call)

    return app


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


if __name__ == "__main__":
    import uvicorn

    for warning in settings.validate_startup():
        log.warning(warning)

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "meetings.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
