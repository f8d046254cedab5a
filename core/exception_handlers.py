import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from services.reminder_scheduler import InvalidTimeSlot
from .response import error as resp_error

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI):
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content=resp_error(code=str(exc.status_code), message=str(exc.detail)))

    @app.exception_handler(InvalidTimeSlot)
    async def invalid_time_slot_handler(request: Request, exc: InvalidTimeSlot):
        return JSONResponse(status_code=400, content=resp_error(code="invalid_time_slot", message=str(exc)))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content=resp_error(code="internal_error", message="Internal server error"))
