from fastapi import FastAPI, Request, HTTPException, APIRouter
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from typing import Optional
import os
import time
import uuid
import traceback
from datetime import datetime
import uvicorn

from ingest import InvalidRoute, build_output_path, extract_payload, parse_route, write_envelope
from logging_config import LoggerConfig
from settings_store import ConfigStore, SettingsError, find_connection


INVALID_ROUTE_MESSAGE = "Invalid route. Expected /api/{sender}/{receiver}/{endpoint}."
CONNECTION_NOT_FOUND_MESSAGE = "Connection not found for the supplied sender/receiver."
NO_PAYLOAD_MESSAGE = "No file or request body provided."


"""Models"""

class IngestResult(BaseModel):
    status: str = "ok"
    outputPath: str

class IngestError(BaseModel):
    status: str = "error"
    message: str


"""API Application"""

class IngestAPIApp:
    def __init__(
        self,
        settings_path: Optional[str] = None,
        log_dir: Optional[str] = None,
        config_store: Optional[ConfigStore] = None,
    ):
        # config
        self.settings_path = settings_path or os.environ.get("INGEST_SETTINGS_PATH", "appsettings.json")
        self.log_dir = log_dir or os.environ.get("LOG_DIR", "logs")
        # setup logger
        self.logger = LoggerConfig(log_dir=self.log_dir).logger
        # settings cache, one per process
        self.config_store = config_store or ConfigStore(self.settings_path)
        # FastAPI
        self.app = FastAPI(
            title="Ingest API",
            version="1.0.0",
            description="Wraps uploaded payloads in XML envelopes and stores them per sender/receiver connection"
        )
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
            allow_credentials=True
        )
        self.router = APIRouter()
        self._register_routes()
        self.app.include_router(self.router)
        self.app.middleware("http")(self.log_requests)
        self.app.add_exception_handler(Exception, self.global_exception_handler)

    async def log_requests(self, request: Request, call_next):
        rid = str(uuid.uuid4())
        request.state.request_id = rid
        start = time.time()
        self.logger.info(f"Start {request.method} {request.url.path}", extra={"request_id": rid})
        try:
            resp = await call_next(request)
            duration = time.time() - start
            self.logger.info(
                f"Completed {request.method} {request.url.path} - {resp.status_code} in {duration:.3f}s",
                extra={"request_id": rid}
            )
            resp.headers['X-Request-ID'] = rid
            return resp
        except Exception as e:
            self.logger.error(f"Error: {e}", extra={"request_id": rid})
            raise

    async def global_exception_handler(self, request: Request, exc: Exception):
        rid = getattr(request.state, 'request_id', 'N/A')
        if isinstance(exc, HTTPException):
            self.logger.warning(f"HTTPException: {exc.detail}", extra={"request_id": rid})
            return self._error(exc.status_code, str(exc.detail))
        self.logger.error(f"Unhandled: {exc}\n{traceback.format_exc()}", extra={"request_id": rid})
        return self._error(500, f"Unexpected error: {exc}")

    def _error(self, status_code: int, message: str) -> JSONResponse:
        return JSONResponse(status_code=status_code, content=IngestError(message=message).model_dump())

    async def handle_ingest(self, request: Request) -> JSONResponse:
        """
        Store the request payload for the sender/receiver named in the path.

        Stops at the first failed step: bad route (400), unknown connection
        (404), missing payload (400). Any other error is reported as 500 with
        the error text. Directories created before a failure are left behind.
        """
        rid = getattr(request.state, 'request_id', 'N/A')
        log_extra = {"request_id": rid}

        try:
            try:
                route = parse_route(request.url.path)
            except InvalidRoute as e:
                self.logger.warning(f"Rejected {request.url.path}: {e}", extra=log_extra)
                return self._error(400, INVALID_ROUTE_MESSAGE)

            settings = self.config_store.get()
            connection = find_connection(settings, route.sender, route.receiver)
            if connection is None:
                self.logger.warning(
                    f"No connection for sender={route.sender} receiver={route.receiver}",
                    extra=log_extra
                )
                return self._error(404, CONNECTION_NOT_FOUND_MESSAGE)

            payload = await extract_payload(request)
            if payload is None:
                self.logger.warning(f"Empty request to {request.url.path}", extra=log_extra)
                return self._error(400, NO_PAYLOAD_MESSAGE)

            # Requested casing is kept, not the one stored in the connection
            output_directory = os.path.join(
                connection.base_output_path,
                route.sender,
                route.receiver,
                route.endpoint
            )
            os.makedirs(output_directory, exist_ok=True)

            output_path = build_output_path(output_directory, payload.file_name)
            write_envelope(output_path, route, payload)
            output_path = os.path.abspath(output_path)

            self.logger.info(
                f"Stored {len(payload.content)} bytes from {payload.file_name} at {output_path}",
                extra=log_extra
            )
            return JSONResponse(status_code=200, content=IngestResult(outputPath=output_path).model_dump())

        except Exception as e:
            self.logger.exception(f"Error processing request: {e}", extra=log_extra)
            return self._error(500, f"Unexpected error: {e}")

    def _register_routes(self):
        @self.router.get("/health")
        async def health(request: Request):
            rid = request.state.request_id
            status = "healthy"
            try:
                connections = len(self.config_store.get().connections)
            except SettingsError as e:
                self.logger.error(f"Health check could not load settings: {e}", extra={"request_id": rid})
                status = "degraded"
                connections = 0

            return {
                "status": status,
                "settings_path": os.path.abspath(self.settings_path),
                "settings_found": os.path.isfile(self.settings_path),
                "connections": connections,
                "request_id": rid,
                "timestamp": datetime.now().isoformat()
            }

        # No method list: every method, standard or not, reaches the handler
        self.app.add_route("/{full_path:path}", self.handle_ingest, methods=None, include_in_schema=False)

    def run(self, host: str = "0.0.0.0", port: int = 8000):
        uvicorn.run(self.app, host=host, port=port)


"""Run the application"""
ingest_app = IngestAPIApp()
app = ingest_app.app

if __name__ == "__main__":
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", 8000))
    ingest_app.logger.info(f"Starting Ingest API, settings from {os.path.abspath(ingest_app.settings_path)}")
    ingest_app.run(host=host, port=port)
