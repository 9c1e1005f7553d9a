"""
Base service class for Item Catalog services.
"""

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from typing import Dict, Any, Optional
import time
import os

from shared.config import ServiceConfig, get_config
from shared.errors import CatalogException, build_error_response
from shared.logging import configure_logging, get_logger, set_correlation_id, clear_context
from shared.metrics import get_metrics_collector
from shared.time_utils import utc_now_iso


CORRELATION_HEADER = "X-Correlation-ID"
REQUEST_ID_HEADER = "X-Request-ID"

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Content-Security-Policy": "default-src 'self'",
}

# Swagger UI needs inline scripts and CDN assets
DOCS_PATHS = frozenset({"/docs", "/docs/oauth2-redirect", "/redoc"})


class BaseService:
    """Base service class with common functionality."""

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)

        configure_logging(service_name, self.config.log_level, json_output=self.config.is_production)
        self.logger = get_logger(f"{service_name}.service")
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()

        # Create FastAPI app
        self.app = self._create_app()

        # Set up middleware
        self._setup_middleware()

        # Set up routes
        self._setup_routes()

    def _create_app(self) -> FastAPI:
        """Create FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.start()
            try:
                yield
            finally:
                await self.stop()

        docs_enabled = not self.config.is_production
        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Item Catalog - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if docs_enabled else None,
            redoc_url="/redoc" if docs_enabled else None,
            openapi_url="/openapi.json" if docs_enabled else None,
            lifespan=lifespan,
        )

    def _setup_middleware(self):
        """Set up middleware. The last one added runs first."""

        self._setup_service_middleware()

        # CORS middleware
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.cors_origins,
            allow_credentials=False,
            allow_methods=["GET", "POST", "PUT", "DELETE"],
            allow_headers=["Content-Type", "Authorization", CORRELATION_HEADER, REQUEST_ID_HEADER],
            expose_headers=[CORRELATION_HEADER, REQUEST_ID_HEADER],
        )

        @self.app.middleware("http")
        async def add_security_headers(request: Request, call_next):
            response = await call_next(request)
            if request.url.path not in DOCS_PATHS:
                for header, value in SECURITY_HEADERS.items():
                    response.headers[header] = value
            return response

        # Correlation ID and request timing middleware
        @self.app.middleware("http")
        async def add_request_context(request: Request, call_next):
            correlation_id = set_correlation_id(
                request.headers.get(CORRELATION_HEADER) or request.headers.get(REQUEST_ID_HEADER)
            )
            start_time = time.time()

            try:
                with self.metrics.track_in_flight():
                    response = await call_next(request)
            except Exception as e:
                self.logger.error(
                    "Request failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(e),
                    duration_ms=round((time.time() - start_time) * 1000, 2),
                    exc_info=e
                )
                self.metrics.record_error("INTERNAL_ERROR")
                response = self._error_response(
                    request, 500, "INTERNAL_ERROR", str(e) or "Internal Server Error", exc=e
                )
                # Inner middlewares were unwound by the exception
                for header, value in SECURITY_HEADERS.items():
                    response.headers[header] = value

            duration = time.time() - start_time

            # Record metrics
            self.metrics.record_http_request(
                method=request.method,
                endpoint=self._endpoint_label(request),
                status_code=response.status_code,
                duration=duration
            )

            # Log request
            self.logger.info(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                query=request.url.query or None,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2)
            )

            response.headers[CORRELATION_HEADER] = correlation_id
            response.headers[REQUEST_ID_HEADER] = correlation_id
            clear_context()
            return response

    def _setup_service_middleware(self):
        """Innermost, service-specific middleware. Override in subclasses."""

    def _setup_routes(self):
        """Set up common routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            dependencies = await self._check_dependencies()
            healthy = all(state != "error" for state in dependencies.values())
            self.metrics.record_health_check("ok" if healthy else "error")

            body = {
                "service": self.service_name,
                "status": "ok" if healthy else "error",
                "timestamp": utc_now_iso(),
                "uptime_seconds": self._get_uptime(),
                "environment": self.config.env,
                "dependencies": dependencies,
                "version": "1.0.0",
                "commit": os.getenv("GIT_COMMIT", "unknown")
            }
            if not healthy:
                self.logger.error("Health check failed", dependencies=dependencies)
                return JSONResponse(status_code=503, content=body)
            return body

        @self.app.get("/metrics")
        async def metrics_endpoint():
            """Prometheus metrics endpoint."""
            from prometheus_client import CONTENT_TYPE_LATEST
            return Response(
                content=self.metrics.generate_latest(),
                media_type=CONTENT_TYPE_LATEST
            )

        # Error handlers
        @self.app.exception_handler(CatalogException)
        async def catalog_exception_handler(request: Request, exc: CatalogException):
            """Handle CatalogException."""
            log = self.logger.error if exc.status_code >= 500 else self.logger.warning
            log(
                "Application error",
                status=exc.status_code,
                code=exc.code,
                message=exc.message,
                method=request.method,
                path=request.url.path
            )
            self.metrics.record_error(exc.code)
            return self._error_response(request, exc.status_code, exc.code, exc.message,
                                        details=exc.details, exc=exc)

        @self.app.exception_handler(StarletteHTTPException)
        async def http_exception_handler(request: Request, exc: StarletteHTTPException):
            """Handle routing-level HTTP errors."""
            if exc.status_code == 404:
                code = "ROUTE_NOT_FOUND"
                message = f"Route Not Found: {request.method} {request.url.path}"
                self.logger.warning("Route not found", method=request.method, path=request.url.path)
            elif exc.status_code == 405:
                code = "METHOD_NOT_ALLOWED"
                message = f"Method Not Allowed: {request.method} {request.url.path}"
            else:
                code = "HTTP_ERROR"
                message = str(exc.detail)
            return self._error_response(request, exc.status_code, code, message,
                                        headers=getattr(exc, "headers", None))

        @self.app.exception_handler(RequestValidationError)
        async def validation_exception_handler(request: Request, exc: RequestValidationError):
            """Handle request parsing failures."""
            errors = exc.errors()
            if any(err.get("type") == "json_invalid" for err in errors):
                code, message = "INVALID_JSON", "Request body is not valid JSON"
            else:
                code, message = "VALIDATION_ERROR", "Request validation failed"
            self.logger.warning("Request validation failed", code=code, path=request.url.path)
            details = {
                "errors": [
                    {"field": ".".join(str(part) for part in err.get("loc", ())), "message": err.get("msg")}
                    for err in errors
                ]
            }
            return self._error_response(request, 400, code, message, details=details)

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            """Handle general exceptions."""
            self.logger.error("Unhandled exception", error=str(exc), path=request.url.path, exc_info=exc)
            self.metrics.record_error("INTERNAL_ERROR")
            return self._error_response(request, 500, "INTERNAL_ERROR", str(exc) or "Internal Server Error", exc=exc)

    def _error_response(self, request: Request, status_code: int, code: str, message: str,
                        *, details: Optional[Dict[str, Any]] = None, exc: Optional[BaseException] = None,
                        headers: Optional[Dict[str, str]] = None) -> JSONResponse:
        if status_code >= 500 and self.config.is_production:
            message = "Internal Server Error"
        payload = build_error_response(
            code,
            message,
            path=request.url.path,
            details=details,
            exc=exc,
            include_stack=not self.config.is_production,
        )
        return JSONResponse(
            status_code=status_code,
            content=payload.model_dump(exclude_none=True),
            headers=headers,
        )

    @staticmethod
    def _endpoint_label(request: Request) -> str:
        """Route template for metrics labels, so ids do not explode cardinality."""
        route = request.scope.get("route")
        return getattr(route, "path", None) or "unmatched"

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check service dependencies. Override in subclasses."""
        return {}

    async def start(self):
        """Start service components. Override in subclasses."""

    async def stop(self):
        """Stop service components. Override in subclasses."""

    def _get_uptime(self) -> float:
        """Get service uptime in seconds."""
        return time.time() - self._start_time

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
