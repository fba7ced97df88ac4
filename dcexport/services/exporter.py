"""HTTP endpoint that Prometheus scrapes."""

from __future__ import annotations

import hmac
import logging
from typing import Optional

from aiohttp import BasicAuth, hdrs, web
from prometheus_client.openmetrics.exposition import CONTENT_TYPE_LATEST, generate_latest

from dcexport.services.metrics import GuildMetrics

log = logging.getLogger(__name__)

INDEX_HTML = 'dcexport - <a href="/metrics">Metrics</a>'


class MetricsServer:
    """Serve the guild metrics registry as OpenMetrics text on /metrics."""

    def __init__(
        self,
        metrics: GuildMetrics,
        host: str = "0.0.0.0",
        port: int = 8080,
        username: str = "",
        password: str = "",
    ):
        self.metrics = metrics
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None

    @classmethod
    def from_settings(cls, metrics: GuildMetrics, settings) -> "MetricsServer":
        return cls(
            metrics,
            host=settings.metrics_host,
            port=settings.metrics_port,
            username=settings.metrics_username,
            password=settings.metrics_password,
        )

    @property
    def auth_enabled(self) -> bool:
        return bool(self.username and self.password)

    # ------------------------------------------------------------------ lifecycle
    def build_app(self) -> web.Application:
        app = web.Application(middlewares=[self._auth_middleware])
        app.router.add_get("/", self._handle_index)
        app.router.add_get("/metrics", self._handle_metrics)
        return app

    async def start(self) -> None:
        if self._runner:
            return
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host=self.host, port=self.port)
        await self._site.start()
        log.info(
            "Metrics server listening on %s:%s (basic auth %s)",
            self.host, self.port, "on" if self.auth_enabled else "off",
        )

    async def close(self) -> None:
        if self._site:
            await self._site.stop()
            self._site = None
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
        self._app = None
        log.info("Metrics server stopped")

    # ------------------------------------------------------------------ auth
    def _authorized(self, request: web.Request) -> bool:
        header = request.headers.get(hdrs.AUTHORIZATION)
        if not header:
            return False
        try:
            auth = BasicAuth.decode(header)
        except ValueError:
            return False
        user_ok = hmac.compare_digest(auth.login.encode(), self.username.encode())
        pass_ok = hmac.compare_digest(auth.password.encode(), self.password.encode())
        return user_ok and pass_ok

    @web.middleware
    async def _auth_middleware(self, request: web.Request, handler):
        if self.auth_enabled and not self._authorized(request):
            log.debug("Rejected unauthorized request to %s", request.path)
            return web.Response(
                status=401,
                text="unauthorized",
                headers={hdrs.WWW_AUTHENTICATE: 'Basic realm="dcexport"'},
            )
        return await handler(request)

    # ------------------------------------------------------------------ handlers
    async def _handle_index(self, request: web.Request) -> web.Response:
        return web.Response(text=INDEX_HTML, content_type="text/html")

    async def _handle_metrics(self, request: web.Request) -> web.Response:
        body = generate_latest(self.metrics.registry)
        return web.Response(body=body, headers={hdrs.CONTENT_TYPE: CONTENT_TYPE_LATEST})
