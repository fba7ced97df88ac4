from __future__ import annotations

import asyncio

from aiohttp import BasicAuth, test_utils

from dcexport.services.exporter import MetricsServer
from dcexport.services.metrics import GuildMetrics


def _fetch(server: MetricsServer, path: str, auth: BasicAuth | None = None):
    async def main():
        client = test_utils.TestClient(test_utils.TestServer(server.build_app()))
        await client.start_server()
        try:
            resp = await client.get(path, auth=auth)
            return resp.status, resp.headers.copy(), await resp.text()
        finally:
            await client.close()

    return asyncio.run(main())


def test_metrics_endpoint_serves_openmetrics() -> None:
    metrics = GuildMetrics()
    metrics.member.labels(guild_id=1).set(12)

    status, headers, body = _fetch(MetricsServer(metrics), "/metrics")

    assert status == 200
    assert headers["Content-Type"].startswith("application/openmetrics-text")
    assert 'dcexport_member{guild_id="1"} 12.0' in body
    assert body.rstrip().endswith("# EOF")


def test_index_links_metrics() -> None:
    status, headers, body = _fetch(MetricsServer(GuildMetrics()), "/")

    assert status == 200
    assert 'href="/metrics"' in body


def test_basic_auth_required_when_configured() -> None:
    server = MetricsServer(GuildMetrics(), username="prom", password="s3cret")

    status, headers, _ = _fetch(server, "/metrics")
    assert status == 401
    assert headers["WWW-Authenticate"].startswith("Basic")

    status, _, _ = _fetch(server, "/metrics", auth=BasicAuth("prom", "wrong"))
    assert status == 401

    status, _, _ = _fetch(server, "/metrics", auth=BasicAuth("prom", "s3cret"))
    assert status == 200


def test_auth_disabled_unless_both_credentials_set() -> None:
    server = MetricsServer(GuildMetrics(), username="prom", password="")

    assert not server.auth_enabled
    status, _, _ = _fetch(server, "/metrics")
    assert status == 200
