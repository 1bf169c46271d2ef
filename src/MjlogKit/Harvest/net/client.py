"""
HTTPX Client Factory.

Builds the one ``httpx.Client`` a stage run uses for every request:
- Explicit connect/read timeouts so no fetch can hang the pipeline
- Transport-level connect retries (``HTTPTransport(retries=...)``)
- Polite User-Agent header
- Debug event hooks that log each request/response with its latency

Callers own the client's lifecycle (``with build_http_client(cfg) as client``).
Tests pass ``transport=httpx.MockTransport(handler)``.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import httpx

from ..config import HttpClientConfig

logger = logging.getLogger(__name__)


def build_http_client(
    cfg: Optional[HttpClientConfig] = None,
    *,
    transport: Optional[httpx.BaseTransport] = None,
) -> httpx.Client:
    """Build an HTTPX client from ``cfg``.

    Args:
        cfg: HTTP client settings (defaults apply when ``None``)
        transport: Override the network transport (used by tests)

    Returns:
        Configured ``httpx.Client``; the caller must close it.
    """
    cfg = cfg or HttpClientConfig()

    timeout = httpx.Timeout(
        cfg.timeout_read_s,
        connect=cfg.timeout_connect_s,
    )

    client = httpx.Client(
        transport=transport or _build_transport(cfg),
        timeout=timeout,
        verify=cfg.verify_tls,
        headers={"User-Agent": cfg.user_agent, "Accept": "*/*"},
        follow_redirects=True,
    )
    client.event_hooks["request"] = [_on_request]
    client.event_hooks["response"] = [_on_response]

    logger.debug(
        "HTTPX client created: connect=%.1fs read=%.1fs retries=%d",
        cfg.timeout_connect_s,
        cfg.timeout_read_s,
        cfg.connect_retries,
    )
    return client


def _build_transport(cfg: HttpClientConfig) -> httpx.BaseTransport:
    """Build base transport with connect retry policy."""
    return httpx.HTTPTransport(retries=cfg.connect_retries, verify=cfg.verify_tls)


def _on_request(request: httpx.Request) -> None:
    request.extensions["t0_perf"] = time.perf_counter()


def _on_response(response: httpx.Response) -> None:
    req = response.request
    t0 = req.extensions.get("t0_perf", time.perf_counter())
    elapsed_ms = (time.perf_counter() - t0) * 1000.0
    logger.debug(
        "net.request: %s %s -> %d (%.1f ms)",
        req.method,
        req.url,
        response.status_code,
        elapsed_ms,
    )
