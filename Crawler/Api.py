"""
Crawler/Api.py — HTTP API endpoint discovery.

Discovery strategies (run independently, results unioned then merged):
  1. ``spec``      — probe conventional OpenAPI/Swagger document paths over
                     httpx and parse the first document found (JSON or YAML).
  2. ``traffic``   — load the base URL in a browser page and record every
                     request the page makes under the API base URL.
  3. ``heuristic`` — synthesize CRUD endpoints for common resource names plus
                     the usual auth endpoints, so that test generation always
                     has something to exercise.
"""
from __future__ import annotations

import json
import logging
from dataclasses import replace
from typing import Any, Optional
from urllib.parse import parse_qsl, urlparse

import httpx
import yaml
from playwright.async_api import (
    BrowserContext,
    Error as PlaywrightError,
    Page,
    Request,
)

from Models import (
    ApiEndpoint,
    ApiMap,
    ConfigurationError,
    ProgressCallback,
    ProgressUpdate,
    notify,
)

logger = logging.getLogger(__name__)

_HTTP_METHODS: frozenset[str] = frozenset({"GET", "POST", "PUT", "DELETE", "PATCH"})

_PROBE_TIMEOUT = 10.0
_NAVIGATION_TIMEOUT = 30_000


class APICrawler:
    """Discovers the endpoints of an HTTP API rooted at a base URL."""

    #: Conventional locations of an API description document.
    SPEC_PATHS: tuple[str, ...] = (
        "/swagger.json",
        "/swagger.yaml",
        "/openapi.json",
        "/openapi.yaml",
        "/api-docs",
        "/api/docs",
        "/docs/swagger.json",
        "/v1/swagger.json",
        "/v2/swagger.json",
    )

    #: Resource names used by the heuristic strategy.
    COMMON_RESOURCES: tuple[str, ...] = ("users", "products", "orders", "posts", "items")

    def __init__(
        self,
        context: BrowserContext,
        on_progress: Optional[ProgressCallback] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        observe_seconds: float = 3.0,
    ) -> None:
        self.context = context
        self.on_progress = on_progress
        self._transport = transport
        self._observe_ms = int(observe_seconds * 1000)

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    async def discover(self, api_base_url: str) -> ApiMap:
        """Run every strategy against *api_base_url* and return the API map."""
        base_url = api_base_url.rstrip("/")
        if urlparse(base_url).scheme not in {"http", "https"}:
            raise ConfigurationError(f"Not an http(s) URL: {api_base_url!r}")

        logger.info("Discovering API at %s", base_url)

        spec_endpoints = await self._probe_specs(base_url)
        notify(
            self.on_progress,
            ProgressUpdate(
                progress=33.0,
                message=f"Spec probing found {len(spec_endpoints)} endpoints",
                endpoints_found=len(spec_endpoints),
            ),
        )

        traffic_endpoints = await self._observe_traffic(base_url)
        notify(
            self.on_progress,
            ProgressUpdate(
                progress=66.0,
                message=f"Traffic observation found {len(traffic_endpoints)} endpoints",
                endpoints_found=len(spec_endpoints) + len(traffic_endpoints),
            ),
        )

        endpoints = self.merge_endpoints(
            [*spec_endpoints, *traffic_endpoints, *self.generate_common_endpoints()]
        )
        api_map = ApiMap(
            base_url=base_url,
            endpoints=endpoints,
            authentication=self.detect_auth_type(endpoints),
        )
        notify(
            self.on_progress,
            ProgressUpdate(
                progress=100.0,
                message="API discovery completed",
                endpoints_found=len(endpoints),
            ),
        )
        return api_map

    # ------------------------------------------------------------------
    # Strategy 1: spec probing
    # ------------------------------------------------------------------

    async def _probe_specs(self, base_url: str) -> list[ApiEndpoint]:
        """Return the endpoints of the first API description document found.

        Most probe paths do not exist on a given server; every failure is
        expected and only logged at DEBUG.
        """
        async with httpx.AsyncClient(
            timeout=_PROBE_TIMEOUT,
            follow_redirects=True,
            transport=self._transport,
        ) as client:
            for spec_path in self.SPEC_PATHS:
                spec_url = base_url + spec_path
                try:
                    resp = await client.get(spec_url)
                    if not resp.is_success:
                        continue
                    document = self._load_document(resp, spec_path)
                except (httpx.HTTPError, ValueError, yaml.YAMLError) as exc:
                    logger.debug("Spec probe %s failed: %s", spec_url, exc)
                    continue

                if not isinstance(document, dict):
                    continue
                try:
                    endpoints = self.parse_spec(document)
                except (AttributeError, TypeError) as exc:
                    logger.debug("Spec document %s could not be parsed: %s", spec_url, exc)
                    continue
                if endpoints:
                    logger.info("Found %d endpoints in %s", len(endpoints), spec_url)
                    return endpoints

        return []

    @staticmethod
    def _load_document(resp: httpx.Response, spec_path: str) -> Any:
        """Decode *resp* as JSON or YAML according to its content type."""
        content_type = resp.headers.get("content-type", "").lower()
        if "json" in content_type or spec_path.endswith(".json"):
            return resp.json()
        if "yaml" in content_type or spec_path.endswith((".yaml", ".yml")):
            return yaml.safe_load(resp.text)
        return None

    @staticmethod
    def parse_spec(spec: dict) -> list[ApiEndpoint]:
        """Extract endpoints from an OpenAPI 3 or Swagger 2 document."""
        paths = spec.get("paths")
        if not isinstance(paths, dict):
            return []

        is_swagger2 = str(spec.get("swagger", "")).startswith("2")
        base_path = (spec.get("basePath") or "").rstrip("/") if is_swagger2 else ""

        endpoints: list[ApiEndpoint] = []
        for path, path_item in paths.items():
            if not isinstance(path_item, dict):
                continue
            for method, operation in path_item.items():
                if method.upper() not in _HTTP_METHODS or not isinstance(operation, dict):
                    continue
                parameters = operation.get("parameters") or []
                if not isinstance(parameters, list):
                    parameters = []
                responses = operation.get("responses")
                if not isinstance(responses, dict):
                    responses = {}
                ok = responses.get("200") or responses.get(200)
                if not isinstance(ok, dict):
                    ok = {}

                if is_swagger2:
                    body_param = next(
                        (p for p in parameters if isinstance(p, dict) and p.get("in") == "body"),
                        {},
                    )
                    request_body = body_param.get("schema")
                    response_schema = ok.get("schema")
                else:
                    request_body = _json_schema(operation.get("requestBody"))
                    response_schema = _json_schema(ok)

                endpoints.append(
                    ApiEndpoint(
                        path=base_path + path,
                        method=method.upper(),
                        parameters=parameters,
                        request_body=request_body,
                        response_schema=response_schema,
                    )
                )
        return endpoints

    # ------------------------------------------------------------------
    # Strategy 2: passive traffic observation
    # ------------------------------------------------------------------

    async def _observe_traffic(self, base_url: str) -> list[ApiEndpoint]:
        """Load *base_url* in a page and record the API requests it issues."""
        captured: dict[str, ApiEndpoint] = {}

        def _on_request(request: Request) -> None:
            endpoint = self._endpoint_from_request(request, base_url)
            if endpoint and endpoint.key not in captured:
                captured[endpoint.key] = endpoint

        page: Optional[Page] = None
        try:
            page = await self.context.new_page()
            page.on("request", _on_request)
            await page.goto(base_url, wait_until="networkidle", timeout=_NAVIGATION_TIMEOUT)
            await page.wait_for_timeout(self._observe_ms)
        except PlaywrightError as exc:
            logger.warning("Traffic observation on %s stopped early: %s", base_url, exc)
        finally:
            if page and not page.is_closed():
                try:
                    await page.close()
                except PlaywrightError as exc:
                    logger.debug("Error closing observation page: %s", exc)

        logger.info("Captured %d endpoints from network traffic", len(captured))
        return list(captured.values())

    @staticmethod
    def _endpoint_from_request(request: Request, base_url: str) -> Optional[ApiEndpoint]:
        url = request.url
        if not url.startswith(base_url):
            return None
        rest = url[len(base_url):]
        if rest and rest[0] not in "/?#":
            return None  # e.g. base ".../api" must not match ".../apiary"

        method = request.method.upper()
        if method not in _HTTP_METHODS:
            return None

        parsed = urlparse(url)
        path = urlparse(rest).path or "/"
        parameters = dict(parse_qsl(parsed.query, keep_blank_values=True)) or None

        request_body = None
        post_data = request.post_data
        if post_data:
            try:
                request_body = json.loads(post_data)
            except ValueError:
                request_body = None

        return ApiEndpoint(
            path=path,
            method=method,
            parameters=parameters,
            request_body=request_body,
        )

    # ------------------------------------------------------------------
    # Strategy 3: heuristic generation
    # ------------------------------------------------------------------

    @classmethod
    def generate_common_endpoints(cls) -> list[ApiEndpoint]:
        """Return conventional REST and auth endpoints (low-confidence filler)."""
        endpoints: list[ApiEndpoint] = []
        for resource in cls.COMMON_RESOURCES:
            collection = f"/api/{resource}"
            item = f"/api/{resource}/{{id}}"
            endpoints += [
                ApiEndpoint(path=collection, method="GET"),
                ApiEndpoint(path=item, method="GET"),
                ApiEndpoint(path=collection, method="POST", request_body={"type": "object"}),
                ApiEndpoint(path=item, method="PUT", request_body={"type": "object"}),
                ApiEndpoint(path=item, method="DELETE"),
            ]

        credentials = {"email": "string", "password": "string"}
        endpoints += [
            ApiEndpoint(path="/api/auth/login", method="POST", request_body=dict(credentials)),
            ApiEndpoint(path="/api/auth/register", method="POST", request_body=dict(credentials)),
            ApiEndpoint(path="/api/auth/logout", method="POST"),
            ApiEndpoint(path="/api/auth/refresh", method="POST"),
        ]
        return endpoints

    # ------------------------------------------------------------------
    # Merge & inference
    # ------------------------------------------------------------------

    @staticmethod
    def merge_endpoints(endpoints: list[ApiEndpoint]) -> list[ApiEndpoint]:
        """Deduplicate by ``method:path``, keeping the first populated schemas.

        A later duplicate only fills ``request_body`` / ``response_schema``
        where the earlier entry left them empty; it never overwrites.
        Input objects are not modified.
        """
        merged: dict[str, ApiEndpoint] = {}
        for endpoint in endpoints:
            existing = merged.get(endpoint.key)
            if existing is None:
                merged[endpoint.key] = replace(endpoint)
                continue
            if not existing.request_body and endpoint.request_body:
                existing.request_body = endpoint.request_body
            if not existing.response_schema and endpoint.response_schema:
                existing.response_schema = endpoint.response_schema
        return list(merged.values())

    @staticmethod
    def detect_auth_type(endpoints: list[ApiEndpoint]) -> str:
        """Return ``bearer`` if any endpoint looks auth-related, else ``none``."""
        if any("/auth/" in e.path or "/login" in e.path for e in endpoints):
            return "bearer"
        return "none"


def _json_schema(container: Any) -> Any:
    """Return ``container.content['application/json'].schema`` if present."""
    if not isinstance(container, dict):
        return None
    content = container.get("content")
    if not isinstance(content, dict):
        return None
    media = content.get("application/json") or {}
    return media.get("schema") if isinstance(media, dict) else None
