"""
tests/test_api_crawler.py — Unit tests for APICrawler.

Spec probing runs over ``httpx.MockTransport``; traffic observation runs
against the fake browser context.
"""
import asyncio
import json

import httpx
import pytest
import yaml

from Crawler import APICrawler
from Models import ApiEndpoint, ApplicationMap, ConfigurationError
from fakes import FakeContext, FakeRequest, FakeSite

BASE = "https://example.com"

OPENAPI_DOC = {
    "openapi": "3.0.0",
    "paths": {
        "/api/users": {
            "get": {
                "parameters": [{"name": "page", "in": "query"}],
                "responses": {
                    "200": {
                        "content": {
                            "application/json": {"schema": {"type": "array"}}
                        }
                    }
                },
            },
            "post": {
                "requestBody": {
                    "content": {"application/json": {"schema": {"type": "object"}}}
                },
                "responses": {"201": {}},
            },
            "parameters": [{"name": "ignored"}],
        },
        "/api/widgets/{id}": {"delete": {"responses": {"204": {}}}},
    },
}

SWAGGER_YAML = """
swagger: "2.0"
basePath: /v2/
paths:
  /pets:
    post:
      parameters:
        - in: body
          name: pet
          schema:
            type: object
      responses:
        "200":
          schema:
            type: object
  /pets/{id}:
    get:
      responses:
        "200":
          schema:
            $ref: "#/definitions/Pet"
"""


def serve(routes: dict[str, httpx.Response]) -> httpx.MockTransport:
    """Return a transport answering *routes* by path and 404 for anything else."""

    def handler(request: httpx.Request) -> httpx.Response:
        return routes.get(request.url.path, httpx.Response(404))

    return httpx.MockTransport(handler)


def make_crawler(
    routes: dict | None = None,
    site: FakeSite | None = None,
    updates: list | None = None,
) -> tuple[APICrawler, FakeContext]:
    context = FakeContext(site or FakeSite())
    crawler = APICrawler(
        context,
        on_progress=updates.append if updates is not None else None,
        transport=serve(routes or {}),
        observe_seconds=0,
    )
    return crawler, context


def endpoint_keys(endpoints) -> set[str]:
    return {e.key for e in endpoints}


# ---------------------------------------------------------------------------
# discover
# ---------------------------------------------------------------------------


class TestDiscover:
    def test_nothing_found_still_yields_heuristics(self):
        crawler, _ = make_crawler()
        api = asyncio.run(crawler.discover(BASE))
        assert len(api.endpoints) == 29
        assert api.authentication == "bearer"
        assert api.base_url == BASE

    def test_trailing_slash_is_stripped(self):
        crawler, _ = make_crawler()
        api = asyncio.run(crawler.discover(BASE + "/"))
        assert api.base_url == BASE

    def test_spec_and_traffic_duplicates_merge(self):
        site = FakeSite(requests={BASE: [FakeRequest(f"{BASE}/api/users?page=2")]})
        routes = {"/openapi.json": httpx.Response(200, json=OPENAPI_DOC)}
        crawler, _ = make_crawler(routes, site)
        api = asyncio.run(crawler.discover(BASE))

        users = [e for e in api.endpoints if e.key == "GET:/api/users"]
        assert len(users) == 1
        assert users[0].response_schema == {"type": "array"}
        assert users[0].parameters == [{"name": "page", "in": "query"}]

    def test_spec_endpoints_are_included(self):
        routes = {"/openapi.json": httpx.Response(200, json=OPENAPI_DOC)}
        crawler, _ = make_crawler(routes)
        api = asyncio.run(crawler.discover(BASE))
        assert "DELETE:/api/widgets/{id}" in endpoint_keys(api.endpoints)

    def test_spec_with_odd_shapes_does_not_abort_discovery(self):
        doc = {"swagger": "2.0", "paths": {"/x": {"get": {"responses": {"200": "#/ref"}}}}}
        crawler, _ = make_crawler({"/swagger.json": httpx.Response(200, json=doc)})
        api = asyncio.run(crawler.discover(BASE))
        keys = endpoint_keys(api.endpoints)
        assert "GET:/x" in keys
        assert "GET:/api/users" in keys
        assert len(api.endpoints) == 30

    def test_yaml_spec_is_parsed(self):
        routes = {
            "/swagger.yaml": httpx.Response(
                200, text=SWAGGER_YAML, headers={"content-type": "application/x-yaml"}
            )
        }
        crawler, _ = make_crawler(routes)
        api = asyncio.run(crawler.discover(BASE))
        assert {"POST:/v2/pets", "GET:/v2/pets/{id}"} <= endpoint_keys(api.endpoints)

    def test_malformed_spec_is_ignored(self):
        routes = {
            "/swagger.json": httpx.Response(
                200, text="{not json", headers={"content-type": "application/json"}
            ),
            "/openapi.json": httpx.Response(200, json=OPENAPI_DOC),
        }
        crawler, _ = make_crawler(routes)
        api = asyncio.run(crawler.discover(BASE))
        assert "DELETE:/api/widgets/{id}" in endpoint_keys(api.endpoints)

    def test_traffic_endpoints_are_captured(self):
        site = FakeSite(
            requests={
                BASE: [
                    FakeRequest(f"{BASE}/api/carts", "POST", post_data='{"sku": "A1"}'),
                    FakeRequest(f"{BASE}/api/carts", "POST"),
                    FakeRequest(f"{BASE}/static/app.js"),
                    FakeRequest("https://cdn.example.net/lib.js"),
                ]
            }
        )
        crawler, context = make_crawler(site=site)
        api = asyncio.run(crawler.discover(BASE))
        carts = [e for e in api.endpoints if e.key == "POST:/api/carts"]
        assert len(carts) == 1
        assert carts[0].request_body == {"sku": "A1"}
        assert context.pages[0].closed

    def test_navigation_failure_is_absorbed(self):
        site = FakeSite(failing={BASE})
        crawler, _ = make_crawler(site=site)
        api = asyncio.run(crawler.discover(BASE))
        assert len(api.endpoints) == 29

    def test_progress_after_each_strategy(self):
        updates = []
        crawler, _ = make_crawler(updates=updates)
        asyncio.run(crawler.discover(BASE))
        assert [u.progress for u in updates] == [33.0, 66.0, 100.0]
        assert updates[-1].endpoints_found == 29

    def test_non_http_base_raises(self):
        crawler, _ = make_crawler()
        with pytest.raises(ConfigurationError):
            asyncio.run(crawler.discover("localhost:8080/api"))


# ---------------------------------------------------------------------------
# parse_spec
# ---------------------------------------------------------------------------


class TestParseSpec:
    def test_openapi3(self):
        endpoints = APICrawler.parse_spec(OPENAPI_DOC)
        assert [e.key for e in endpoints] == [
            "GET:/api/users",
            "POST:/api/users",
            "DELETE:/api/widgets/{id}",
        ]
        post = endpoints[1]
        assert post.request_body == {"type": "object"}
        assert post.response_schema is None

    def test_swagger2_prefixes_base_path(self):
        endpoints = APICrawler.parse_spec(yaml.safe_load(SWAGGER_YAML))
        by_key = {e.key: e for e in endpoints}
        assert by_key["POST:/v2/pets"].request_body == {"type": "object"}
        assert by_key["POST:/v2/pets"].response_schema == {"type": "object"}
        assert by_key["GET:/v2/pets/{id}"].response_schema == {"$ref": "#/definitions/Pet"}

    def test_document_without_paths(self):
        assert APICrawler.parse_spec({"openapi": "3.0.0"}) == []

    def test_non_mapping_responses_and_content(self):
        doc = {
            "openapi": "3.0.0",
            "paths": {
                "/a": {"get": {"responses": ["200"], "parameters": "id"}},
                "/b": {
                    "post": {
                        "requestBody": {"content": ["application/json"]},
                        "responses": {"200": {"content": "application/json"}},
                    }
                },
            },
        }
        endpoints = APICrawler.parse_spec(doc)
        assert [e.key for e in endpoints] == ["GET:/a", "POST:/b"]
        assert all(e.request_body is None and e.response_schema is None for e in endpoints)

    def test_swagger2_string_response(self):
        doc = {"swagger": "2.0", "paths": {"/x": {"get": {"responses": {"200": "#/ref"}}}}}
        [endpoint] = APICrawler.parse_spec(doc)
        assert endpoint.key == "GET:/x"
        assert endpoint.response_schema is None


# ---------------------------------------------------------------------------
# _endpoint_from_request
# ---------------------------------------------------------------------------


class TestEndpointFromRequest:
    def test_strips_query_into_parameters(self):
        endpoint = APICrawler._endpoint_from_request(FakeRequest(f"{BASE}/api/items?limit=5"), BASE)
        assert endpoint.path == "/api/items"
        assert endpoint.parameters == {"limit": "5"}

    def test_path_is_relative_to_base(self):
        base = f"{BASE}/api"
        endpoint = APICrawler._endpoint_from_request(FakeRequest(f"{base}/users/1"), base)
        assert endpoint.path == "/users/1"

    def test_rejects_prefix_without_boundary(self):
        base = f"{BASE}/api"
        assert APICrawler._endpoint_from_request(FakeRequest(f"{BASE}/apiary"), base) is None

    def test_rejects_unsupported_method(self):
        assert APICrawler._endpoint_from_request(FakeRequest(f"{BASE}/x", "OPTIONS"), BASE) is None

    def test_non_json_body_is_dropped(self):
        request = FakeRequest(f"{BASE}/login", "POST", post_data="user=a&pass=b")
        assert APICrawler._endpoint_from_request(request, BASE).request_body is None


# ---------------------------------------------------------------------------
# generate_common_endpoints / merge_endpoints / detect_auth_type
# ---------------------------------------------------------------------------


class TestHeuristics:
    def test_common_endpoint_count(self):
        endpoints = APICrawler.generate_common_endpoints()
        assert len(endpoints) == 29
        assert len(endpoint_keys(endpoints)) == 29

    def test_crud_for_each_resource(self):
        keys = endpoint_keys(APICrawler.generate_common_endpoints())
        for resource in APICrawler.COMMON_RESOURCES:
            assert f"GET:/api/{resource}" in keys
            assert f"DELETE:/api/{resource}/{{id}}" in keys

    def test_auth_endpoints(self):
        keys = endpoint_keys(APICrawler.generate_common_endpoints())
        assert {"POST:/api/auth/login", "POST:/api/auth/refresh"} <= keys


class TestMergeEndpoints:
    def test_first_populated_schema_wins(self):
        merged = APICrawler.merge_endpoints(
            [
                ApiEndpoint(path="/a", method="GET"),
                ApiEndpoint(path="/a", method="GET", response_schema={"v": 1}),
                ApiEndpoint(path="/a", method="GET", response_schema={"v": 2}),
            ]
        )
        assert len(merged) == 1
        assert merged[0].response_schema == {"v": 1}

    def test_methods_are_distinct(self):
        merged = APICrawler.merge_endpoints(
            [ApiEndpoint(path="/a", method="GET"), ApiEndpoint(path="/a", method="POST")]
        )
        assert len(merged) == 2

    def test_inputs_not_mutated(self):
        first = ApiEndpoint(path="/a", method="GET")
        APICrawler.merge_endpoints([first, ApiEndpoint(path="/a", method="GET", request_body={"x": 1})])
        assert first.request_body is None


class TestDetectAuthType:
    def test_auth_path_means_bearer(self):
        assert APICrawler.detect_auth_type([ApiEndpoint(path="/v1/auth/token", method="POST")]) == "bearer"

    def test_login_path_means_bearer(self):
        assert APICrawler.detect_auth_type([ApiEndpoint(path="/login", method="POST")]) == "bearer"

    def test_otherwise_none(self):
        assert APICrawler.detect_auth_type([ApiEndpoint(path="/api/users", method="GET")]) == "none"

    def test_empty_is_none(self):
        assert APICrawler.detect_auth_type([]) == "none"


def test_map_serialises_to_json():
    crawler, _ = make_crawler()
    api = asyncio.run(crawler.discover(BASE))
    data = json.loads(json.dumps(ApplicationMap(api=api).to_dict()))
    assert data["website"] is None
    assert len(data["api"]["endpoints"]) == 29
