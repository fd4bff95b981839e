"""Tests for the aggregator client (panel fetch and result publication).

The aggregator is replaced with httpx.MockTransport handlers.
"""

import asyncio
import json

import httpx
import pytest

from models.scan import RepoScanResult
from services.errors import PanelError
from services.publisher import fetch_panel, publish_results

API_URL = "http://aggregator.test"


def run_with_handler(handler, coro_factory):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await coro_factory(client)

    return asyncio.run(scenario())


def test_fetch_panel_returns_slugs():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        return httpx.Response(
            200,
            json={
                "quarter": "2025-Q1",
                "repos": [
                    {"repo_slug": "vercel/next.js", "stars": 10},
                    {"repo_slug": "rust-lang/rust"},
                    {"stars": 3},
                    {"repo_slug": 42},
                    "junk",
                ],
            },
        )

    slugs = run_with_handler(handler, lambda c: fetch_panel(c, API_URL, "2025-Q1"))

    assert slugs == ["vercel/next.js", "rust-lang/rust"]
    assert seen["url"] == f"{API_URL}/api/index-panel?quarter=2025-Q1"


def test_fetch_panel_without_repos_key_is_empty():
    slugs = run_with_handler(
        lambda request: httpx.Response(200, json={"quarter": "2025-Q1"}),
        lambda c: fetch_panel(c, API_URL, "2025-Q1"),
    )
    assert slugs == []


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, text="<html>not json</html>"),
    ],
)
def test_fetch_panel_errors_raise_panel_error(response):
    with pytest.raises(PanelError):
        run_with_handler(lambda request: response, lambda c: fetch_panel(c, API_URL, "2025-Q1"))


def test_fetch_panel_transport_error_raises_panel_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(PanelError, match="Failed to fetch panel"):
        run_with_handler(handler, lambda c: fetch_panel(c, API_URL, "2025-Q1"))


def test_publish_results_posts_payload_with_bearer_token():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["method"] = request.method
        captured["url"] = str(request.url)
        captured["auth"] = request.headers.get("authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True})

    results = [RepoScanResult(repo_slug="o/a", total_commits=3, ai_commits=2)]
    ok = run_with_handler(
        handler,
        lambda c: publish_results(c, API_URL, "tok", "2025-01-03", results),
    )

    assert ok is True
    assert captured["method"] == "POST"
    assert captured["url"] == f"{API_URL}/api/index-results"
    assert captured["auth"] == "Bearer tok"
    assert captured["body"] == {
        "scan_date": "2025-01-03",
        "results": [{"repo_slug": "o/a", "total_commits": 3, "ai_commits": 2}],
    }


def test_publish_results_empty_result_set_is_still_posted():
    bodies = []

    def handler(request):
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"ok": True})

    assert run_with_handler(handler, lambda c: publish_results(c, API_URL, "tok", "2025-01-02", [])) is True
    assert bodies == [{"scan_date": "2025-01-02", "results": []}]


def test_publish_results_rejection_is_logged_not_raised(caplog):
    ok = run_with_handler(
        lambda request: httpx.Response(401, json={"error": "Unauthorized"}),
        lambda c: publish_results(c, API_URL, "wrong", "2025-01-01", []),
    )
    assert ok is False
    assert "rejected index results for 2025-01-01" in caplog.text


def test_publish_results_transport_error_is_logged_not_raised(caplog):
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    ok = run_with_handler(handler, lambda c: publish_results(c, API_URL, "tok", "2025-01-01", []))
    assert ok is False
    assert "Failed to post index results for 2025-01-01" in caplog.text
