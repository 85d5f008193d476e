from __future__ import annotations

from datetime import UTC, datetime

import httpx
import pytest

from linkshelf.crawlers.contracts import GitHubRepoMetadata
from linkshelf.crawlers.github import GitHubFetcher, map_repo_payload, parse_timestamp
from linkshelf.errors import ExternalServiceError, NotFoundError, RateLimitedError, ValidationError

REPO_PAYLOAD = {
    "full_name": "rust-lang/rust",
    "stargazers_count": 95000,
    "description": "Empowering everyone to build reliable and efficient software.",
    "archived": False,
    "pushed_at": "2024-05-01T12:30:00Z",
    "license": {"key": "other", "name": "Other"},
    "language": "Rust",
}


def make_fetcher(handler, *, token: str = "", max_retries: int = 0) -> GitHubFetcher:
    return GitHubFetcher(
        token=token,
        max_retries=max_retries,
        backoff_base_seconds=0,
        backoff_max_seconds=0,
        base_url="https://api.github.test",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_fetch_repo_metadata_maps_fields() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=REPO_PAYLOAD)

    async with make_fetcher(handler) as fetcher:
        metadata = await fetcher.fetch_repo_metadata("rust-lang", "rust")

    assert metadata == GitHubRepoMetadata(
        stars=95000,
        description="Empowering everyone to build reliable and efficient software.",
        archived=False,
        last_commit=datetime(2024, 5, 1, 12, 30, tzinfo=UTC),
        license="Other",
        language="Rust",
    )
    request = seen[0]
    assert request.url.path == "/repos/rust-lang/rust"
    assert request.headers["accept"] == "application/vnd.github+json"
    assert "authorization" not in request.headers


@pytest.mark.asyncio
async def test_token_is_sent_as_bearer_header() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=REPO_PAYLOAD)

    async with make_fetcher(handler, token="ghp_secret") as fetcher:
        await fetcher.fetch_repo_metadata("rust-lang", "rust")

    assert seen[0].headers["authorization"] == "Bearer ghp_secret"


@pytest.mark.asyncio
async def test_not_found_raises_typed_error() -> None:
    async with make_fetcher(lambda request: httpx.Response(404, json={"message": "Not Found"})) as fetcher:
        with pytest.raises(NotFoundError) as exc_info:
            await fetcher.fetch_repo_metadata("ghost", "missing")

    assert exc_info.value.resource == "GitHub repository"
    assert exc_info.value.identifier == "ghost/missing"
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_exhausted_rate_limit_raises_rate_limited() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, headers={"x-ratelimit-remaining": "0", "x-ratelimit-reset": "1700000000"})

    async with make_fetcher(handler) as fetcher:
        with pytest.raises(RateLimitedError) as exc_info:
            await fetcher.fetch_repo_metadata("rust-lang", "rust")

    assert isinstance(exc_info.value, ExternalServiceError)
    assert exc_info.value.error_code == "RATE_LIMITED"
    assert "GITHUB_TOKEN" in exc_info.value.user_message()


@pytest.mark.asyncio
async def test_forbidden_without_exhausted_quota_is_generic_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, headers={"x-ratelimit-remaining": "42"})

    async with make_fetcher(handler) as fetcher:
        with pytest.raises(ExternalServiceError) as exc_info:
            await fetcher.fetch_repo_metadata("rust-lang", "rust")

    assert not isinstance(exc_info.value, RateLimitedError)
    assert exc_info.value.status == 403


@pytest.mark.asyncio
async def test_server_error_is_not_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    async with make_fetcher(handler, max_retries=3) as fetcher:
        with pytest.raises(ExternalServiceError) as exc_info:
            await fetcher.fetch_repo_metadata("rust-lang", "rust")

    assert exc_info.value.status == 500
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_transport_errors_are_retried_then_surface() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection reset", request=request)

    async with make_fetcher(handler, max_retries=2) as fetcher:
        with pytest.raises(ExternalServiceError):
            await fetcher.fetch_repo_metadata("rust-lang", "rust")

    assert len(calls) == 3


@pytest.mark.asyncio
async def test_zero_retries_makes_a_single_attempt() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection reset", request=request)

    async with make_fetcher(handler, max_retries=0) as fetcher:
        with pytest.raises(ExternalServiceError):
            await fetcher.fetch_repo_metadata("rust-lang", "rust")

    assert len(calls) == 1


@pytest.mark.asyncio
async def test_transient_transport_error_recovers() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json=REPO_PAYLOAD)

    async with make_fetcher(handler, max_retries=1) as fetcher:
        metadata = await fetcher.fetch_repo_metadata("rust-lang", "rust")

    assert metadata.stars == 95000


@pytest.mark.asyncio
async def test_invalid_json_is_external_failure() -> None:
    async with make_fetcher(lambda request: httpx.Response(200, content=b"<html>")) as fetcher:
        with pytest.raises(ExternalServiceError):
            await fetcher.fetch_repo_metadata("rust-lang", "rust")


@pytest.mark.asyncio
async def test_fetch_for_url_rejects_non_repository_urls() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=REPO_PAYLOAD)

    async with make_fetcher(handler) as fetcher:
        with pytest.raises(ValidationError):
            await fetcher.fetch_repo_metadata_for_url("https://example.com/")
        metadata = await fetcher.fetch_repo_metadata_for_url("https://github.com/rust-lang/rust.git")

    assert metadata.language == "Rust"
    assert len(calls) == 1
    assert calls[0].url.path == "/repos/rust-lang/rust"


def test_map_repo_payload_tolerates_missing_and_malformed_fields() -> None:
    metadata = map_repo_payload(
        {"stargazers_count": None, "pushed_at": "yesterday", "license": None, "archived": True}
    )

    assert metadata == GitHubRepoMetadata(stars=0, archived=True)
    assert metadata.to_dict()["last_commit"] is None


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("2024-01-15T08:00:00Z", datetime(2024, 1, 15, 8, 0, tzinfo=UTC)),
        ("2024-01-15T10:00:00+02:00", datetime(2024, 1, 15, 8, 0, tzinfo=UTC)),
        ("not-a-date", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_timestamp(raw, expected) -> None:
    assert parse_timestamp(raw) == expected
