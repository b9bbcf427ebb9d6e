"""Tests for uploads across endpoints."""

import httpx
import pytest

from blobmesh.errors import AllEndpointsFailedError, ErrorCategory, NetworkError
from blobmesh.models import AuthAction, NoEndpoints
from conftest import RecordingSleep, sha256

DATA = b"\x89PNG fake image bytes"
HASH = sha256(DATA)


class TestUploadToAll:
    """Maximum redundancy mode."""

    @pytest.mark.asyncio
    async def test_all_endpoints_succeed(self, engine, servers, endpoint_urls, issuer):
        result = await engine.upload_to_all(DATA, endpoint_urls, "ext", content_type="image/png", filename="cat.png")

        assert result.content_hash == HASH
        assert result.fully_replicated
        assert result.primary_endpoint == "https://a.test"
        assert result.descriptor.available_on == endpoint_urls
        assert result.descriptor.filename == "cat.png"
        assert all(HASH in s.blobs for s in servers)
        # One token, bound to the hash, shared by every endpoint
        assert issuer.calls == [(AuthAction.UPLOAD, "ext", HASH)]
        assert {s.headers[0]["authorization"] for s in servers} == {"Nostr token-1"}

    @pytest.mark.asyncio
    async def test_request_headers(self, engine, servers, endpoint_urls):
        await engine.upload_to_all(DATA, endpoint_urls[:1], "ext", content_type="image/png")
        headers = servers[0].headers[0]
        assert headers["content-type"] == "image/png"
        assert headers["content-length"] == str(len(DATA))

    @pytest.mark.asyncio
    async def test_partial_failure_is_success(self, engine, servers, endpoint_urls):
        """One of three endpoints failing still succeeds, with the failure recorded."""
        servers[1].status = 500
        servers[1].reason = "disk full"

        result = await engine.upload_to_all(DATA, endpoint_urls, "ext")

        assert result.succeeded == ["https://a.test", "https://c.test"]
        assert len(result.failed) == 1
        failed = result.failed[0]
        assert failed.endpoint == "https://b.test"
        assert failed.category is ErrorCategory.SERVER
        assert "disk full" in failed.error

    @pytest.mark.asyncio
    async def test_primary_is_first_success_in_rank_order(self, engine, servers, endpoint_urls):
        servers[0].down = True
        result = await engine.upload_to_all(DATA, endpoint_urls, "ext")
        assert result.primary_endpoint == "https://b.test"
        assert result.primary.url == f"https://b.test/{HASH}"

    @pytest.mark.asyncio
    async def test_outcomes_sorted_by_url(self, engine, network):
        urls = [network.add(f"https://{n}.test").base for n in ("z", "m", "b")]
        result = await engine.upload_to_all(DATA, urls, "ext")
        assert [o.endpoint for o in result.outcomes] == sorted(urls)

    @pytest.mark.asyncio
    async def test_total_failure_lists_every_reason(self, engine, servers, endpoint_urls):
        servers[0].status = 500
        servers[0].reason = "disk full"
        servers[1].down = True
        servers[2].status = 413
        servers[2].reason = "too large"

        with pytest.raises(AllEndpointsFailedError) as exc:
            await engine.upload_to_all(DATA, endpoint_urls, "ext")

        error = exc.value
        assert len(error.outcomes) == 3
        assert set(error.reasons) == set(endpoint_urls)
        message = str(error)
        assert "disk full" in message
        assert "too large" in message
        assert "Connection refused" in message

    @pytest.mark.asyncio
    async def test_repeat_upload_reuses_token(self, engine, servers, endpoint_urls, issuer):
        """Uploading the same bytes again inside the token lifetime signs nothing new."""
        await engine.upload_to_all(DATA, endpoint_urls, "ext")
        await engine.upload_to_all(DATA, endpoint_urls, "ext")

        assert len(issuer.calls) == 1
        assert {h["authorization"] for s in servers for h in s.headers} == {"Nostr token-1"}

    @pytest.mark.asyncio
    async def test_no_endpoints(self, engine, issuer):
        result = await engine.upload_to_all(DATA, [], "ext")
        assert isinstance(result, NoEndpoints)
        assert issuer.calls == []

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, make_engine, servers, endpoint_urls):
        sleep = RecordingSleep()
        engine = make_engine(max_attempts=3, sleep=sleep)
        servers[0].status = 503

        calls = {"n": 0}
        original = servers[0].handle

        async def recover(request):
            calls["n"] += 1
            if calls["n"] == 2:
                servers[0].status = None
            return await original(request)

        servers[0].handle = recover
        result = await engine.upload_to_all(DATA, endpoint_urls[:1], "ext")

        assert result.fully_replicated
        assert calls["n"] == 2
        assert len(sleep.delays) == 1

    @pytest.mark.asyncio
    async def test_permission_error_not_retried(self, make_engine, servers, endpoint_urls):
        engine = make_engine(max_attempts=3)
        servers[0].status = 403

        with pytest.raises(AllEndpointsFailedError) as exc:
            await engine.upload_to_all(DATA, endpoint_urls[:1], "ext")

        assert servers[0].count("PUT", "/upload") == 1
        assert exc.value.outcomes[0].category is ErrorCategory.PERMISSION

    @pytest.mark.asyncio
    async def test_auth_rejection_invalidates_token(self, engine, servers, endpoint_urls, issuer):
        servers[0].status = 401
        await engine.upload_to_all(DATA, endpoint_urls[:2], "ext")
        assert len(engine.tokens) == 0

        servers[0].status = None
        await engine.upload_to_all(DATA, endpoint_urls[:2], "ext")
        assert len(issuer.calls) == 2


class TestUploadWithFallback:
    """Primary-first mode."""

    @pytest.mark.asyncio
    async def test_stops_at_first_success(self, engine, servers, endpoint_urls):
        """[A fails, B succeeds]: C is never contacted."""
        servers[0].status = 500

        result = await engine.upload_with_fallback(DATA, endpoint_urls, "ext")

        assert result.endpoint == "https://b.test"
        assert [(a.endpoint, a.succeeded) for a in result.attempts] == [
            ("https://a.test", False),
            ("https://b.test", True),
        ]
        assert servers[2].requests == []

    @pytest.mark.asyncio
    async def test_primary_success(self, engine, servers, endpoint_urls):
        result = await engine.upload_with_fallback(DATA, endpoint_urls, "ext")
        assert result.endpoint == "https://a.test"
        assert len(result.attempts) == 1
        assert servers[1].requests == []

    @pytest.mark.asyncio
    async def test_all_fail_in_rank_order(self, engine, servers, endpoint_urls):
        for server in servers:
            server.down = True

        with pytest.raises(AllEndpointsFailedError) as exc:
            await engine.upload_with_fallback(DATA, endpoint_urls, "ext")

        assert [o.endpoint for o in exc.value.outcomes] == endpoint_urls
        assert isinstance(exc.value.__cause__, NetworkError)

    @pytest.mark.asyncio
    async def test_hash_mismatch_counts_as_failure(self, engine, servers, endpoint_urls):
        """An endpoint answering with another hash did not store our blob."""
        original = servers[0].handle

        async def lying(request):
            response = await original(request)
            body = response.json()
            body["sha256"] = "f" * 64
            return httpx.Response(200, json=body)

        servers[0].handle = lying
        result = await engine.upload_with_fallback(DATA, endpoint_urls, "ext")

        assert result.endpoint == "https://b.test"
        assert result.attempts[0].category is ErrorCategory.VALIDATION

    @pytest.mark.asyncio
    async def test_server_error_category(self, engine, servers, endpoint_urls):
        servers[0].status = 502
        result = await engine.upload_with_fallback(DATA, endpoint_urls, "ext")
        assert result.attempts[0].category is ErrorCategory.SERVER
