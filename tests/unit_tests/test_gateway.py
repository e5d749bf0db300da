"""Tests for the secure gateway tiers, against a small stub app."""

from datetime import timedelta
from typing import Annotated

import pytest
from fastapi import Depends, FastAPI, Request, Response
from fastapi.testclient import TestClient
from starlette.requests import Request as StarletteRequest

from otpgate.rate_limit import MemoryBucketStore, Quota
from otpgate.services.gateway import GatewayContext, JwtIdentityVerifier, SecureGateway, bearer_token, client_ip
from tests.mocks.services import make_token

PUBLIC = Quota(limit=60, window_seconds=3600)
AUTHENTICATED = Quota(limit=3, window_seconds=3600)


# ── Fixtures ───────────────────────────────────────────────────────────────


class StubApp:
    """A tiny app with one route per tier that counts handler runs."""

    def __init__(self, clock, *, trust_proxy: bool = False) -> None:
        self.buckets = MemoryBucketStore()
        self.gateway = SecureGateway(
            self.buckets,
            JwtIdentityVerifier(),
            clock=clock,
            public_quota=PUBLIC,
            authenticated_quota=AUTHENTICATED,
            trust_proxy=trust_proxy,
        )
        self.calls: list[GatewayContext] = []
        self.app = self._build()

    def _build(self) -> FastAPI:
        app = FastAPI()
        gateway = self.gateway

        def public(route_class: str):
            async def _admit(request: Request, response: Response) -> GatewayContext:
                return await gateway.admit_public(request, response, route_class)
            return _admit

        async def account(request: Request, response: Response) -> GatewayContext:
            return await gateway.admit_authenticated(request, response, "account")

        @app.get("/a")
        async def route_a(ctx: Annotated[GatewayContext, Depends(public("a"))]):
            self.calls.append(ctx)
            return {"ip": ctx.ip}

        @app.get("/b")
        async def route_b(ctx: Annotated[GatewayContext, Depends(public("b"))]):
            self.calls.append(ctx)
            return {"ip": ctx.ip}

        @app.get("/me")
        async def me(ctx: Annotated[GatewayContext, Depends(account)]):
            self.calls.append(ctx)
            return {"subject": ctx.subject}

        return app


@pytest.fixture()
def stub(clock) -> StubApp:
    return StubApp(clock)


@pytest.fixture()
def stub_client(stub):
    with TestClient(stub.app) as tc:
        yield tc


# ── Public tier ────────────────────────────────────────────────────────────


class TestPublicTier:
    def test_accepted_request_carries_limit_headers(self, stub_client):
        resp = stub_client.get("/a")
        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Limit"] == "60"
        assert resp.headers["X-RateLimit-Remaining"] == "59"
        assert "X-RateLimit-Reset" in resp.headers

    def test_sixty_first_request_is_rejected(self, stub, stub_client):
        for _ in range(60):
            assert stub_client.get("/a").status_code == 200

        resp = stub_client.get("/a")
        assert resp.status_code == 429
        assert resp.headers["X-RateLimit-Remaining"] == "0"
        assert int(resp.headers["Retry-After"]) == 3600
        # Handler never ran for the rejected request
        assert len(stub.calls) == 60

    def test_rejection_body_is_generic(self, stub_client):
        for _ in range(60):
            stub_client.get("/a")
        body = stub_client.get("/a").json()["detail"]
        assert body["success"] is False
        assert body["error"] == "RateLimited"

    def test_budget_returns_next_window(self, stub_client, clock):
        for _ in range(61):
            stub_client.get("/a")
        clock.advance(3600)
        assert stub_client.get("/a").status_code == 200

    def test_route_classes_have_separate_buckets(self, stub_client):
        for _ in range(60):
            stub_client.get("/a")
        assert stub_client.get("/a").status_code == 429
        assert stub_client.get("/b").status_code == 200

    def test_forwarded_for_ignored_without_trusted_proxy(self, stub_client):
        for i in range(60):
            stub_client.get("/a", headers={"X-Forwarded-For": f"203.0.113.{i}"})
        resp = stub_client.get("/a", headers={"X-Forwarded-For": "198.51.100.1"})
        assert resp.status_code == 429

    def test_forwarded_for_honoured_behind_trusted_proxy(self, clock):
        stub = StubApp(clock, trust_proxy=True)
        with TestClient(stub.app) as tc:
            for _ in range(60):
                tc.get("/a", headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
            assert tc.get("/a", headers={"X-Forwarded-For": "203.0.113.7"}).status_code == 429
            assert tc.get("/a", headers={"X-Forwarded-For": "203.0.113.8"}).status_code == 200
        assert stub.calls[0].ip == "203.0.113.7"


# ── Authenticated tier ─────────────────────────────────────────────────────


class TestAuthenticatedTier:
    def test_valid_token(self, stub_client):
        resp = stub_client.get("/me", headers={"Authorization": f"Bearer {make_token('user-1')}"})
        assert resp.status_code == 200
        assert resp.json() == {"subject": "user-1"}
        assert resp.headers["X-RateLimit-Limit"] == "3"

    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"Authorization": "Bearer"},
            {"Authorization": "Basic dXNlcjpwYXNz"},
            {"Authorization": "Bearer not-a-jwt"},
            {"Authorization": f"Bearer {make_token('user-1', secret='some-other-secret')}"},
        ],
    )
    def test_missing_or_bad_token_is_401(self, stub, stub_client, headers):
        resp = stub_client.get("/me", headers=headers)
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"
        assert stub.calls == []

    def test_expired_token_is_401(self, stub, stub_client):
        token = make_token("user-1", expires_in=timedelta(seconds=-5))
        resp = stub_client.get("/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert stub.calls == []

    def test_rejected_tokens_consume_no_quota(self, stub_client):
        for _ in range(10):
            stub_client.get("/me")
        resp = stub_client.get("/me", headers={"Authorization": f"Bearer {make_token('user-1')}"})
        assert resp.status_code == 200
        assert resp.headers["X-RateLimit-Remaining"] == "2"

    def test_quota_is_per_subject(self, stub_client):
        alice = {"Authorization": f"Bearer {make_token('alice')}"}
        bob = {"Authorization": f"Bearer {make_token('bob')}"}
        for _ in range(3):
            assert stub_client.get("/me", headers=alice).status_code == 200
        assert stub_client.get("/me", headers=alice).status_code == 429
        assert stub_client.get("/me", headers=bob).status_code == 200


# ── Helpers ────────────────────────────────────────────────────────────────


def _request(headers: dict[str, str], client=("192.0.2.10", 5000)) -> StarletteRequest:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": client,
    }
    return StarletteRequest(scope)


class TestClientIp:
    def test_socket_peer_by_default(self):
        assert client_ip(_request({"X-Real-IP": "203.0.113.1"})) == "192.0.2.10"

    def test_first_forwarded_hop(self):
        req = _request({"X-Forwarded-For": "203.0.113.1, 10.0.0.2"})
        assert client_ip(req, trust_proxy=True) == "203.0.113.1"

    def test_real_ip_then_cloudflare(self):
        assert client_ip(_request({"X-Real-IP": "203.0.113.2"}), trust_proxy=True) == "203.0.113.2"
        assert client_ip(_request({"CF-Connecting-IP": "203.0.113.3"}), trust_proxy=True) == "203.0.113.3"

    def test_falls_back_to_peer_without_headers(self):
        assert client_ip(_request({}), trust_proxy=True) == "192.0.2.10"


class TestBearerToken:
    def test_extracts_token(self):
        assert bearer_token(_request({"Authorization": "Bearer abc.def"})) == "abc.def"

    def test_scheme_is_case_insensitive(self):
        assert bearer_token(_request({"Authorization": "bearer abc"})) == "abc"

    def test_other_schemes_ignored(self):
        assert bearer_token(_request({"Authorization": "Basic abc"})) is None
