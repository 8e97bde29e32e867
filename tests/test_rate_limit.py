"""
test_rate_limit.py — Rate limiting on the heatmap routes.

Strategy for the 429 tests:
  Patch `limiter.limiter.hit` to return False, which tells slowapi that the
  moving-window bucket is full → raises RateLimitExceeded → 429.
  This avoids sending 60 real requests per test.
"""

from unittest.mock import patch

import pytest

BASE = "/api/v1/heatmap"
ORG = {"organizationId": "org_1"}


# ══ Normal operation (under the limit) ════════════════════════════════════════

class TestRateLimitNormal:

    async def test_explain_returns_200(self, hm_client):
        r = await hm_client.get(f"{BASE}/explain")
        assert r.status_code == 200

    async def test_data_returns_200(self, hm_client):
        r = await hm_client.get(f"{BASE}/data", params=ORG)
        assert r.status_code == 200

    async def test_multiple_requests_within_limit_succeed(self, hm_client):
        for _ in range(3):
            r = await hm_client.get(f"{BASE}/stats", params=ORG)
            assert r.status_code == 200


# ══ Rate limit exceeded (429) ══════════════════════════════════════════════════

class TestRateLimitExceeded:

    @pytest.mark.parametrize("path", ["data", "geojson", "clusters", "grid", "stats", "explain"])
    async def test_every_heatmap_route_is_limited(self, hm_client, path):
        from issue_heatmap.core.rate_limit import limiter

        with patch.object(limiter.limiter, "hit", return_value=False):
            r = await hm_client.get(f"{BASE}/{path}", params=ORG)

        assert r.status_code == 429

    async def test_429_response_is_json_with_error(self, hm_client):
        from issue_heatmap.core.rate_limit import limiter

        with patch.object(limiter.limiter, "hit", return_value=False):
            r = await hm_client.get(f"{BASE}/data", params=ORG)

        assert r.headers.get("content-type", "").startswith("application/json")
        assert "limit" in r.json()["error"].lower()

    async def test_after_limit_reset_request_succeeds(self, hm_client):
        from issue_heatmap.core.rate_limit import limiter

        with patch.object(limiter.limiter, "hit", return_value=False):
            r_limited = await hm_client.get(f"{BASE}/explain")
        assert r_limited.status_code == 429

        r_ok = await hm_client.get(f"{BASE}/explain")
        assert r_ok.status_code == 200

    async def test_health_is_not_limited(self, client):
        from issue_heatmap.core.rate_limit import limiter

        with patch.object(limiter.limiter, "hit", return_value=False):
            r = await client.get("/health")

        assert r.status_code == 200


# ══ Limiter configuration ══════════════════════════════════════════════════════

class TestLimiterSetup:

    def test_limiter_attached_to_app_state(self):
        from issue_heatmap.core.rate_limit import limiter
        from issue_heatmap.main import app

        assert app.state.limiter is limiter

    def test_limiter_uses_ip_key_function(self):
        from slowapi.util import get_remote_address

        from issue_heatmap.core.rate_limit import limiter

        assert limiter._key_func is get_remote_address
