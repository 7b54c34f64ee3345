"""Integration tests for service and identity endpoints."""

PREFIX = "/api/v1"


class TestServiceEndpoints:
    async def test_health(self, client) -> None:
        response = await client.get(f"{PREFIX}/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}
        assert response.headers["X-Frame-Options"] == "DENY"

    async def test_info(self, client, settings) -> None:
        body = (await client.get(f"{PREFIX}/info")).json()
        assert body["batch_max_items"] == settings.batch_max_items
        assert body["batch_approval_threshold"] == settings.batch_approval_threshold


class TestMe:
    async def test_me_reports_stored_role(self, client, auth, admin) -> None:
        response = await client.get(f"{PREFIX}/auth/me", headers=auth("admin-1"))
        assert response.status_code == 200
        body = response.json()
        assert body["user_id"] == "admin-1"
        assert body["role"]["name"] == "admin"
        assert [r["name"] for r in body["assignable_roles"]] == ["student", "moderator"]

    async def test_me_without_role(self, client, auth, roles) -> None:
        body = (await client.get(f"{PREFIX}/auth/me", headers=auth("newcomer"))).json()
        assert body["role"] is None
        assert body["assignable_roles"] == []

    async def test_me_requires_token(self, client) -> None:
        response = await client.get(f"{PREFIX}/auth/me")
        assert response.status_code == 401
