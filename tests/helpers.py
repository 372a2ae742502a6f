"""Stub Supabase admin API and user factory shared by the tests."""

from typing import Any

import httpx

SERVICE_KEY = "service-role-key"
SOURCE_URL = "https://project.supabase.test"
TENANT = "tenant-1"


def make_user(
    index: int,
    email: str | None = None,
    identities: list[dict[str, Any]] | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    """Build one admin API user object."""
    user = {
        "id": f"00000000-0000-0000-0000-{index:012d}",
        "email": email if email is not None else f"User{index}@Example.com",
        "phone": "",
        "email_confirmed_at": "2024-01-02T00:00:00Z",
        "created_at": f"2024-01-{(index % 28) + 1:02d}T10:00:00Z",
        "updated_at": "2024-02-01T10:00:00Z",
        "last_sign_in_at": "2024-03-01T10:00:00Z",
        "user_metadata": {"full_name": f"User {index}", "avatar_url": f"https://cdn/{index}.png"},
        "app_metadata": {"provider": "email", "providers": ["email"]},
        "identities": identities
        if identities is not None
        else [{"id": str(index), "provider": "email", "identity_data": {"sub": str(index)}}],
    }
    user.update(overrides)
    return user


class FakeSupabase:
    """In-memory stand-in for ``GET /auth/v1/admin/users``."""

    def __init__(self, users: list[dict[str, Any]] | None = None, key: str = SERVICE_KEY):
        self.users = list(users or [])
        self.key = key
        self.send_total = True
        self.fail_pages: set[int] = set()
        self.malformed_pages: set[int] = set()
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("apikey") != self.key:
            return httpx.Response(401, json={"msg": "Invalid API key"})

        page = int(request.url.params.get("page", "1"))
        per_page = int(request.url.params.get("per_page", "50"))

        if page in self.fail_pages and per_page > 1:
            return httpx.Response(503, json={"msg": "Service unavailable"})
        if page in self.malformed_pages and per_page > 1:
            return httpx.Response(200, json={"unexpected": True})

        start = (page - 1) * per_page
        headers = {"x-total-count": str(len(self.users))} if self.send_total else {}
        return httpx.Response(
            200,
            json={"users": self.users[start : start + per_page], "aud": "authenticated"},
            headers=headers,
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def listed_pages(self) -> list[int]:
        """Page numbers fetched by listing calls (probes use per_page=1)."""
        return [
            int(r.url.params["page"])
            for r in self.requests
            if int(r.url.params.get("per_page", "0")) > 1
        ]
