"""End-to-end requests through the FastAPI app."""

import pytest


async def signup_and_login(client, email, password="password123", full_name=None) -> dict:
    response = await client.post(
        "/auth/signup", json={"email": email, "password": password, "full_name": full_name}
    )
    assert response.status_code == 201, response.text
    response = await client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
async def staff_headers(client):
    return await signup_and_login(client, "admin@example.com", full_name="Ada Admin")


@pytest.fixture
async def member_headers(client):
    return await signup_and_login(client, "Alice@Example.com", full_name="Alice Reader")


async def test_health(client):
    response = await client.get("/health")
    assert response.json() == {"status": "healthy"}


class TestAuth:

    async def test_roles_follow_the_admin_list(self, client, staff_headers, member_headers):
        staff = (await client.get("/auth/profile", headers=staff_headers)).json()
        member = (await client.get("/auth/profile", headers=member_headers)).json()

        assert staff["role"] == "admin"
        assert member["role"] == "user"
        assert member["email"] == "alice@example.com"

    async def test_duplicate_signup(self, client, member_headers):
        response = await client.post(
            "/auth/signup", json={"email": "alice@example.com", "password": "password123"}
        )
        assert response.status_code == 422
        assert response.json()["error"] == "ValidationError"

    async def test_bad_password(self, client, member_headers):
        response = await client.post(
            "/auth/login", json={"email": "alice@example.com", "password": "wrong-password"}
        )
        assert response.status_code == 401
        assert response.json()["error"] == "NotAuthenticated"
        assert response.headers["www-authenticate"] == "Bearer"

    async def test_missing_and_garbage_tokens(self, client):
        assert (await client.get("/auth/profile")).status_code == 401
        response = await client.get("/auth/profile", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    async def test_signout_revokes_the_token(self, client, member_headers):
        response = await client.post("/auth/signout", headers=member_headers)
        assert response.status_code == 200

        response = await client.get("/auth/profile", headers=member_headers)
        assert response.status_code == 401
        assert response.json()["detail"] == "Token has been revoked"

    async def test_update_profile(self, client, member_headers):
        response = await client.put(
            "/auth/profile", json={"full_name": "Alice R."}, headers=member_headers
        )
        assert response.json()["full_name"] == "Alice R."


class TestLending:

    async def _add_book(self, client, headers, copies=1) -> str:
        response = await client.post(
            "/books/",
            json={"title": "Dune", "author": "Frank Herbert", "total_copies": copies},
            headers=headers,
        )
        assert response.status_code == 201, response.text
        return response.json()["id"]

    async def test_members_cannot_add_books(self, client, member_headers):
        response = await client.post(
            "/books/", json={"title": "Dune", "author": "Frank Herbert"}, headers=member_headers
        )
        assert response.status_code == 403
        assert response.json()["error"] == "NotAuthorized"

    async def test_borrow_and_return(self, client, clock, staff_headers, member_headers):
        book_id = await self._add_book(client, staff_headers)

        response = await client.post(
            "/borrowings/", json={"book_id": book_id}, headers=member_headers
        )
        assert response.status_code == 201
        borrowing = response.json()
        assert borrowing["status"] == "active"
        assert borrowing["is_overdue"] is False

        book = (await client.get(f"/books/{book_id}")).json()
        assert book["available_copies"] == 0

        response = await client.post(
            "/borrowings/", json={"book_id": book_id}, headers=staff_headers
        )
        assert response.status_code == 409
        assert response.json()["error"] == "BookUnavailable"

        clock.advance(days=17)
        listed = (await client.get("/borrowings/?overdue=true", headers=member_headers)).json()
        assert listed["total"] == 1
        assert listed["borrowings"][0]["accrued_fine"] == 1.5

        response = await client.post(
            f"/borrowings/{borrowing['id']}/return", headers=member_headers
        )
        assert response.status_code == 200
        assert response.json()["fine_amount"] == 1.5

        response = await client.post(
            f"/borrowings/{borrowing['id']}/return", headers=member_headers
        )
        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyReturned"

        response = await client.post(
            f"/borrowings/{borrowing['id']}/settle-fine", headers=staff_headers
        )
        assert response.json()["fine_paid"] is True

    async def test_extension_needs_validation(self, client, staff_headers, member_headers):
        book_id = await self._add_book(client, staff_headers, copies=2)
        borrowing = (
            await client.post("/borrowings/", json={"book_id": book_id}, headers=member_headers)
        ).json()

        response = await client.post(
            f"/borrowings/{borrowing['id']}/extend", headers=member_headers
        )
        assert response.status_code == 409
        assert response.json()["error"] == "NotValidated"

        response = await client.post(
            f"/borrowings/{borrowing['id']}/validate", headers=member_headers
        )
        assert response.status_code == 403

        await client.post(f"/borrowings/{borrowing['id']}/validate", headers=staff_headers)
        response = await client.post(
            f"/borrowings/{borrowing['id']}/extend", headers=member_headers
        )
        assert response.status_code == 200
        assert response.json()["extension_count"] == 1

    async def test_unknown_book(self, client, member_headers):
        response = await client.post(
            "/borrowings/",
            json={"book_id": "00000000-0000-0000-0000-000000000000"},
            headers=member_headers,
        )
        assert response.status_code == 404
        assert response.json()["error"] == "NotFound"

    async def test_copy_counts_and_reconcile(self, client, staff_headers, member_headers):
        book_id = await self._add_book(client, staff_headers, copies=2)
        await client.post("/borrowings/", json={"book_id": book_id}, headers=member_headers)

        response = await client.put(
            f"/books/{book_id}/copies", json={"total_copies": 0}, headers=staff_headers
        )
        assert response.status_code == 422

        response = await client.put(
            f"/books/{book_id}/copies", json={"total_copies": 4}, headers=staff_headers
        )
        assert response.json()["available_copies"] == 3

        response = await client.post("/admin/reconcile", headers=member_headers)
        assert response.status_code == 403
        response = await client.post("/admin/reconcile", headers=staff_headers)
        assert response.json() == {"checked": 1, "corrected": [], "skipped": []}


class TestAdmin:

    async def test_dashboard_and_users(self, client, staff_headers, member_headers):
        stats = (await client.get("/admin/stats", headers=staff_headers)).json()
        assert stats["total_users"] == 2

        users = (await client.get("/admin/users", headers=staff_headers)).json()
        assert {u["email"] for u in users} == {"admin@example.com", "alice@example.com"}

        response = await client.get("/admin/users", headers=member_headers)
        assert response.status_code == 403

    async def test_promote_member(self, client, staff_headers, member_headers):
        users = (await client.get("/admin/users", headers=staff_headers)).json()
        alice = next(u for u in users if u["email"] == "alice@example.com")

        response = await client.put(
            f"/admin/users/{alice['id']}/role", json={"role": "admin"}, headers=staff_headers
        )
        assert response.json()["role"] == "admin"

        profile = (await client.get("/auth/profile", headers=member_headers)).json()
        assert profile["role"] == "admin"
