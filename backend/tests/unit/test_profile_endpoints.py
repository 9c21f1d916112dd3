"""Tests for profile and location endpoints."""
from postgrest.exceptions import APIError


DAVE_ID = "44444444-4444-4444-8444-444444444444"


class TestGetProfile:
    """Tests for GET /me/profile."""

    def test_own_profile(self, client, fake_supabase, alice_id, as_user):
        response = client.get("/me/profile", headers=as_user(alice_id))

        assert response.status_code == 200
        body = response.json()
        assert body["username"] == "alice"
        assert body["latitude"] == 40.7128

    def test_missing_profile(self, client, fake_supabase, as_user):
        response = client.get("/me/profile", headers=as_user(DAVE_ID))

        assert response.status_code == 404


class TestUpdateProfile:
    """Tests for PATCH /me/profile."""

    def test_update_fields(self, client, fake_supabase, alice_id, as_user):
        response = client.patch(
            "/me/profile",
            json={"username": "Alice_A", "full_name": "Alice A.", "avatar_url": "https://cdn.example.com/a.png"},
            headers=as_user(alice_id),
        )

        assert response.status_code == 200
        stored = next(row for row in fake_supabase.rows("profiles") if row["id"] == alice_id)
        assert stored["username"] == "alice_a"
        assert stored["full_name"] == "Alice A."
        assert stored["avatar_url"] == "https://cdn.example.com/a.png"
        assert stored["updated_at"] is not None
        assert stored["latitude"] == 40.7128

    def test_partial_update_keeps_other_fields(self, client, fake_supabase, bob_id, as_user):
        response = client.patch("/me/profile", json={"full_name": "Robert Brown"}, headers=as_user(bob_id))

        assert response.json()["full_name"] == "Robert Brown"
        assert response.json()["username"] == "bob"

    def test_empty_update_returns_profile(self, client, fake_supabase, bob_id, as_user):
        response = client.patch("/me/profile", json={}, headers=as_user(bob_id))

        assert response.status_code == 200
        assert response.json()["full_name"] == "Bob Brown"

    def test_first_save_creates_profile(self, client, fake_supabase, as_user):
        response = client.patch("/me/profile", json={"username": "dave"}, headers=as_user(DAVE_ID))

        assert response.status_code == 200
        assert response.json()["id"] == DAVE_ID
        assert any(row["id"] == DAVE_ID for row in fake_supabase.rows("profiles"))

    def test_username_taken(self, client, fake_supabase, bob_id, as_user):
        response = client.patch("/me/profile", json={"username": "ALICE"}, headers=as_user(bob_id))

        assert response.status_code == 409
        assert response.json()["code"] == "state_conflict"
        assert response.json()["detail"] == "That username is already taken"

    def test_username_taken_reported_by_database(self, client, mock_supabase_client, bob_id, as_user):
        mock_supabase_client.execute.side_effect = APIError({
            "code": "23505", "message": "duplicate key value", "details": None, "hint": None,
        })

        response = client.patch("/me/profile", json={"username": "alice"}, headers=as_user(bob_id))

        assert response.status_code == 409
        assert response.json()["retryable"] is False

    def test_invalid_username(self, client, fake_supabase, bob_id, as_user):
        response = client.patch("/me/profile", json={"username": "no spaces!"}, headers=as_user(bob_id))

        assert response.status_code == 422

    def test_search_finds_new_username(self, client, fake_supabase, alice_id, as_user):
        client.patch("/me/profile", json={"username": "trader_dave"}, headers=as_user(DAVE_ID))

        response = client.get("/users/search", params={"q": "dave"}, headers=as_user(alice_id))

        assert [p["id"] for p in response.json()] == [DAVE_ID]


class TestUpdateLocation:
    """Tests for PUT /me/location."""

    def test_save_location(self, client, fake_supabase, carol_id, as_user):
        response = client.put(
            "/me/location",
            json={"latitude": 40.758, "longitude": -73.9855, "location_name": "Midtown"},
            headers=as_user(carol_id),
        )

        assert response.status_code == 200
        body = response.json()
        assert (body["latitude"], body["longitude"]) == (40.758, -73.9855)
        assert body["location_name"] == "Midtown"
        assert body["location_updated_at"] is not None

    def test_out_of_range(self, client, fake_supabase, carol_id, as_user):
        response = client.put(
            "/me/location", json={"latitude": 91, "longitude": 0}, headers=as_user(carol_id)
        )

        assert response.status_code == 422

    def test_feed_uses_saved_location(self, client, fake_supabase, alice_id, carol_id, as_user):
        fake_supabase.add_item(carol_id, title="Skateboard")
        params = {"latitude": 40.7128, "longitude": -74.0060, "radius_km": 50}

        before = client.get("/feed", params=params, headers=as_user(alice_id)).json()["items"]
        client.put(
            "/me/location", json={"latitude": 40.758, "longitude": -73.9855}, headers=as_user(carol_id)
        )
        after = client.get("/feed", params=params, headers=as_user(alice_id)).json()["items"]

        assert before == []
        assert [item["title"] for item in after] == ["Skateboard"]
        assert after[0]["distance_km"] < 10
