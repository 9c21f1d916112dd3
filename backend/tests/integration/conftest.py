"""
Integration test fixtures for testing with real local Supabase database.

These fixtures connect to a local Supabase instance and perform real database operations.
Run `supabase start` before running integration tests.
All tests in this directory are automatically marked as integration tests.
"""
import os
import subprocess
import warnings
from pathlib import Path
from unittest.mock import patch
from uuid import uuid4

import pytest
from dotenv import load_dotenv
from fastapi.testclient import TestClient
from supabase import Client, create_client

# Path to the project root (where supabase/ folder is located)
PROJECT_ROOT = Path(__file__).parent.parent.parent.parent


def pytest_collection_modifyitems(items):
    """Automatically mark all tests in this directory as integration tests."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def setup_test_environment():
    """Load .env.test at session start."""
    # .env.test is in the backend root
    env_test_path = Path(__file__).parent.parent.parent / ".env.test"
    load_dotenv(env_test_path, override=True)
    yield


@pytest.fixture(scope="session")
def supabase_client(setup_test_environment) -> Client:
    """Create a real Supabase client connected to local instance."""
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SERVICE_ROLE_KEY")

    if not url or not key:
        pytest.skip("SUPABASE_URL and SERVICE_ROLE_KEY must be set in .env.test")

    return create_client(url, key)


@pytest.fixture(scope="session")
def reset_database(setup_test_environment):
    """
    Reset the database before the test session.

    If the supabase CLI is not available the reset is skipped; run
    `supabase db reset` manually before running integration tests if needed.
    """
    try:
        result = subprocess.run(
            ["supabase", "db", "reset", "--no-seed"],
            cwd=str(PROJECT_ROOT),
            capture_output=True,
            text=True,
            timeout=60
        )
        if result.returncode != 0:
            warnings.warn(f"Could not reset database: {result.stderr}")
    except FileNotFoundError:
        warnings.warn("supabase CLI not found. Skipping database reset.")
    except subprocess.TimeoutExpired:
        warnings.warn("Database reset timed out. Continuing anyway.")

    yield


@pytest.fixture(scope="session")
def integration_client(supabase_client, reset_database):
    """
    FastAPI TestClient configured to use real Supabase.

    The service-role client replaces the lazily created one in main.py.
    """
    from main import app

    with patch("main.supabase", supabase_client):
        yield TestClient(app)


@pytest.fixture
def make_user(supabase_client):
    """
    Create auth users with profiles.
    Automatically cleaned up after the test (profiles and everything they own cascade).
    """
    created = []

    def _make_user(username_prefix, **profile):
        username = f"{username_prefix}_{uuid4().hex[:8]}"
        response = supabase_client.auth.admin.create_user({
            "email": f"{username}@example.com",
            "password": uuid4().hex,
            "email_confirm": True,
        })
        user_id = response.user.id
        created.append(user_id)

        supabase_client.table("profiles").upsert({
            "id": user_id,
            "username": username,
            "full_name": username_prefix.title(),
            **profile,
        }).execute()
        return {"id": user_id, "username": username}

    yield _make_user

    for user_id in created:
        supabase_client.auth.admin.delete_user(user_id)


@pytest.fixture
def make_item(supabase_client):
    """Insert an available item directly."""
    def _make_item(owner_id, title="Test Item", estimated_value=50):
        result = supabase_client.table("items").insert({
            "user_id": owner_id,
            "title": title,
            "description": "",
            "condition": "Good",
            "estimated_value": estimated_value,
        }).execute()
        if not result.data:
            pytest.fail("Failed to create test item")
        return result.data[0]

    return _make_item


@pytest.fixture
def trading_setup(make_user, make_item):
    """Two users, one item each."""
    alice = make_user("alice", latitude=40.7128, longitude=-74.0060)
    bob = make_user("bob", latitude=40.7306, longitude=-73.9352)
    return {
        "alice": alice,
        "bob": bob,
        "alice_item": make_item(alice["id"], "Vintage Camera", 100),
        "bob_item": make_item(bob["id"], "Mountain Bike", 120),
    }
