"""
Root conftest for all tests.

Fixtures live next to the tests that use them:
- tests/unit/conftest.py - mocked and in-memory Supabase clients
- tests/integration/conftest.py - a real local Supabase (skipped without .env.test)
"""
import sys
from pathlib import Path

# Make main, core, models and services importable
backend_path = Path(__file__).parent.parent
sys.path.insert(0, str(backend_path))
