# tests/conftest.py
"""
Global test bootstrap
- Makes SlowAPI rate-limiting test-friendly (bypass by default)
- Keeps limiter counters isolated per run (namespace)
- Pulls in the DB, app/context and factory fixtures
"""

from __future__ import annotations

import os
import random

import pytest

# ──────────────────────────────────────────────────────────────────────────────
# 🌱 Test env for rate limiting (fast, isolated, bypassed by default)
#   NOTE: These are set BEFORE importing the app so they take effect.
# ──────────────────────────────────────────────────────────────────────────────
os.environ.setdefault("RATELIMIT_STORAGE_URI", "memory://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_TEST_BYPASS", "1")
os.environ.setdefault("RATE_LIMIT_NAMESPACE", f"pytest-{random.getrandbits(32)}")

# ──────────────────────────────────────────────────────────────────────────────
# 📦 Fixtures (db, context/app, helpers)
# ──────────────────────────────────────────────────────────────────────────────
from tests.fixtures.db import *   # noqa: F401,F403,E402
from tests.fixtures.app import *  # noqa: F401,F403,E402


# ──────────────────────────────────────────────────────────────────────────────
# 🚦 Opt-in fixture to actually enforce rate limits in a specific test
# ──────────────────────────────────────────────────────────────────────────────
@pytest.fixture()
def ratelimit_on(monkeypatch):
    """Temporarily enable rate limiting for tests that assert 429s."""
    monkeypatch.setenv("RATE_LIMIT_TEST_BYPASS", "0")
    yield
    monkeypatch.setenv("RATE_LIMIT_TEST_BYPASS", "1")
