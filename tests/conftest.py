"""Global test fixtures and utilities for fitquest tests"""
import random
from datetime import date, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from fitquest.db.store import InMemoryGamificationStore
from fitquest.gamification.xp_system import calculate_level_info, make_band_calculator
from fitquest.services.gamification_service import GamificationService


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def mock_db_cursor():
    """Mock database cursor with standard query results"""
    cursor = AsyncMock()
    cursor.fetchone = AsyncMock(return_value=None)
    cursor.fetchall = AsyncMock(return_value=[])
    cursor.execute = AsyncMock()
    return cursor


@pytest.fixture
def mock_db_connection(mock_db_cursor):
    """Mock pooled connection whose cursor() yields mock_db_cursor"""
    conn = MagicMock()
    conn.cursor.return_value.__aenter__.return_value = mock_db_cursor
    conn.commit = AsyncMock()
    conn.rollback = AsyncMock()
    return conn


# ============================================================================
# User Fixtures
# ============================================================================

@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return "123456789"


@pytest.fixture
def today():
    return date(2024, 6, 15)


@pytest.fixture
def yesterday(today):
    return today - timedelta(days=1)


# ============================================================================
# Reward Engine Fixtures
# ============================================================================

@pytest.fixture
def store():
    """Empty in-memory store"""
    return InMemoryGamificationStore()


@pytest.fixture
def rng():
    """Seeded random source so loot rolls are reproducible"""
    return random.Random(42)


@pytest.fixture
def service(test_user_id, store, rng):
    """Service on the 100-level curve"""
    return GamificationService(test_user_id, store, rng=rng)


@pytest.fixture
def band_service(test_user_id, store, rng):
    """Service on the Beginner/Intermediate/Advanced/Elite bands"""
    return GamificationService(test_user_id, store, level_calculator=calculate_level_info, rng=rng)


@pytest.fixture
def boundary_150_service(test_user_id, store, rng):
    """Service with a single level boundary at 150 XP"""
    calculator = make_band_calculator([("Level 1", 0), ("Level 2", 150)])
    return GamificationService(test_user_id, store, level_calculator=calculator, rng=rng)
