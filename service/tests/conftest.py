"""
Pytest configuration and fixtures for the linguaroute routing core.

This module provides:
- Test settings with an isolated data directory
- Provider profiles and deterministic mock providers
- A controllable clock for budget windows and draft scheduling
- Router and pipeline fixtures wired from the pieces above
"""

import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest
from linguaroute.core.config import Settings, reset_settings
from linguaroute.services.translation.budget_guard import BudgetGuard
from linguaroute.services.translation.compliance_gateway import (
    ComplianceGateway,
    CompliancePolicy,
)
from linguaroute.services.translation.glossary_manager import GlossaryManager
from linguaroute.services.translation.providers import (
    MockModelProvider,
    ProviderProfile,
)
from linguaroute.services.translation.router import TranslationRouter


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture(autouse=True)
def clear_settings_cache() -> Generator[None, None, None]:
    reset_settings()
    yield
    reset_settings()


@pytest.fixture(scope="session")
def test_data_dir() -> Generator[str, None, None]:
    """Create a temporary directory for test data.

    Yields:
        str: Path to the temporary test data directory
    """
    temp_dir = tempfile.mkdtemp(prefix="linguaroute_test_")
    yield temp_dir
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def test_settings(test_data_dir: str) -> Settings:
    return Settings(
        DEBUG=True,
        DATA_DIR=test_data_dir,
        ENVIRONMENT="testing",
        DAILY_BUDGET_USD=1.0,
        MODEL_ALLOW_LIST=[],
        REQUIRED_REGION_TAGS="",
        ALLOWED_REGION_FALLBACKS="",
        REQUIRED_CERTIFICATIONS="",
        BANNED_PHRASES="",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def eu_profile() -> ProviderProfile:
    return ProviderProfile(
        id="azureOpenAI:gpt-4o",
        cost_per_char_usd=0.01,
        latency_target_ms=1000,
        regions=("eu", "global"),
        certifications=("ISO27001", "SOC2"),
    )


@pytest.fixture
def us_profile() -> ProviderProfile:
    return ProviderProfile(
        id="anthropic:claude-3",
        cost_per_char_usd=0.01,
        latency_target_ms=1000,
        regions=("us", "global"),
        certifications=("SOC2",),
    )


@pytest.fixture
def open_gateway() -> ComplianceGateway:
    """Gateway with no region, certification or phrase rules."""
    return ComplianceGateway(CompliancePolicy())


@pytest.fixture
def eu_policy() -> CompliancePolicy:
    return CompliancePolicy(
        version="2024-05-01",
        required_region_tags=["eu"],
        allowed_region_fallbacks=["global"],
        required_certifications=["SOC2"],
        banned_phrases=["Internal Use Only", "机密"],
    )


@pytest.fixture
def glossary() -> GlossaryManager:
    return GlossaryManager()


def _make_router(
    providers,
    budget: float = 100.0,
    gateway: ComplianceGateway | None = None,
    **kwargs,
) -> TranslationRouter:
    return TranslationRouter(
        providers=providers,
        budget_guard=BudgetGuard(budget),
        compliance_gateway=gateway or ComplianceGateway(CompliancePolicy()),
        sleep=no_sleep,
        **kwargs,
    )


@pytest.fixture
def make_router():
    """Factory building a router over the given providers with no retry delay."""
    return _make_router


@pytest.fixture
def mock_provider(eu_profile: ProviderProfile) -> MockModelProvider:
    return MockModelProvider(eu_profile, prefix="[JA]")
