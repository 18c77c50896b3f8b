import sys
from pathlib import Path

import pytest

# Add backend directory for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from services.data_loader import Providers

from fakes import NOW, StubPostHog, StubSupabase


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def empty_providers():
    return Providers(posthog=StubPostHog(), supabase=StubSupabase())


@pytest.fixture
def unconfigured_providers():
    return Providers(
        posthog=StubPostHog(configured=False, fail={"events"}),
        supabase=StubSupabase(configured=False),
    )
