import pytest


@pytest.fixture(autouse=True)
def clear_cache():
    """Clear Django cache before each test to reset throttle limits and cached dashboards."""
    from django.core.cache import cache
    cache.clear()
    yield
    cache.clear()
