import pytest

from stayflow.api.routes import automation, cleaning, properties, reservations, users
from stayflow.core import auth


@pytest.fixture(autouse=True)
def _fresh_caches():
    for module in (automation, cleaning, properties, reservations, users):
        module._CACHE.clear()
    auth._AUTH_CACHE.clear()
    auth._ROLE_CACHE.clear()
    yield
