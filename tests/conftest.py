import pytest

from novelpull.core.backoff import BackoffController
from novelpull.core.resolver import IdentifierCache
from novelpull.core.session import HttpClient
from novelpull.models import AcquisitionOptions, FetchContext

async def no_sleep(delay):
    return None

@pytest.fixture
def make_context():
    """Build a FetchContext over a real aiohttp session with instant backoff."""
    def build(session, options=None, profile=None, max_attempts=3):
        client = HttpClient(session, max_retries=1, backoff=0)
        controller = BackoffController(max_attempts=max_attempts, delay=3.5, sleep=no_sleep)
        return FetchContext(client=client, controller=controller, options=options or AcquisitionOptions(),
                            profile=profile, cache=IdentifierCache())
    return build
