import os
import tempfile

# Keep the backend's data directory out of the project tree
os.environ.setdefault("FLUX_STUDIO_DATA_DIR", tempfile.mkdtemp(prefix="flux-studio-test-"))

import pytest

from flux_studio.artifacts import LocalContentStore
from flux_studio.poller import JobPoller
from tests.fakes import RecordingSleep, make_image


@pytest.fixture
def png() -> bytes:
    return make_image()


@pytest.fixture
def store(tmp_path) -> LocalContentStore:
    return LocalContentStore(tmp_path / "generated")


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def poller_for(sleeper):
    def build(client):
        return JobPoller(client, sleep=sleeper)
    return build
