"""
Shared fixtures: the sample feed in tests/fixtures and an isolated data directory.
"""
import copy
import json
from pathlib import Path

import pytest

from depfeed.core import dependencies

FIXTURES = Path(__file__).parent / "fixtures"
SAMPLE_FEED = FIXTURES / "DependencyControl.json"


@pytest.fixture
def feed_bytes() -> bytes:
    return SAMPLE_FEED.read_bytes()


@pytest.fixture
def feed_dict(feed_bytes) -> dict:
    return json.loads(feed_bytes)


@pytest.fixture
def make_feed(feed_dict):
    """Return a deep copy of the sample feed, optionally modified by a callback."""

    def _make(mutate=None) -> dict:
        doc = copy.deepcopy(feed_dict)
        if mutate is not None:
            mutate(doc)
        return doc

    return _make


@pytest.fixture
def data_dir(tmp_path, monkeypatch) -> Path:
    monkeypatch.setenv(dependencies.DATA_ROOT_ENV_VAR, str(tmp_path))
    dependencies.reset()
    yield tmp_path
    dependencies.reset()
