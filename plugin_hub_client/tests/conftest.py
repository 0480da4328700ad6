import logging

import pytest

from plugin_hub.cache import TranslationCache
from plugin_hub.monitor import Monitor
from plugin_hub.storage import KeyValueStore


@pytest.fixture
def store(tmp_path):
    s = KeyValueStore(str(tmp_path / "state.sqlite"))
    yield s
    s.close()


@pytest.fixture
def cache(store):
    c = TranslationCache(store)
    c.hydrate()
    return c


@pytest.fixture
def monitor():
    return Monitor(logging.getLogger("plugin-hub.test"))


@pytest.fixture(autouse=True)
def reset_hub_logger():
    yield
    hub = logging.getLogger("plugin-hub")
    for h in list(hub.handlers):
        hub.removeHandler(h)
    hub.setLevel(logging.NOTSET)
