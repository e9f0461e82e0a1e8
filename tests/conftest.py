"""Shared fakes for the catalog engine tests."""

import os
import sys
import threading
from collections import Counter

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from catalog import BatchFetcher, CatalogError, CatalogSource, DetailCache, make_detail_fetcher  # noqa: E402
from engine import CatalogEngine, CatalogListener  # noqa: E402

LIST_URL = "https://pokeapi.co/api/v2/pokemon?limit=5000&offset=0"


def detail_url(name):
    return f"https://pokeapi.co/api/v2/pokemon/{name}/"


def make_payload(name, types=("normal",), stats=(("hp", 45), ("attack", 49)), height=7, weight=69):
    return {
        "name": name,
        "height": height,
        "weight": weight,
        "sprites": {
            "front_default": f"https://sprites.example/{name}.png",
            "other": {"official-artwork": {"front_default": f"https://art.example/{name}.png"}},
        },
        "types": [{"slot": i + 1, "type": {"name": t}} for i, t in enumerate(types)],
        "stats": [{"base_stat": v, "effort": 0, "stat": {"name": n}} for n, v in stats],
    }


class FakeApi:
    """In-memory stand-in for the PokeAPI fetch function."""

    def __init__(self, names, failing=(), list_fails=False):
        self.names = list(names)
        self.failing = set(failing)
        self.list_fails = list_fails
        self.calls = Counter()
        self.blockers = {}
        self._lock = threading.Lock()

    def block(self, name):
        return self._block_url(detail_url(name))

    def block_list(self):
        return self._block_url(LIST_URL)

    def _block_url(self, url):
        started = threading.Event()
        release = threading.Event()
        self.blockers[url] = (started, release)
        return started, release

    def get_json(self, url):
        with self._lock:
            self.calls[url] += 1
        if url in self.blockers:
            started, release = self.blockers[url]
            started.set()
            release.wait(5)
        if url == LIST_URL:
            if self.list_fails:
                raise CatalogError("Request failed with status 503: " + url)
            return {"count": len(self.names), "results": [{"name": n, "url": detail_url(n)} for n in self.names]}
        name = url.rstrip("/").rsplit("/", 1)[-1]
        if name in self.failing or name not in self.names:
            raise CatalogError(f"Request failed with status 404: {url}")
        return make_payload(name)

    def detail_calls(self, name):
        return self.calls[detail_url(name)]


class RecordingListener(CatalogListener):
    def __init__(self):
        self.appended = []
        self.cleared = 0
        self.empty = []
        self.fatal = []
        self.opened = []
        self.loading = []

    def on_items_appended(self, records):
        self.appended.append([r.name for r in records])

    def on_items_cleared(self):
        self.cleared += 1

    def on_empty_result(self, reason, term):
        self.empty.append((reason, term))

    def on_fatal_load_error(self, message):
        self.fatal.append(message)

    def on_item_opened(self, url, record, error):
        self.opened.append((url, record, error))

    def on_loading_changed(self, loading):
        self.loading.append(loading)


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def build_engine(listener):
    def _build(names, page_size=2, failing=(), list_fails=False, start=False):
        api = FakeApi(names, failing=failing, list_fails=list_fails)
        cache = DetailCache()
        engine = CatalogEngine(
            source=CatalogSource(api.get_json, LIST_URL),
            fetcher=BatchFetcher(make_detail_fetcher(api.get_json), cache, max_workers=4),
            cache=cache,
            listener=listener,
            page_size=page_size,
        )
        if start:
            engine.start()
        return engine, api

    return _build
