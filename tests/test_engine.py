import threading

import pytest

from catalog import CatalogError
from engine import EmptyReason, LoadGate, SearchDebouncer, ThreadingTimerScheduler
from conftest import LIST_URL, detail_url


def names_of(engine):
    return [r.name for r in engine.rendered]


# ---------- startup ----------
def test_start_loads_master_and_first_page(build_engine, listener):
    engine, api = build_engine(["a", "b", "c", "d", "e"], start=True)

    assert engine.loaded
    assert [r.name for r in engine.master_list] == ["a", "b", "c", "d", "e"]
    assert engine.active_list == engine.master_list
    assert listener.appended == [["a", "b"]]
    assert listener.loading == [True, False]
    assert engine.cursor == 2
    assert not engine.loading
    assert api.calls[LIST_URL] == 1


def test_start_is_idempotent(build_engine):
    engine, api = build_engine(["a", "b"], start=True)
    assert engine.start() is True
    assert api.calls[LIST_URL] == 1
    assert api.detail_calls("a") == 1


def test_fatal_list_failure(build_engine, listener):
    engine, api = build_engine(["a"], list_fails=True)

    assert engine.start() is False
    assert engine.failed
    assert "503" in engine.error_message
    assert len(listener.fatal) == 1
    assert listener.fatal[0].startswith("Could not load the Pokémon list")
    assert engine.request_more() is False
    assert engine.set_search("a") is False
    assert engine.pending_term is None
    assert engine.start() is False
    assert api.calls[LIST_URL] == 1
    assert listener.appended == []


def test_empty_catalog_reports_no_data(build_engine, listener):
    engine, _ = build_engine([], start=True)

    assert engine.loaded
    assert engine.exhausted
    assert listener.empty == [(EmptyReason.NO_DATA, "")]
    assert engine.request_more() is False


def test_request_more_before_start_is_noop(build_engine, listener):
    engine, api = build_engine(["a", "b"])
    assert engine.request_more() is False
    assert sum(api.calls.values()) == 0
    assert listener.appended == []


def test_page_size_must_be_positive(build_engine):
    with pytest.raises(ValueError):
        build_engine(["a"], page_size=0)


# ---------- paging ----------
def test_paging_until_exhausted(build_engine, listener):
    engine, _ = build_engine(["a", "b", "c", "d", "e"], start=True)

    assert engine.request_more() is True
    assert engine.cursor == 4
    assert engine.request_more() is True
    assert engine.cursor == 5
    assert engine.exhausted
    assert engine.request_more() is False

    assert listener.appended == [["a", "b"], ["c", "d"], ["e"]]
    assert names_of(engine) == ["a", "b", "c", "d", "e"]


def test_exhaustion_takes_ceil_windows(build_engine):
    engine, _ = build_engine([f"p{i}" for i in range(7)], page_size=3, start=True)
    windows = 1
    while engine.request_more():
        windows += 1
    assert windows == 3
    assert engine.cursor == 7


def test_failed_items_are_skipped_and_cursor_advances(build_engine, listener):
    engine, api = build_engine(["a", "b", "c", "d"], page_size=3, failing={"b"}, start=True)

    assert listener.appended == [["a", "c"]]
    assert engine.cursor == 3

    engine.request_more()
    assert listener.appended == [["a", "c"], ["d"]]
    assert engine.exhausted
    assert api.detail_calls("b") == 1


def test_all_failed_window_appends_nothing(build_engine, listener):
    engine, _ = build_engine(["a", "b", "c"], failing={"a", "b"}, start=True)

    assert listener.appended == []
    assert engine.cursor == 2
    assert not engine.exhausted
    engine.request_more()
    assert listener.appended == [["c"]]


def test_request_more_while_busy_is_dropped(build_engine, listener):
    engine, api = build_engine(["a", "b", "c"])
    started, release = api.block("a")

    worker = threading.Thread(target=engine.start, daemon=True)
    worker.start()
    assert started.wait(5)
    try:
        assert engine.loading
        assert engine.request_more() is False
    finally:
        release.set()
        worker.join(5)

    assert listener.appended == [["a", "b"]]
    assert engine.cursor == 2
    assert api.detail_calls("a") == 1
    assert not engine.loading


# ---------- search ----------
POKEMON = ["bulbasaur", "charmander", "charmeleon", "squirtle", "charizard"]


def test_search_filters_and_pages(build_engine, listener):
    engine, api = build_engine(POKEMON, start=True)
    gen = engine.generation

    assert engine.set_search("Char") is True
    assert engine.search.active
    assert engine.search.term == "char"
    assert engine.generation == gen + 1
    assert listener.cleared == 1
    assert [r.name for r in engine.active_list] == ["charmander", "charmeleon", "charizard"]
    assert listener.appended[-1] == ["charmander", "charmeleon"]

    engine.request_more()
    assert names_of(engine) == ["charmander", "charmeleon", "charizard"]
    assert engine.exhausted
    # charmander came from the cache filled by the first page
    assert api.detail_calls("charmander") == 1


def test_same_search_term_is_ignored(build_engine, listener):
    engine, _ = build_engine(POKEMON, start=True)
    engine.set_search("char")
    gen = engine.generation

    assert engine.set_search("  CHAR ") is False
    assert engine.generation == gen
    assert listener.cleared == 1


def test_search_without_matches(build_engine, listener):
    engine, _ = build_engine(POKEMON, start=True)

    assert engine.set_search("zzz") is True
    assert engine.active_list == ()
    assert engine.rendered == ()
    assert listener.empty == [(EmptyReason.NO_MATCHES, "zzz")]
    assert engine.request_more() is False


def test_clear_search_restores_master(build_engine, listener):
    engine, _ = build_engine(POKEMON, start=True)
    engine.set_search("char")

    assert engine.clear_search() is True
    assert not engine.search.active
    assert engine.active_list == engine.master_list
    assert engine.cursor == 2
    assert names_of(engine) == ["bulbasaur", "charmander"]
    assert listener.cleared == 2


def test_clear_search_resets_cursor_before_reloading(build_engine, listener):
    engine, _ = build_engine(POKEMON, start=True)
    engine.set_search("char")
    engine.request_more()
    seen = []
    listener.on_items_cleared = lambda: seen.append((engine.cursor, engine.active_list, engine.rendered))

    engine.clear_search()

    assert seen == [(0, engine.master_list, ())]


def test_clear_search_without_active_search_is_noop(build_engine, listener):
    engine, _ = build_engine(POKEMON, start=True)
    gen = engine.generation

    assert engine.clear_search() is False
    assert engine.generation == gen
    assert listener.cleared == 0


def test_empty_search_term_clears(build_engine):
    engine, _ = build_engine(POKEMON, start=True)
    engine.set_search("squirt")

    assert engine.set_search("   ") is True
    assert not engine.search.active
    assert engine.active_list == engine.master_list


def test_submit_search(build_engine):
    engine, _ = build_engine(POKEMON, start=True)
    assert engine.submit_search(" Bulba ") is True
    assert names_of(engine) == ["bulbasaur"]
    assert engine.submit_search("") is True
    assert not engine.search.active


def test_search_before_load_is_deferred(build_engine, listener):
    engine, _ = build_engine(POKEMON)

    assert engine.set_search("Char") is False
    assert engine.pending_term == "char"
    assert listener.cleared == 0

    engine.start()

    assert engine.pending_term is None
    assert engine.search.term == "char"
    assert names_of(engine) == ["charmander", "charmeleon"]
    assert listener.appended == [["charmander", "charmeleon"]]


def test_search_typed_while_list_loads_is_applied(build_engine, listener):
    engine, api = build_engine(POKEMON)
    started, release = api.block_list()

    worker = threading.Thread(target=engine.start, daemon=True)
    worker.start()
    assert started.wait(5)
    try:
        engine.submit_search("char")
    finally:
        release.set()
        worker.join(5)

    assert engine.search.active
    assert engine.search.term == "char"
    assert names_of(engine) == ["charmander", "charmeleon"]
    assert api.detail_calls("bulbasaur") == 0


def test_clear_before_load_drops_deferred_term(build_engine):
    engine, _ = build_engine(POKEMON)
    engine.set_search("char")

    assert engine.clear_search() is False
    assert engine.pending_term is None

    engine.start()
    assert not engine.search.active
    assert names_of(engine) == ["bulbasaur", "charmander"]


def test_stale_batch_is_discarded(build_engine, listener):
    engine, api = build_engine(["a", "b", "c"])
    started, release = api.block("a")

    worker = threading.Thread(target=engine.start, daemon=True)
    worker.start()
    assert started.wait(5)
    try:
        # a new search gets its own gate, so it loads while the old batch hangs
        assert engine.set_search("c") is True
        assert listener.appended == [["c"]]
    finally:
        release.set()
        worker.join(5)

    assert listener.appended == [["c"]]
    assert names_of(engine) == ["c"]
    assert engine.cursor == 1
    assert not engine.loading
    assert listener.loading[-1] is False


def test_stale_batch_does_not_report_idle_over_current_batch(build_engine, listener):
    engine, api = build_engine(["a", "b", "c"])
    old_started, old_release = api.block("a")
    new_started, new_release = api.block("c")

    loader = threading.Thread(target=engine.start, daemon=True)
    loader.start()
    assert old_started.wait(5)
    searcher = threading.Thread(target=engine.set_search, args=("c",), daemon=True)
    searcher.start()
    try:
        assert new_started.wait(5)
        old_release.set()
        loader.join(5)

        assert listener.loading == [True, True]
        assert engine.loading
    finally:
        old_release.set()
        new_release.set()
        searcher.join(5)

    assert listener.loading == [True, True, False]
    assert listener.appended == [["c"]]


# ---------- single item ----------
def test_inspect_uses_cache(build_engine, listener):
    engine, api = build_engine(["a", "b"], start=True)

    record = engine.inspect(detail_url("a"))

    assert record.name == "a"
    assert listener.opened == [(detail_url("a"), record, None)]
    assert api.detail_calls("a") == 1


def test_inspect_fetches_uncached(build_engine, listener):
    engine, api = build_engine(["a", "b", "c"], start=True)

    record = engine.inspect(detail_url("c"))

    assert record.name == "c"
    assert detail_url("c") in engine.cache
    assert api.detail_calls("c") == 1


def test_inspect_failure_reports_error(build_engine, listener):
    engine, _ = build_engine(["a", "b"], failing={"b"}, start=True)

    assert engine.inspect(detail_url("b")) is None
    url, record, error = listener.opened[-1]
    assert url == detail_url("b")
    assert record is None
    assert isinstance(error, CatalogError)


def test_inspect_missing_url(build_engine, listener):
    engine, _ = build_engine(["a"], start=True)
    assert engine.inspect("") is None
    assert isinstance(listener.opened[-1][2], CatalogError)


# ---------- load gate ----------
def test_gate_drops_reentrant_call():
    gate = LoadGate()
    seen = []

    def outer():
        seen.append(gate.busy)
        seen.append(gate.try_run(lambda: seen.append("inner")))

    assert gate.try_run(outer) is True
    assert seen == [True, False]
    assert not gate.busy


def test_gate_releases_after_exception():
    gate = LoadGate()

    def boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        gate.try_run(boom)
    assert not gate.busy
    assert gate.try_run(lambda: None) is True


# ---------- debounce ----------
class ManualScheduler:
    def __init__(self):
        self.handles = []

    def call_later(self, delay_ms, fn):
        handle = {"delay": delay_ms, "fn": fn, "cancelled": False}
        self.handles.append(handle)
        return handle

    def cancel(self, handle):
        handle["cancelled"] = True

    def live(self):
        return [h for h in self.handles if not h["cancelled"]]

    def run_all(self):
        for h in list(self.live()):
            h["fn"]()


def test_debouncer_fires_latest_term_once():
    sched = ManualScheduler()
    calls = []
    debouncer = SearchDebouncer(calls.append, delay_ms=350, scheduler=sched)

    for term in ("p", "pi", "pik"):
        debouncer.schedule(term)

    assert len(sched.live()) == 1
    assert sched.live()[0]["delay"] == 350
    assert debouncer.pending == "pik"
    sched.run_all()
    assert calls == ["pik"]
    assert debouncer.pending is None


def test_debouncer_cancel_pending():
    sched = ManualScheduler()
    calls = []
    debouncer = SearchDebouncer(calls.append, scheduler=sched)

    debouncer.schedule("char")
    debouncer.cancel_pending()
    sched.run_all()
    for h in sched.handles:
        h["fn"]()

    assert calls == []
    assert debouncer.pending is None


def test_debouncer_flush_runs_pending_now():
    sched = ManualScheduler()
    calls = []
    debouncer = SearchDebouncer(calls.append, scheduler=sched)

    debouncer.flush()
    assert calls == []

    debouncer.schedule("squirt")
    debouncer.flush()
    assert calls == ["squirt"]

    for h in sched.handles:
        h["fn"]()
    assert calls == ["squirt"]


def test_debouncer_drives_engine_search(build_engine):
    engine, _ = build_engine(POKEMON, start=True)
    sched = ManualScheduler()
    debouncer = SearchDebouncer(engine.submit_search, scheduler=sched)

    debouncer.schedule("c")
    debouncer.schedule("ch")
    debouncer.schedule("char")
    assert not engine.search.active

    sched.run_all()
    assert engine.search.term == "char"


def test_threading_timer_scheduler_fires():
    fired = threading.Event()
    debouncer = SearchDebouncer(lambda term: fired.set(), delay_ms=10, scheduler=ThreadingTimerScheduler())
    debouncer.schedule("x")
    assert fired.wait(5)
