import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple

from catalog import (
    ITEMS_PER_PAGE,
    BatchFetcher,
    CatalogError,
    CatalogRef,
    CatalogSource,
    DetailCache,
    DetailRecord,
    filter_refs,
    normalize_term,
)


LOGGER = logging.getLogger("pokegrid")

SEARCH_DEBOUNCE_MS = 350


class EmptyReason(str, Enum):
    NO_MATCHES = "NO_MATCHES"
    NO_DATA = "NO_DATA"


@dataclass(frozen=True)
class SearchState:
    active: bool = False
    term: str = ""


class CatalogListener:
    """View-side callbacks. Every method is a no-op here; views override what they need."""

    def on_items_appended(self, records: List[DetailRecord]) -> None:
        pass

    def on_items_cleared(self) -> None:
        pass

    def on_empty_result(self, reason: EmptyReason, term: str) -> None:
        pass

    def on_fatal_load_error(self, message: str) -> None:
        pass

    def on_item_opened(self, url: str, record: Optional[DetailRecord], error: Optional[Exception]) -> None:
        pass

    def on_loading_changed(self, loading: bool) -> None:
        pass


# =========================
# Single-flight guard
# =========================
class LoadGate:
    """Runs at most one function at a time. Calls arriving mid-run are dropped, not queued."""

    def __init__(self):
        self._lock = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def try_run(self, fn: Callable[[], Any]) -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        try:
            fn()
        finally:
            self._lock.release()
        return True


# =========================
# Search debounce
# =========================
class ThreadingTimerScheduler:
    def call_later(self, delay_ms: int, fn: Callable[[], None]) -> threading.Timer:
        timer = threading.Timer(max(0, delay_ms) / 1000.0, fn)
        timer.daemon = True
        timer.start()
        return timer

    def cancel(self, handle: threading.Timer) -> None:
        handle.cancel()


class SearchDebouncer:
    """
    Trailing-edge debounce for the search box: each schedule() supersedes the
    previous pending term, and the action only sees the latest one once the
    input has been quiet for delay_ms.
    """

    def __init__(self, action: Callable[[str], None], delay_ms: int = SEARCH_DEBOUNCE_MS, scheduler=None):
        self.action = action
        self.delay_ms = delay_ms
        self.scheduler = scheduler or ThreadingTimerScheduler()
        self._lock = threading.Lock()
        self._handle = None
        self._pending: Optional[str] = None
        self._token = 0

    @property
    def pending(self) -> Optional[str]:
        return self._pending

    def schedule(self, term: str) -> None:
        with self._lock:
            self._cancel_locked()
            self._token += 1
            token = self._token
            self._pending = term
            self._handle = self.scheduler.call_later(self.delay_ms, lambda: self._fire(token))

    def cancel_pending(self) -> None:
        with self._lock:
            self._cancel_locked()
            self._token += 1

    def flush(self) -> None:
        with self._lock:
            token = self._token
        self._fire(token)

    def _cancel_locked(self) -> None:
        if self._handle is not None:
            try:
                self.scheduler.cancel(self._handle)
            except Exception as exc:
                LOGGER.debug("Debounce cancel failed: %s", exc)
        self._handle = None
        self._pending = None

    def _fire(self, token: int) -> None:
        with self._lock:
            if token != self._token or self._pending is None:
                return
            term = self._pending
            self._pending = None
            self._handle = None
        self.action(term)


# =========================
# Engine
# =========================
class CatalogEngine:
    def __init__(
        self,
        source: CatalogSource,
        fetcher: BatchFetcher,
        cache: Optional[DetailCache] = None,
        listener: Optional[CatalogListener] = None,
        page_size: int = ITEMS_PER_PAGE,
    ):
        if int(page_size) < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        self.source = source
        self.fetcher = fetcher
        self.cache = cache if cache is not None else fetcher.cache
        self.listener = listener or CatalogListener()
        self.page_size = int(page_size)

        self._lock = threading.RLock()
        self._master: Tuple[CatalogRef, ...] = ()
        self._active: Tuple[CatalogRef, ...] = ()
        self._cursor = 0
        self._search = SearchState()
        self._rendered: List[DetailRecord] = []
        self._generation = 0
        self._gate = LoadGate()
        self._loaded = False
        self._failed = False
        self._pending_term: Optional[str] = None
        self._error_message = ""

    # ---------- Read-only state ----------
    @property
    def master_list(self) -> Tuple[CatalogRef, ...]:
        return self._master

    @property
    def active_list(self) -> Tuple[CatalogRef, ...]:
        return self._active

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def exhausted(self) -> bool:
        return self._cursor >= len(self._active)

    @property
    def loading(self) -> bool:
        return self._gate.busy

    @property
    def search(self) -> SearchState:
        return self._search

    @property
    def rendered(self) -> Tuple[DetailRecord, ...]:
        with self._lock:
            return tuple(self._rendered)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def error_message(self) -> str:
        return self._error_message

    @property
    def pending_term(self) -> Optional[str]:
        return self._pending_term

    # ---------- Startup ----------
    def start(self) -> bool:
        with self._lock:
            if self._loaded or self._failed:
                LOGGER.debug("Start skipped: loaded=%s failed=%s", self._loaded, self._failed)
                return self._loaded
        try:
            refs = self.source.load()
        except CatalogError as exc:
            with self._lock:
                self._failed = True
                self._error_message = str(exc)
            LOGGER.error("Initial catalog load failed: %s", exc)
            self.listener.on_fatal_load_error(f"Could not load the Pokémon list: {exc}")
            return False

        with self._lock:
            self._master = tuple(refs)
            self._active = self._master
            self._cursor = 0
            self._loaded = True
            pending = self._pending_term
            self._pending_term = None
        if self._master and pending:
            LOGGER.debug("Applying search typed during load: %r", pending)
            self.set_search(pending)
        elif self._master:
            self.request_more()
        else:
            LOGGER.error("Initialization complete, but no Pokémon could be loaded initially.")
            self.listener.on_empty_result(EmptyReason.NO_DATA, "")
        return True

    # ---------- Paging ----------
    def request_more(self) -> bool:
        with self._lock:
            if not self._loaded or self._failed or self.exhausted:
                LOGGER.debug(
                    "Load skipped: loaded=%s failed=%s exhausted=%s",
                    self._loaded,
                    self._failed,
                    self.exhausted,
                )
                return False
            gate = self._gate
            gen_id = self._generation
        ran = gate.try_run(lambda: self._load_next_window(gen_id))
        if not ran:
            LOGGER.debug("Load skipped: batch already in flight (gen=%s)", gen_id)
        return ran

    def _load_next_window(self, gen_id: int) -> None:
        with self._lock:
            if gen_id != self._generation:
                return
            start = self._cursor
            window = self._active[start:start + self.page_size]
            search = self._search
            LOGGER.debug(
                "Loading batch: offset=%s size=%s activeListSize=%s gen=%s",
                start,
                len(window),
                len(self._active),
                gen_id,
            )
            if not window:
                self._cursor = len(self._active)
                nothing_rendered = not self._rendered
        if not window:
            LOGGER.debug("No more Pokémon to load from active list.")
            if nothing_rendered:
                self._emit_empty(search)
            return

        self.listener.on_loading_changed(True)
        try:
            records = self.fetcher.fetch_batch(window)
            with self._lock:
                if gen_id != self._generation:
                    LOGGER.debug("Discarding stale batch gen=%s current=%s", gen_id, self._generation)
                    return
                self._rendered.extend(records)
                self._cursor = start + len(window)
                done = self.exhausted
            if records:
                self.listener.on_items_appended(list(records))
            if done:
                LOGGER.debug("Reached the end of the active Pokémon list.")
        finally:
            with self._lock:
                # A stale batch only reports idle when no current batch is running.
                if gen_id == self._generation or not self._gate.busy:
                    self.listener.on_loading_changed(False)

    def _emit_empty(self, search: SearchState) -> None:
        if search.active:
            self.listener.on_empty_result(EmptyReason.NO_MATCHES, search.term)
        else:
            self.listener.on_empty_result(EmptyReason.NO_DATA, "")

    # ---------- Search ----------
    def set_search(self, term: str) -> bool:
        q = normalize_term(term)
        if not q:
            return self.clear_search()
        with self._lock:
            if self._search.active and self._search.term == q:
                return False
            if not self._loaded:
                if not self._failed:
                    self._pending_term = q
                    LOGGER.debug("Search deferred until the catalog is loaded: %r", q)
                return False
            LOGGER.info("Starting search for: %r", q)
            self._search = SearchState(active=True, term=q)
            self._active = filter_refs(self._master, q)
            self._reset_paging_locked()
            has_items = bool(self._active)
            LOGGER.debug("Filtered list size: %s", len(self._active))
        self.listener.on_items_cleared()
        if has_items:
            self.request_more()
        else:
            self.listener.on_empty_result(EmptyReason.NO_MATCHES, q)
        return True

    def clear_search(self) -> bool:
        with self._lock:
            if not self._loaded:
                self._pending_term = None
                return False
            if not self._search.active:
                return False
            LOGGER.info("Clearing search results.")
            self._search = SearchState()
            self._active = self._master
            self._reset_paging_locked()
            has_items = bool(self._active)
        self.listener.on_items_cleared()
        if has_items:
            self.request_more()
        else:
            self.listener.on_empty_result(EmptyReason.NO_DATA, "")
        return True

    def submit_search(self, raw_term: str) -> bool:
        return self.set_search(raw_term)

    def _reset_paging_locked(self) -> None:
        self._generation += 1
        self._cursor = 0
        self._rendered = []
        # The previous gate stays with any stale batch still in flight.
        self._gate = LoadGate()

    # ---------- Single item ----------
    def inspect(self, url: str) -> Optional[DetailRecord]:
        if not url:
            err = CatalogError("Missing Pokémon URL")
            self.listener.on_item_opened(url, None, err)
            return None
        try:
            record = self.fetcher.fetch_one(url)
        except Exception as exc:
            LOGGER.warning("Failed to load details for %s: %s", url, exc)
            self.listener.on_item_opened(url, None, exc)
            return None
        self.listener.on_item_opened(url, record, None)
        return record
