import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests


LOGGER = logging.getLogger("pokegrid")

POKEAPI_BASE_URL = "https://pokeapi.co/api/v2/"
POKEMON_LIST_LIMIT = 5000
ITEMS_PER_PAGE = 30

STAT_LABELS = {
    "special-attack": "Sp. Attack",
    "special-defense": "Sp. Defense",
}


class CatalogError(RuntimeError):
    """Any failed fetch: transport, status, empty body or malformed payload."""


# =========================
# Models
# =========================
@dataclass(frozen=True)
class CatalogRef:
    name: str
    url: str


@dataclass(frozen=True)
class StatLine:
    name: str
    base_stat: int


@dataclass(frozen=True)
class DetailRecord:
    name: str
    url: str
    sprites: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    types: Tuple[str, ...] = ()
    height: Optional[int] = None
    weight: Optional[int] = None
    stats: Tuple[StatLine, ...] = ()

    @classmethod
    def from_payload(cls, url: str, payload: Any) -> "DetailRecord":
        if not isinstance(payload, dict):
            raise CatalogError(f"Malformed detail payload for {url}: expected object")
        name = str(payload.get("name") or "").strip()
        if not name:
            raise CatalogError(f"Malformed detail payload for {url}: missing name")

        ordered = sorted(payload.get("types") or [], key=lambda t: t.get("slot", 99))
        types = tuple(
            t["type"]["name"] for t in ordered if (t.get("type") or {}).get("name")
        )
        stats = []
        for s in payload.get("stats") or []:
            stat_name = (s.get("stat") or {}).get("name", "")
            if not stat_name:
                continue
            stats.append(StatLine(stat_name, _safe_int(s.get("base_stat"), 0)))

        return cls(
            name=name,
            url=url,
            sprites=dict(payload.get("sprites") or {}),
            types=types,
            height=_optional_int(payload.get("height")),
            weight=_optional_int(payload.get("weight")),
            stats=tuple(stats),
        )

    @property
    def display_name(self) -> str:
        return capitalize_first(self.name)

    @property
    def sprite_url(self) -> Optional[str]:
        return self.sprites.get("front_default") or None

    @property
    def artwork_url(self) -> Optional[str]:
        other = self.sprites.get("other") or {}
        artwork = (other.get("official-artwork") or {}).get("front_default")
        return artwork or self.sprite_url

    @property
    def height_m(self) -> Optional[float]:
        return self.height / 10.0 if self.height else None

    @property
    def weight_kg(self) -> Optional[float]:
        return self.weight / 10.0 if self.weight else None


def _safe_int(v, default: int = 0) -> int:
    try:
        return int(v)
    except Exception:
        return default


def _optional_int(v) -> Optional[int]:
    if v is None:
        return None
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


# =========================
# Text helpers
# =========================
def capitalize_first(text: str) -> str:
    if not text:
        return ""
    return text[0].upper() + text[1:]


def stat_label(raw: str) -> str:
    if raw in STAT_LABELS:
        return STAT_LABELS[raw]
    return capitalize_first(raw.replace("-", " "))


def normalize_term(term: Optional[str]) -> str:
    return (term or "").strip().lower()


def filter_refs(refs: Sequence[CatalogRef], term: str) -> Tuple[CatalogRef, ...]:
    q = normalize_term(term)
    if not q:
        return tuple(refs)
    return tuple(r for r in refs if q in r.name.lower())


# =========================
# HTTP boundary
# =========================
class PokeApiClient:
    def __init__(
        self,
        base_url: str = POKEAPI_BASE_URL,
        timeout: float = 15,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url if base_url.endswith("/") else base_url + "/"
        self.timeout = timeout
        self.session = session or requests.Session()

    def list_url(self, limit: int = POKEMON_LIST_LIMIT) -> str:
        return f"{self.base_url}pokemon?limit={int(limit)}&offset=0"

    def get_json(self, url: str) -> Any:
        try:
            r = self.session.get(url, timeout=self.timeout)
            r.raise_for_status()
        except requests.HTTPError as exc:
            status = getattr(exc.response, "status_code", "?")
            LOGGER.error("HTTP error: status=%s url=%s", status, url)
            raise CatalogError(f"Request failed with status {status}: {url}") from exc
        except requests.RequestException as exc:
            LOGGER.error("Fetch error for %s: %s", url, exc)
            raise CatalogError(f"Request failed: {url}: {exc}") from exc
        if not r.content:
            raise CatalogError(f"Empty response body: {url}")
        try:
            return r.json()
        except ValueError as exc:
            raise CatalogError(f"Invalid JSON from {url}") from exc

    def close(self) -> None:
        self.session.close()


# =========================
# Master list
# =========================
class CatalogSource:
    def __init__(self, fetch_json: Callable[[str], Any], list_url: str):
        self.fetch_json = fetch_json
        self.list_url = list_url

    @classmethod
    def from_client(cls, client: PokeApiClient, limit: int = POKEMON_LIST_LIMIT) -> "CatalogSource":
        return cls(client.get_json, client.list_url(limit))

    def load(self) -> Tuple[CatalogRef, ...]:
        LOGGER.info("Fetching initial list: %s", self.list_url)
        data = self.fetch_json(self.list_url)
        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise CatalogError(f"Malformed catalog response from {self.list_url}")

        out: List[CatalogRef] = []
        for it in results:
            name = (it or {}).get("name") if isinstance(it, dict) else None
            url = (it or {}).get("url") if isinstance(it, dict) else None
            if not name or not url:
                LOGGER.debug("Skipping malformed catalog entry: %r", it)
                continue
            out.append(CatalogRef(name=str(name), url=str(url)))
        LOGGER.info("Fetched %s Pokémon names/URLs.", len(out))
        return tuple(out)


# =========================
# Detail cache
# =========================
class DetailCache:
    """
    url -> DetailRecord for the whole session. Nothing is ever evicted or
    refreshed; the first record stored for a url is kept.
    """

    def __init__(self):
        self._items: Dict[str, DetailRecord] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> Optional[DetailRecord]:
        return self._items.get(url)

    def put(self, url: str, record: DetailRecord) -> None:
        with self._lock:
            self._items.setdefault(url, record)

    def __contains__(self, url: object) -> bool:
        return url in self._items

    def __len__(self) -> int:
        return len(self._items)


# =========================
# Batch fetch
# =========================
def make_detail_fetcher(fetch_json: Callable[[str], Any]) -> Callable[[str], DetailRecord]:
    def fetch_detail(url: str) -> DetailRecord:
        return DetailRecord.from_payload(url, fetch_json(url))
    return fetch_detail


class BatchFetcher:
    def __init__(
        self,
        fetch_detail: Callable[[str], DetailRecord],
        cache: DetailCache,
        max_workers: int = 10,
    ):
        self.fetch_detail = fetch_detail
        self.cache = cache
        self.max_workers = max(1, int(max_workers))

    def fetch_one(self, url: str) -> DetailRecord:
        cached = self.cache.get(url)
        if cached is not None:
            LOGGER.debug("Cache hit for %s", url)
            return cached
        LOGGER.debug("Cache miss for %s, fetching full details...", url)
        record = self.fetch_detail(url)
        self.cache.put(url, record)
        return self.cache.get(url) or record

    def fetch_batch(self, refs: Sequence[CatalogRef]) -> List[DetailRecord]:
        resolved: List[Optional[DetailRecord]] = [None] * len(refs)
        misses: List[int] = []
        for i, ref in enumerate(refs):
            cached = self.cache.get(ref.url)
            if cached is not None:
                resolved[i] = cached
            else:
                misses.append(i)

        if misses:
            workers = min(self.max_workers, len(misses))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = {executor.submit(self.fetch_one, refs[i].url): i for i in misses}
                for fut in as_completed(futures):
                    i = futures[fut]
                    try:
                        resolved[i] = fut.result()
                    except Exception as exc:
                        LOGGER.warning("Failed to fetch details for %s: %s", refs[i].name or refs[i].url, exc)

        out = [r for r in resolved if r is not None]
        LOGGER.debug(
            "Batch resolved %s/%s (cache hits=%s)", len(out), len(refs), len(refs) - len(misses)
        )
        return out
