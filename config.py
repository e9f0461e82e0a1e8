import json
import logging
import os
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from catalog import ITEMS_PER_PAGE, POKEAPI_BASE_URL, POKEMON_LIST_LIMIT
from engine import SEARCH_DEBOUNCE_MS


LOGGER = logging.getLogger("pokegrid")

APP_NAME = "PokeGrid"
APP_VERSION = "1.0.0"
THEME_MODES = ("dark", "light")


# =========================
# Paths
# =========================
@dataclass(frozen=True)
class AppPaths:
    runtime_base: Path
    user_base: Path
    runtime_assets_dir: Path
    runtime_default_sprite: Path
    user_cache_dir: Path
    user_config_dir: Path
    user_assets_dir: Path
    user_sprite_cache_dir: Path
    user_default_sprite: Path
    browser_config_path: Path
    ui_config_path: Path


def get_runtime_base_dir() -> Path:
    if getattr(sys, "frozen", False):
        meipass = getattr(sys, "_MEIPASS", None)
        if meipass:
            return Path(meipass).resolve()
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent


def get_user_base_dir() -> Path:
    base = os.environ.get("LOCALAPPDATA") or os.environ.get("APPDATA")
    if base:
        return Path(base) / APP_NAME
    return Path.home() / "AppData" / "Local" / APP_NAME


def build_app_paths(user_base: Optional[Path] = None) -> AppPaths:
    runtime_base = get_runtime_base_dir()
    user_base = Path(user_base) if user_base else get_user_base_dir()
    runtime_assets_dir = runtime_base / "assets"
    user_cache_dir = user_base / "cache"
    user_config_dir = user_base / "config"
    user_assets_dir = user_base / "assets"
    return AppPaths(
        runtime_base=runtime_base,
        user_base=user_base,
        runtime_assets_dir=runtime_assets_dir,
        runtime_default_sprite=runtime_assets_dir / "default.png",
        user_cache_dir=user_cache_dir,
        user_config_dir=user_config_dir,
        user_assets_dir=user_assets_dir,
        user_sprite_cache_dir=user_cache_dir / "sprites",
        user_default_sprite=user_assets_dir / "default.png",
        browser_config_path=user_config_dir / "browser.json",
        ui_config_path=user_config_dir / "ui.json",
    )


def ensure_user_dirs(paths: AppPaths) -> None:
    for p in (
        paths.user_base,
        paths.user_cache_dir,
        paths.user_config_dir,
        paths.user_assets_dir,
        paths.user_sprite_cache_dir,
    ):
        p.mkdir(parents=True, exist_ok=True)
    print(f"[Paths] runtime_base={paths.runtime_base}")
    print(f"[Paths] user_base={paths.user_base}")


# =========================
# Browser config (browser.json)
# =========================
@dataclass
class BrowserConfig:
    base_url: str = POKEAPI_BASE_URL
    list_limit: int = POKEMON_LIST_LIMIT
    page_size: int = ITEMS_PER_PAGE
    debounce_ms: int = SEARCH_DEBOUNCE_MS
    max_workers: int = 10
    request_timeout_sec: int = 15
    scroll_margin_px: int = 100


def _clamp_int(raw, default: int, lo: int, hi: int) -> int:
    try:
        v = int(raw)
    except (TypeError, ValueError):
        return default
    return max(lo, min(hi, v))


def load_browser_config(path: str) -> BrowserConfig:
    try:
        with open(path, "r", encoding="utf-8-sig") as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError("browser config must be a JSON object")
        defaults = BrowserConfig()
        base_url = str(raw.get("base_url", "")).strip() or defaults.base_url
        if not base_url.startswith(("http://", "https://")):
            base_url = defaults.base_url
        if not base_url.endswith("/"):
            base_url += "/"
        return BrowserConfig(
            base_url=base_url,
            list_limit=_clamp_int(raw.get("list_limit"), defaults.list_limit, 1, 100_000),
            page_size=_clamp_int(raw.get("page_size"), defaults.page_size, 1, 500),
            debounce_ms=_clamp_int(raw.get("debounce_ms"), defaults.debounce_ms, 0, 5_000),
            max_workers=_clamp_int(raw.get("max_workers"), defaults.max_workers, 1, 64),
            request_timeout_sec=_clamp_int(raw.get("request_timeout_sec"), defaults.request_timeout_sec, 3, 120),
            scroll_margin_px=_clamp_int(raw.get("scroll_margin_px"), defaults.scroll_margin_px, 0, 2_000),
        )
    except Exception as exc:
        LOGGER.debug("Invalid browser config at %s: %s", path, exc)
        return BrowserConfig()


def save_browser_config(path: str, cfg: BrowserConfig) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(asdict(cfg), f, ensure_ascii=False, indent=2)


def ensure_browser_config(path: str) -> BrowserConfig:
    if not os.path.exists(path):
        cfg = BrowserConfig()
    else:
        cfg = load_browser_config(path)
    # Always write back the normalized file.
    try:
        save_browser_config(path, cfg)
    except OSError as exc:
        print(f"[Config] cannot write browser config at {path}: {exc}")
    return cfg


# =========================
# Theme (ui.json)
# =========================
@dataclass
class ThemeConfig:
    mode: str = "light"  # dark | light


class ThemeManager:
    PALETTE: Tuple[str, ...] = ("#3A0B0B", "#6E1F1F", "#A63A3A", "#E48C8C", "#FFE8E8")

    def __init__(self, config_path: str):
        self.config_path = config_path

    @staticmethod
    def _hex_to_rgb(color: str) -> Tuple[int, int, int]:
        c = color.lstrip("#")
        return int(c[0:2], 16), int(c[2:4], 16), int(c[4:6], 16)

    @staticmethod
    def _rgb_to_hex(rgb: Tuple[int, int, int]) -> str:
        r, g, b = rgb
        return f"#{max(0,min(255,r)):02X}{max(0,min(255,g)):02X}{max(0,min(255,b)):02X}"

    @classmethod
    def _mix(cls, c1: str, c2: str, ratio: float) -> str:
        r1, g1, b1 = cls._hex_to_rgb(c1)
        r2, g2, b2 = cls._hex_to_rgb(c2)
        r = int(r1 * (1.0 - ratio) + r2 * ratio)
        g = int(g1 * (1.0 - ratio) + g2 * ratio)
        b = int(b1 * (1.0 - ratio) + b2 * ratio)
        return cls._rgb_to_hex((r, g, b))

    def load(self) -> ThemeConfig:
        if not os.path.exists(self.config_path):
            return ThemeConfig()
        try:
            with open(self.config_path, "r", encoding="utf-8-sig") as f:
                data = json.load(f)
            mode = str((data or {}).get("theme", ThemeConfig.mode)).strip().lower()
            if mode not in THEME_MODES:
                mode = ThemeConfig.mode
            return ThemeConfig(mode=mode)
        except Exception as exc:
            LOGGER.debug("Invalid UI config at %s: %s", self.config_path, exc)
            return ThemeConfig()

    def save(self, cfg: ThemeConfig) -> None:
        os.makedirs(os.path.dirname(self.config_path), exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as f:
            json.dump({"theme": cfg.mode}, f, ensure_ascii=False, indent=2)

    def toggle(self, cfg: ThemeConfig) -> ThemeConfig:
        cfg.mode = "light" if cfg.mode == "dark" else "dark"
        self.save(cfg)
        return cfg

    def build_theme(self, cfg: ThemeConfig) -> Dict[str, str]:
        t1, t2, t3, t4, t5 = self.PALETTE
        if cfg.mode == "dark":
            bg = self._mix("#0B0F16", t1, 0.24)
            panel = self._mix("#121A26", t2, 0.26)
            tile = self._mix("#162131", t3, 0.20)
            fg = "#EDF3FB"
            muted = self._mix("#B7C2D2", t4, 0.20)
            border = self._mix("#44556B", t3, 0.30)
            entry_bg = self._mix(panel, bg, 0.46)
            accent = self._mix(t3, t4, 0.55)
        else:
            bg = self._mix("#F0F4FA", t5, 0.26)
            panel = self._mix("#E7EDF6", t4, 0.22)
            tile = self._mix("#FFFFFF", t5, 0.30)
            fg = "#13243A"
            muted = self._mix("#5A6C84", t2, 0.14)
            border = self._mix("#A9B9CD", t3, 0.30)
            entry_bg = self._mix("#FFFFFF", t5, 0.08)
            accent = self._mix(t2, t3, 0.48)

        return {
            "bg": bg,
            "panel": panel,
            "tile": tile,
            "tile_hover": self._mix(tile, accent, 0.18),
            "fg": fg,
            "muted": muted,
            "border": border,
            "entry_bg": entry_bg,
            "entry_fg": fg,
            "accent": accent,
            "error": accent,
            "stat_bar_bg": self._mix(entry_bg, panel, 0.35),
            "stat_bar_fg": accent,
        }
