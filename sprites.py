import hashlib
import logging
import os
import shutil
from typing import Dict, Optional, Tuple

import requests
from PIL import Image, ImageDraw, ImageFont


LOGGER = logging.getLogger("pokegrid")

TILE_SPRITE_SIZE = (80, 80)
DETAIL_SPRITE_SIZE = (140, 140)

TYPE_COLORS = {
    "normal": "#A8A77A",
    "fire": "#EE8130",
    "water": "#6390F0",
    "electric": "#F7D02C",
    "grass": "#7AC74C",
    "ice": "#96D9D6",
    "fighting": "#C22E28",
    "poison": "#A33EA1",
    "ground": "#8B6B3F",
    "flying": "#A98FF3",
    "psychic": "#F95587",
    "bug": "#A6B91A",
    "rock": "#B6A136",
    "ghost": "#735797",
    "dragon": "#6F35FC",
    "dark": "#705746",
    "steel": "#B7B7CE",
    "fairy": "#D685AD",
}


def hex_to_rgb(color: str) -> Tuple[int, int, int]:
    c = color.lstrip("#")
    return int(c[0:2], 16), int(c[2:4], 16), int(c[4:6], 16)


def compose_sprite_on_bg(img: Image.Image, size: Tuple[int, int], bg_hex: Optional[str] = None) -> Image.Image:
    sprite = img.convert("RGBA").resize(size, Image.NEAREST)
    if not bg_hex:
        return sprite
    try:
        r, g, b = hex_to_rgb(bg_hex)
    except Exception:
        r, g, b = (24, 28, 34)
    base = Image.new("RGBA", size, (r, g, b, 255))
    base.alpha_composite(sprite)
    return base


def draw_placeholder(size: Tuple[int, int] = (96, 96)) -> Image.Image:
    w, h = size
    img = Image.new("RGBA", size, (0, 0, 0, 0))
    dr = ImageDraw.Draw(img)
    dr.ellipse((w * 0.15, h * 0.15, w * 0.85, h * 0.85), fill=(120, 128, 140, 200))
    font = ImageFont.load_default()
    tw = dr.textlength("?", font=font)
    dr.text(((w - tw) / 2, (h - 10) / 2), "?", fill=(255, 255, 255, 255), font=font)
    return img


def ensure_default_sprite(default_path: str, runtime_default_path: str = "") -> str:
    # The user copy is the only one ever written.
    if os.path.exists(default_path):
        return default_path
    if runtime_default_path and os.path.exists(runtime_default_path):
        try:
            os.makedirs(os.path.dirname(default_path), exist_ok=True)
            shutil.copy2(runtime_default_path, default_path)
            return default_path
        except OSError as exc:
            print(f"[Assets] failed to copy bundled default sprite to user dir: {exc}")
    try:
        os.makedirs(os.path.dirname(default_path), exist_ok=True)
        draw_placeholder().save(default_path)
    except OSError as exc:
        print(f"[Assets] failed to create user default sprite at {default_path}: {exc}")
    return default_path


# =========================
# Sprite service (by URL + disk cache)
# =========================
class SpriteService:
    def __init__(
        self,
        cache_dir: str,
        default_path: str,
        timeout: float = 20,
        session: Optional[requests.Session] = None,
    ):
        self.cache_dir = cache_dir
        self.default_path = default_path
        self.timeout = timeout
        self.session = session or requests.Session()

    def cache_path_for(self, url: str) -> str:
        return os.path.join(self.cache_dir, hashlib.sha1(url.encode("utf-8")).hexdigest() + ".png")

    def get_sprite_path(self, url: Optional[str]) -> str:
        if not url:
            return self.default_path
        cached = self.cache_path_for(url)
        if os.path.exists(cached):
            return cached
        try:
            r = self.session.get(url, timeout=self.timeout)
            r.raise_for_status()
            if not r.content:
                raise ValueError("empty image body")
            os.makedirs(self.cache_dir, exist_ok=True)
            with open(cached, "wb") as f:
                f.write(r.content)
            return cached
        except (requests.RequestException, ValueError, OSError) as exc:
            LOGGER.warning("Sprite failed to load from %s: %s", url, exc)
            return self.default_path

    def load_image(self, url: Optional[str], size: Tuple[int, int], bg_hex: Optional[str] = None) -> Image.Image:
        path = self.get_sprite_path(url)
        try:
            img = Image.open(path)
        except Exception as exc:
            print(f"[SpriteService] Failed to open sprite at {path}: {exc}")
            img = draw_placeholder(size)
        return compose_sprite_on_bg(img, size, bg_hex=bg_hex)


class TypeBadgeRenderer:
    def __init__(self):
        self._cache: Dict[Tuple[str, int, int], Image.Image] = {}

    def render(self, type_key: str, size: Tuple[int, int] = (64, 20)) -> Image.Image:
        t = (type_key or "").strip().lower()
        w, h = size
        key = (t, w, h)
        if key in self._cache:
            return self._cache[key]
        bg = TYPE_COLORS.get(t, "#6B7280")
        img = Image.new("RGBA", (w, h), (0, 0, 0, 0))
        dr = ImageDraw.Draw(img)
        radius = max(3, min(7, h // 3))
        dr.rounded_rectangle((0, 0, w - 1, h - 1), radius=radius, fill=bg, outline=(30, 30, 30, 220), width=1)
        txt = (t or "?").upper()
        font = ImageFont.load_default()
        tw = dr.textlength(txt, font=font)
        dr.text(((w - tw) / 2, (h - 8) / 2), txt, fill=(255, 255, 255, 245), font=font)
        self._cache[key] = img
        return img
