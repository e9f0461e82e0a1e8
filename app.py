import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

import tkinter as tk
from tkinter import ttk

try:
    import customtkinter as ctk
    HAS_CTK = True
except Exception:
    ctk = None
    HAS_CTK = False

from PIL import Image, ImageTk

from catalog import (
    BatchFetcher,
    CatalogSource,
    DetailCache,
    DetailRecord,
    PokeApiClient,
    make_detail_fetcher,
    stat_label,
)
from config import (
    APP_NAME,
    APP_VERSION,
    ThemeManager,
    build_app_paths,
    ensure_browser_config,
    ensure_user_dirs,
)
from engine import CatalogEngine, CatalogListener, EmptyReason, SearchDebouncer
from sprites import (
    DETAIL_SPRITE_SIZE,
    TILE_SPRITE_SIZE,
    SpriteService,
    TypeBadgeRenderer,
    compose_sprite_on_bg,
    draw_placeholder,
    ensure_default_sprite,
)


LOGGER = logging.getLogger("pokegrid")
if not LOGGER.handlers:
    logging.basicConfig(level=logging.DEBUG, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

APP_PATHS = build_app_paths()

TILE_WIDTH = 128
STAT_BAR_MAX = 200
STAT_BAR_WIDTH = 200

MSG_NO_MATCHES = 'No Pokémon found for "{term}".'
MSG_NO_DATA = "No Pokémon to display."
MSG_DETAIL_FAILED = "Could not load Pokémon details."
MSG_UNKNOWN = "Unknown"


# =========================
# Engine <-> Tk glue
# =========================
class TkScheduler:
    def __init__(self, widget: tk.Misc):
        self.widget = widget

    def call_later(self, delay_ms: int, fn):
        return self.widget.after(delay_ms, fn)

    def cancel(self, handle) -> None:
        self.widget.after_cancel(handle)


class TkCatalogListener(CatalogListener):
    """Engine callbacks arrive on worker threads; everything is re-posted to the Tk loop."""

    def __init__(self, app: "App"):
        self.app = app

    def on_items_appended(self, records: List[DetailRecord]) -> None:
        self.app.after(0, lambda: self.app._append_tiles(records))

    def on_items_cleared(self) -> None:
        self.app.after(0, self.app._clear_tiles)

    def on_empty_result(self, reason: EmptyReason, term: str) -> None:
        msg = MSG_NO_MATCHES.format(term=term) if reason == EmptyReason.NO_MATCHES else MSG_NO_DATA
        self.app.after(0, lambda: self.app._show_info_message(msg))

    def on_fatal_load_error(self, message: str) -> None:
        self.app.after(0, lambda: self.app._show_info_message(message, is_error=True))

    def on_item_opened(self, url: str, record: Optional[DetailRecord], error: Optional[Exception]) -> None:
        self.app.after(0, lambda: self.app._populate_detail(url, record, error))

    def on_loading_changed(self, loading: bool) -> None:
        self.app.after(0, lambda: self.app._set_loading(loading))


@dataclass
class Tile:
    record: DetailRecord
    frame: tk.Frame
    image_label: tk.Label
    name_label: tk.Label


# =========================
# App
# =========================
BaseTkApp = ctk.CTk if HAS_CTK else tk.Tk


class App(BaseTkApp):
    def __init__(self, paths=APP_PATHS):
        super().__init__()
        self._use_ctk = bool(HAS_CTK)
        if not self._use_ctk:
            LOGGER.warning("customtkinter not installed. Falling back to Tk widgets.")
        self.paths = paths
        self.title(f"{APP_NAME} v{APP_VERSION}")
        self.geometry("980x720")
        self.wm_minsize(520, 420)

        self.cfg = ensure_browser_config(str(paths.browser_config_path))
        self.theme_manager = ThemeManager(str(paths.ui_config_path))
        self.theme_cfg = self.theme_manager.load()
        self.theme = self.theme_manager.build_theme(self.theme_cfg)

        self.client = PokeApiClient(self.cfg.base_url, timeout=self.cfg.request_timeout_sec)
        self.cache = DetailCache()
        self.engine = CatalogEngine(
            source=CatalogSource.from_client(self.client, self.cfg.list_limit),
            fetcher=BatchFetcher(make_detail_fetcher(self.client.get_json), self.cache, self.cfg.max_workers),
            cache=self.cache,
            listener=TkCatalogListener(self),
            page_size=self.cfg.page_size,
        )
        self.debouncer = SearchDebouncer(self._run_search_async, self.cfg.debounce_ms, scheduler=TkScheduler(self))
        self.sprites = SpriteService(
            str(paths.user_sprite_cache_dir),
            str(paths.user_default_sprite),
            timeout=self.cfg.request_timeout_sec,
        )
        self.badges = TypeBadgeRenderer()

        self.search_var = tk.StringVar()
        self._status_var = tk.StringVar(value=f"v{APP_VERSION}")
        self._message_var = tk.StringVar(value="")
        self._tiles: Dict[str, Tile] = {}
        self._tile_order: List[str] = []
        self._tile_images: Dict[str, ImageTk.PhotoImage] = {}
        self._placeholder_img: Optional[ImageTk.PhotoImage] = None
        self._cols = 1
        self._view_generation_id = 0
        self._resize_after_id: Optional[str] = None
        self._bottom_check_pending = False

        self._detail_window: Optional[tk.Toplevel] = None
        self._detail_body: Optional[tk.Frame] = None
        self._detail_url: Optional[str] = None
        self._detail_images: List[ImageTk.PhotoImage] = []

        self._build_layout()
        self._apply_theme()
        self._load_data_async()

    # ---------- Layout ----------
    def _build_layout(self):
        if self._use_ctk:
            root = ctk.CTkFrame(self, corner_radius=10)
        else:
            root = tk.Frame(self)
        root.pack(fill="both", expand=True, padx=12, pady=12)
        root.columnconfigure(0, weight=1)
        root.rowconfigure(2, weight=1)
        self.root_container = root

        toolbar = tk.Frame(root)
        toolbar.grid(row=0, column=0, sticky="ew", pady=(0, 8))
        toolbar.columnconfigure(0, weight=1)
        self.toolbar = toolbar

        if self._use_ctk:
            self.search_entry = ctk.CTkEntry(toolbar, textvariable=self.search_var)
            self.clear_btn = ctk.CTkButton(toolbar, text="✕", width=36, command=self._on_clear_search)
            self.theme_btn = ctk.CTkButton(toolbar, text="", width=44, command=self._toggle_theme)
        else:
            self.search_entry = ttk.Entry(toolbar, textvariable=self.search_var)
            self.clear_btn = ttk.Button(toolbar, text="✕", width=3, command=self._on_clear_search)
            self.theme_btn = ttk.Button(toolbar, text="", width=4, command=self._toggle_theme)
        self.search_entry.grid(row=0, column=0, sticky="ew", padx=(8, 6), pady=8)
        self.clear_btn.grid(row=0, column=1, padx=(0, 6), pady=8)
        self.theme_btn.grid(row=0, column=2, padx=(0, 8), pady=8)
        self.search_var.trace_add("write", lambda *_: self.debouncer.schedule(self.search_var.get()))

        self.message_label = tk.Label(root, textvariable=self._message_var, anchor="center", font=("Segoe UI", 11))
        self.message_label.grid(row=1, column=0, sticky="ew")
        self.message_label.grid_remove()

        grid_host = tk.Frame(root)
        grid_host.grid(row=2, column=0, sticky="nsew")
        grid_host.columnconfigure(0, weight=1)
        grid_host.rowconfigure(0, weight=1)
        self.grid_host = grid_host

        self.canvas = tk.Canvas(grid_host, highlightthickness=0)
        self.scrollbar = ttk.Scrollbar(grid_host, orient="vertical", command=self._on_scrollbar)
        self.canvas.configure(yscrollcommand=self._on_canvas_yscroll)
        self.canvas.grid(row=0, column=0, sticky="nsew")
        self.scrollbar.grid(row=0, column=1, sticky="ns")
        self.tile_frame = tk.Frame(self.canvas)
        self._tile_window = self.canvas.create_window((0, 0), window=self.tile_frame, anchor="nw")
        self.tile_frame.bind("<Configure>", lambda _e: self.canvas.configure(scrollregion=self.canvas.bbox("all")))
        self.canvas.bind("<Configure>", self._on_canvas_resize)
        self.bind_all("<MouseWheel>", self._on_mousewheel)  # Windows / macOS
        self.bind_all("<Button-4>", self._on_mousewheel)    # Linux up
        self.bind_all("<Button-5>", self._on_mousewheel)    # Linux down

        self.status_label = tk.Label(root, textvariable=self._status_var, anchor="w", font=("Segoe UI", 9, "italic"))
        self.status_label.grid(row=3, column=0, sticky="ew", pady=(6, 0), padx=2)

    def _set_status(self, text: str) -> None:
        self._status_var.set(text)

    # ---------- Theme ----------
    def _toggle_theme(self):
        self.theme_cfg = self.theme_manager.toggle(self.theme_cfg)
        self.theme = self.theme_manager.build_theme(self.theme_cfg)
        self._apply_theme()

    def _apply_theme(self):
        th = self.theme
        dark = self.theme_cfg.mode == "dark"
        if self._use_ctk:
            ctk.set_appearance_mode("Dark" if dark else "Light")
            self.configure(fg_color=th["bg"])
            self.root_container.configure(fg_color=th["panel"])
            self.theme_btn.configure(text="🌙" if dark else "☀️")
        else:
            self.configure(bg=th["bg"])
            self.root_container.configure(bg=th["panel"])
            self.theme_btn.configure(text="🌙" if dark else "☀️")
        for w in (self.toolbar, self.grid_host, self.tile_frame):
            w.configure(bg=th["panel"])
        self.canvas.configure(bg=th["panel"])
        self.status_label.configure(bg=th["panel"], fg=th["muted"])
        self.message_label.configure(bg=th["panel"])
        placeholder = compose_sprite_on_bg(draw_placeholder(), TILE_SPRITE_SIZE, bg_hex=th["tile"])
        self._placeholder_img = ImageTk.PhotoImage(placeholder)
        for tile in self._tiles.values():
            self._style_tile(tile)
        if self._detail_window is not None and self._detail_window.winfo_exists():
            self._detail_window.configure(bg=th["panel"])
            if self._detail_url:
                record = self.cache.get(self._detail_url)
                if record is not None:
                    self._render_detail(record)

    # ---------- Data load ----------
    def _load_data_async(self):
        self._set_status("Loading Pokémon list...")
        threading.Thread(target=self.engine.start, daemon=True).start()

    def _request_more_async(self):
        e = self.engine
        if not e.loaded or e.failed or e.loading or e.exhausted:
            return
        threading.Thread(target=e.request_more, daemon=True).start()

    def _run_search_async(self, term: str):
        threading.Thread(target=self.engine.submit_search, args=(term,), daemon=True).start()

    def _on_clear_search(self):
        self.search_var.set("")
        self.debouncer.flush()
        self.search_entry.focus_set()

    def _set_loading(self, loading: bool):
        if loading:
            self._set_status("Loading...")
            return
        shown = len(self._tile_order)
        total = len(self.engine.active_list)
        self._set_status(f"{shown} shown · {total} in list")
        self._schedule_bottom_check()

    def _show_info_message(self, message: str, is_error: bool = False):
        self._clear_tiles()
        self._message_var.set(message)
        self.message_label.configure(fg=self.theme["error"] if is_error else self.theme["fg"])
        self.message_label.grid()
        if is_error:
            self._set_status(message)

    # ---------- Tiles ----------
    def _clear_tiles(self):
        self._view_generation_id += 1
        for tile in self._tiles.values():
            tile.frame.destroy()
        self._tiles.clear()
        self._tile_order.clear()
        self._tile_images.clear()
        self.message_label.grid_remove()
        self.canvas.yview_moveto(0.0)

    def _append_tiles(self, records: List[DetailRecord]):
        if not records:
            return
        added: List[DetailRecord] = []
        for record in records:
            if not record.name or not record.url or record.url in self._tiles:
                LOGGER.warning("Invalid or duplicate record skipped: %r", record)
                continue
            tile = self._create_tile(record)
            self._tiles[record.url] = tile
            self._tile_order.append(record.url)
            self._place_tile(len(self._tile_order) - 1, tile)
            added.append(record)
        if added:
            self.message_label.grid_remove()
            self._load_tile_sprites_async(added, self._view_generation_id)

    def _create_tile(self, record: DetailRecord) -> Tile:
        frame = tk.Frame(self.tile_frame, width=TILE_WIDTH, height=TILE_WIDTH, takefocus=1, cursor="hand2")
        image_label = tk.Label(frame, image=self._placeholder_img, bd=0)
        image_label.pack(pady=(8, 2))
        name_label = tk.Label(frame, text=record.display_name, font=("Segoe UI", 10, "bold"))
        name_label.pack(pady=(0, 8))
        tile = Tile(record=record, frame=frame, image_label=image_label, name_label=name_label)
        for w in (frame, image_label, name_label):
            w.bind("<Button-1>", lambda _e, url=record.url: self._open_detail(url))
        frame.bind("<Return>", lambda _e, url=record.url: self._open_detail(url))
        frame.bind("<space>", lambda _e, url=record.url: self._open_detail(url))
        frame.bind("<Enter>", lambda _e, t=tile: self._style_tile(t, hover=True))
        frame.bind("<Leave>", lambda _e, t=tile: self._style_tile(t))
        self._style_tile(tile)
        return tile

    def _style_tile(self, tile: Tile, hover: bool = False):
        bg = self.theme["tile_hover"] if hover else self.theme["tile"]
        tile.frame.configure(bg=bg, highlightthickness=1, highlightbackground=self.theme["border"])
        tile.image_label.configure(bg=bg)
        tile.name_label.configure(bg=bg, fg=self.theme["fg"])

    def _place_tile(self, index: int, tile: Tile):
        row, col = divmod(index, self._cols)
        tile.frame.grid(row=row, column=col, padx=6, pady=6, sticky="nsew")

    def _load_tile_sprites_async(self, records: List[DetailRecord], view_gen: int):
        bg_hex = self.theme["tile"]

        def task():
            for record in records:
                if view_gen != self._view_generation_id:
                    return
                img = self.sprites.load_image(record.sprite_url, TILE_SPRITE_SIZE, bg_hex=bg_hex)
                self.after(0, lambda url=record.url, im=img: apply(url, im))

        def apply(url: str, img: Image.Image):
            if view_gen != self._view_generation_id or url not in self._tiles:
                return
            try:
                photo = ImageTk.PhotoImage(img)
                self._tile_images[url] = photo  # Keep reference
                self._tiles[url].image_label.configure(image=photo)
            except Exception as exc:
                print(f"[App] Failed to set sprite for {url}: {exc}")

        threading.Thread(target=task, daemon=True).start()

    # ---------- Scrolling ----------
    def _on_canvas_resize(self, event):
        self.canvas.itemconfigure(self._tile_window, width=event.width)
        if self._resize_after_id:
            try:
                self.after_cancel(self._resize_after_id)
            except tk.TclError:
                pass
        self._resize_after_id = self.after(70, self._relayout_tiles)

    def _relayout_tiles(self):
        self._resize_after_id = None
        cols = max(1, self.canvas.winfo_width() // (TILE_WIDTH + 12))
        if cols != self._cols:
            self._cols = cols
            for i, url in enumerate(self._tile_order):
                self._place_tile(i, self._tiles[url])
        self._schedule_bottom_check()

    def _on_scrollbar(self, *args):
        self.canvas.yview(*args)
        self._schedule_bottom_check()

    def _on_canvas_yscroll(self, first, last):
        self.scrollbar.set(first, last)
        self._schedule_bottom_check()

    def _on_mousewheel(self, event):
        try:
            if event.widget.winfo_toplevel() is not self:
                return
        except (AttributeError, tk.TclError):
            return
        if getattr(event, "num", None) == 4:
            delta = -1
        elif getattr(event, "num", None) == 5:
            delta = 1
        else:
            delta = -1 if event.delta > 0 else 1
        self.canvas.yview_scroll(delta * 3, "units")
        self._schedule_bottom_check()

    def _schedule_bottom_check(self):
        if self._bottom_check_pending:
            return
        self._bottom_check_pending = True
        self.after_idle(self._check_near_bottom)

    def _check_near_bottom(self):
        self._bottom_check_pending = False
        content_h = self.tile_frame.winfo_height()
        visible_bottom = self.canvas.canvasy(self.canvas.winfo_height())
        if content_h - visible_bottom <= self.cfg.scroll_margin_px:
            self._request_more_async()

    # ---------- Detail window ----------
    def _open_detail(self, url: str):
        self._detail_url = url
        if self._detail_window is None or not self._detail_window.winfo_exists():
            win = tk.Toplevel(self)
            win.title("Pokémon")
            win.geometry("420x560")
            win.transient(self)
            win.bind("<Escape>", lambda _e: self._close_detail())
            win.protocol("WM_DELETE_WINDOW", self._close_detail)
            self._detail_window = win
        self._detail_window.configure(bg=self.theme["panel"])
        self._reset_detail_body()
        tk.Label(
            self._detail_body,
            text="Loading details...",
            bg=self.theme["panel"],
            fg=self.theme["muted"],
        ).pack(expand=True, pady=40)
        self._detail_window.deiconify()
        self._detail_window.lift()
        self._detail_window.focus_set()
        threading.Thread(target=self.engine.inspect, args=(url,), daemon=True).start()

    def _close_detail(self):
        self._detail_url = None
        if self._detail_window is not None and self._detail_window.winfo_exists():
            self._detail_window.destroy()
        self._detail_window = None
        self._detail_images.clear()

    def _reset_detail_body(self):
        if self._detail_body is not None and self._detail_body.winfo_exists():
            self._detail_body.destroy()
        self._detail_images.clear()
        self._detail_body = tk.Frame(self._detail_window, bg=self.theme["panel"])
        self._detail_body.pack(fill="both", expand=True, padx=16, pady=16)

    def _populate_detail(self, url: str, record: Optional[DetailRecord], error: Optional[Exception]):
        if url != self._detail_url or self._detail_window is None or not self._detail_window.winfo_exists():
            return
        if record is None:
            LOGGER.debug("Detail failed for %s: %s", url, error)
            self._reset_detail_body()
            tk.Label(
                self._detail_body,
                text=MSG_DETAIL_FAILED,
                bg=self.theme["panel"],
                fg=self.theme["error"],
                wraplength=360,
            ).pack(expand=True, pady=40)
            return
        self._render_detail(record)

    def _render_detail(self, record: DetailRecord):
        th = self.theme
        self._reset_detail_body()
        body = self._detail_body
        tk.Label(body, text=record.display_name, bg=th["panel"], fg=th["accent"], font=("Segoe UI", 18, "bold")).pack(anchor="w")

        placeholder = compose_sprite_on_bg(draw_placeholder(), DETAIL_SPRITE_SIZE, bg_hex=th["panel"])
        art_photo = ImageTk.PhotoImage(placeholder)
        self._detail_images.append(art_photo)
        art_label = tk.Label(body, image=art_photo, bg=th["panel"])
        art_label.pack(pady=8)
        self._load_detail_art_async(record, art_label)

        types_row = tk.Frame(body, bg=th["panel"])
        types_row.pack(anchor="w", pady=(0, 6))
        tk.Label(types_row, text="Type(s):", bg=th["panel"], fg=th["fg"], font=("Segoe UI", 10, "bold")).pack(side="left")
        if record.types:
            for t in record.types:
                badge = ImageTk.PhotoImage(self.badges.render(t))
                self._detail_images.append(badge)
                tk.Label(types_row, image=badge, bg=th["panel"]).pack(side="left", padx=(6, 0))
        else:
            tk.Label(types_row, text=MSG_UNKNOWN, bg=th["panel"], fg=th["muted"]).pack(side="left", padx=(6, 0))

        height = f"{record.height_m:g} m" if record.height_m else MSG_UNKNOWN
        weight = f"{record.weight_kg:g} kg" if record.weight_kg else MSG_UNKNOWN
        for label, value in (("Height:", height), ("Weight:", weight)):
            row = tk.Frame(body, bg=th["panel"])
            row.pack(anchor="w")
            tk.Label(row, text=label, bg=th["panel"], fg=th["fg"], font=("Segoe UI", 10, "bold")).pack(side="left")
            tk.Label(row, text=value, bg=th["panel"], fg=th["fg"]).pack(side="left", padx=(6, 0))

        tk.Label(body, text="Base stats:", bg=th["panel"], fg=th["accent"], font=("Segoe UI", 12, "bold")).pack(anchor="w", pady=(12, 4))
        if not record.stats:
            tk.Label(body, text="Stats unavailable", bg=th["panel"], fg=th["muted"]).pack(anchor="w")
            return
        table = tk.Frame(body, bg=th["panel"])
        table.pack(fill="x")
        for i, stat in enumerate(record.stats):
            tk.Label(table, text=stat_label(stat.name), bg=th["panel"], fg=th["fg"], anchor="w", width=12).grid(row=i, column=0, sticky="w")
            bar = tk.Canvas(table, width=STAT_BAR_WIDTH, height=10, bg=th["stat_bar_bg"], highlightthickness=0)
            bar.grid(row=i, column=1, padx=6, pady=3)
            fill_w = int(STAT_BAR_WIDTH * min(stat.base_stat / STAT_BAR_MAX, 1.0))
            if fill_w > 0:
                bar.create_rectangle(0, 0, fill_w, 10, fill=th["stat_bar_fg"], width=0)
            tk.Label(table, text=str(stat.base_stat), bg=th["panel"], fg=th["fg"], font=("Segoe UI", 10, "bold")).grid(row=i, column=2, sticky="e")

    def _load_detail_art_async(self, record: DetailRecord, target: tk.Label):
        bg_hex = self.theme["panel"]

        def task():
            img = self.sprites.load_image(record.artwork_url, DETAIL_SPRITE_SIZE, bg_hex=bg_hex)
            self.after(0, lambda: apply(img))

        def apply(img: Image.Image):
            if self._detail_url != record.url or not target.winfo_exists():
                return
            photo = ImageTk.PhotoImage(img)
            self._detail_images.append(photo)
            target.configure(image=photo)

        threading.Thread(target=task, daemon=True).start()


def ensure_assets():
    ensure_user_dirs(APP_PATHS)
    ensure_default_sprite(str(APP_PATHS.user_default_sprite), str(APP_PATHS.runtime_default_sprite))


def main():
    from launcher import run_app

    run_app(
        app_factory=App,
        ensure_assets=ensure_assets,
        splash_duration_ms=1200,
        runtime_assets_dir=str(APP_PATHS.runtime_assets_dir),
        user_assets_dir=str(APP_PATHS.user_assets_dir),
    )


if __name__ == "__main__":
    main()
