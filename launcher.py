import logging
import os
import sys
import tkinter as tk
from pathlib import Path
from typing import Callable, Optional

from PIL import Image, ImageTk


LOGGER = logging.getLogger("pokegrid")

SPLASH_BG = "#0F141B"
SPLASH_SIZE = (420, 220)


def resource_path(rel: str) -> str:
    if hasattr(sys, "_MEIPASS"):
        return os.path.join(sys._MEIPASS, rel)
    return os.path.join(os.path.dirname(os.path.abspath(__file__)), rel)


def first_existing(*paths: str) -> str:
    for p in paths:
        if p and os.path.exists(p):
            return p
    return ""


class Splash(tk.Toplevel):
    def __init__(self, master: tk.Tk, image_path: str = "", ms: int = 1200, title: str = "PokeGrid"):
        super().__init__(master)
        self.overrideredirect(True)
        self.configure(bg=SPLASH_BG)
        self._tkimg = None

        if not self._render_image(image_path):
            body = tk.Frame(self, bg=SPLASH_BG, width=SPLASH_SIZE[0], height=SPLASH_SIZE[1])
            body.pack(fill="both", expand=True)
            body.pack_propagate(False)
            tk.Label(body, text=title, bg=SPLASH_BG, fg="#E6E6E6", font=("Segoe UI", 22, "bold")).pack(expand=True)
            tk.Label(body, text="Loading catalog...", bg=SPLASH_BG, fg="#9AA4B2", font=("Segoe UI", 10)).pack(pady=(0, 24))

        self.update_idletasks()
        w = self.winfo_width()
        h = self.winfo_height()
        x = (self.winfo_screenwidth() - w) // 2
        y = (self.winfo_screenheight() - h) // 2
        self.geometry(f"{w}x{h}+{x}+{y}")
        self.after(ms, self.destroy)

    def _render_image(self, image_path: str) -> bool:
        if not image_path or not os.path.exists(image_path):
            return False
        try:
            img = Image.open(image_path).convert("RGBA").resize(SPLASH_SIZE, Image.LANCZOS)
        except Exception as exc:
            LOGGER.debug("Splash image failed to load from %s: %s", image_path, exc)
            return False
        self._tkimg = ImageTk.PhotoImage(img)
        tk.Label(self, image=self._tkimg, bg=SPLASH_BG, bd=0, highlightthickness=0).pack()
        return True


def run_app(
    app_factory: Callable[[], tk.Tk],
    ensure_assets: Optional[Callable[[], None]] = None,
    splash_duration_ms: int = 1200,
    runtime_assets_dir: str = "",
    user_assets_dir: str = "",
) -> None:
    if ensure_assets:
        ensure_assets()

    splash_path = first_existing(
        str(Path(runtime_assets_dir) / "splash.png") if runtime_assets_dir else "",
        resource_path(os.path.join("assets", "splash.png")),
        str(Path(user_assets_dir) / "splash.png") if user_assets_dir else "",
    )

    if splash_duration_ms > 0:
        boot_root = tk.Tk()
        boot_root.withdraw()
        Splash(boot_root, splash_path, ms=splash_duration_ms)
        boot_root.after(splash_duration_ms + 60, boot_root.quit)
        boot_root.mainloop()
        if boot_root.winfo_exists():
            boot_root.destroy()

    app = app_factory()
    try:
        app.mainloop()
    finally:
        client = getattr(app, "client", None)
        if client is not None:
            client.close()
