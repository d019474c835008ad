"""Tet Family Moment: portrait and video generation workflow."""
from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


_SERVER_DIR = Path(__file__).resolve().parent.parent
_REPO_ROOT = _SERVER_DIR.parent

# Repo .env, then server/.env; server/.env.local wins over both.
for _env_file, _override in (
    (_REPO_ROOT / ".env", False),
    (_SERVER_DIR / ".env", False),
    (_SERVER_DIR / ".env.local", True),
):
    load_dotenv(_env_file, override=_override)

__version__ = "0.1.0"
