from __future__ import annotations

import os
from pathlib import Path
from typing import Iterable, List

from dotenv import load_dotenv


def load_env(
    search_dirs: Iterable[Path],
    filenames: Iterable[str] = (".env.local", ".env"),
    override: bool = False,
) -> List[Path]:
    """
    Load env files found in *search_dirs*.

    Returns list of env files actually loaded.
    """
    loaded: List[Path] = []
    for d in search_dirs:
        for name in filenames:
            p = Path(d) / name
            if p.exists() and p.is_file():
                load_dotenv(dotenv_path=p, override=override)
                loaded.append(p)

    return loaded


def env_flag(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def env_flag_set(name: str) -> bool:
    """True if *name* is present in the environment at all."""
    v = os.getenv(name)
    return v is not None and v.strip() != ""
