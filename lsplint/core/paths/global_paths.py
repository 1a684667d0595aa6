from __future__ import annotations

from collections.abc import Callable
import os
from pathlib import Path


class GlobalPath:
    def __init__(self, resolver: Callable[[], Path]) -> None:
        self._resolver = resolver

    @property
    def path(self) -> Path:
        return self._resolver()


_DEFAULT_LSPLINT_HOME = Path.home() / ".lsplint"


def _get_lsplint_home() -> Path:
    if lsplint_home := os.getenv("LSPLINT_HOME"):
        return Path(lsplint_home).expanduser().resolve()
    return _DEFAULT_LSPLINT_HOME


def _resolve_config_file() -> Path:
    if (candidate := Path.cwd() / ".lsplint" / "config.toml").is_file():
        return candidate
    return LSPLINT_HOME.path / "config.toml"


LSPLINT_HOME = GlobalPath(_get_lsplint_home)
GLOBAL_ENV_FILE = GlobalPath(lambda: LSPLINT_HOME.path / ".env")
CONFIG_FILE = GlobalPath(_resolve_config_file)
CONFIG_DIR = GlobalPath(lambda: CONFIG_FILE.path.parent)
LSP_INSTALL_DIR = GlobalPath(lambda: LSPLINT_HOME.path / "lsp")
LOG_DIR = GlobalPath(lambda: LSPLINT_HOME.path / "logs")
LOG_FILE = GlobalPath(lambda: LSPLINT_HOME.path / "logs" / "lsplint.log")
