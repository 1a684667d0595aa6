from __future__ import annotations

from collections.abc import Callable
import os
from pathlib import Path
import sys

import pytest

from lsplint.core.paths import global_paths

FAKE_SERVER = Path(__file__).parent / "stubs" / "fake_lsp_server.py"


@pytest.fixture(autouse=True)
def tmp_working_directory(
    monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory
) -> Path:
    tmp_working_directory = tmp_path_factory.mktemp("test_cwd")
    monkeypatch.chdir(tmp_working_directory)
    return tmp_working_directory


@pytest.fixture(autouse=True)
def lsplint_home(
    monkeypatch: pytest.MonkeyPatch, tmp_path_factory: pytest.TempPathFactory
) -> Path:
    home = tmp_path_factory.mktemp("lsplint") / ".lsplint"
    home.mkdir(parents=True, exist_ok=True)

    monkeypatch.delenv("LSPLINT_HOME", raising=False)
    for key in list(os.environ):
        if key.upper().startswith("LSPLINT_"):
            monkeypatch.delenv(key)
    monkeypatch.setattr(global_paths, "_DEFAULT_LSPLINT_HOME", home)
    return home


@pytest.fixture
def fake_server_command() -> Callable[..., list[str]]:
    def command(*flags: str) -> list[str]:
        return [sys.executable, str(FAKE_SERVER), *flags]

    return command
