from __future__ import annotations

from collections.abc import Iterable, Sequence
from fnmatch import fnmatch
from pathlib import Path

from lsplint.core.lsp.types import Document


def split_file_list(value: str) -> list[str]:
    return [f.strip() for f in value.split(",") if f.strip()]


def expand_targets(targets: Iterable[str | Path], patterns: Sequence[str]) -> list[Path]:
    """Turn files and directories into an ordered, de-duplicated file list.

    Files are kept as given (even if they do not match `patterns`);
    directories are walked recursively and filtered by `patterns`.
    """
    files: list[Path] = []
    seen: set[Path] = set()

    def add(path: Path) -> None:
        resolved = path.resolve()
        if resolved not in seen:
            seen.add(resolved)
            files.append(path)

    for target in targets:
        path = Path(target)
        if path.is_dir():
            for child in sorted(path.rglob("*")):
                if child.is_file() and any(fnmatch(child.name, p) for p in patterns):
                    add(child)
        else:
            add(path)

    return files


def load_documents(paths: Iterable[Path], language_id: str = "json") -> list[Document]:
    documents: list[Document] = []
    for path in paths:
        text = path.read_text(encoding="utf-8")
        documents.append(
            Document(uri=path.resolve().as_uri(), text=text, language_id=language_id)
        )
    return documents
