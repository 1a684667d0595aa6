from __future__ import annotations

from pathlib import Path

DEFAULT_ROOT_MARKERS = [".lsplint", "package.json", ".git"]


class ProjectRootFinder:
    @classmethod
    def find_project_root(
        cls, root_markers: list[str] | None = None, start: Path | None = None
    ) -> Path:
        """Nearest directory at or above `start` (default: cwd) holding a marker.

        Falls back to `start` itself when no ancestor has one.
        """
        markers = DEFAULT_ROOT_MARKERS if root_markers is None else root_markers
        start_dir = (start or Path.cwd()).resolve()

        for check_dir in (start_dir, *start_dir.parents):
            for marker in markers:
                try:
                    if (check_dir / marker).exists():
                        return check_dir
                except OSError:
                    continue

        return start_dir
