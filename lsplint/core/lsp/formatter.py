from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any, TypedDict
from urllib.parse import unquote, urlparse

import yaml

from lsplint.core.lsp.types import Diagnostic, LintResult


class LintSummary(TypedDict):
    files: int
    failed_files: int
    diagnostics: int
    errors: int


def display_path(uri: str, root: Path | None = None) -> str:
    """Map a document URI back to a path relative to `root` (default: cwd)."""
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return uri

    path = Path(unquote(parsed.path))
    base = (root or Path.cwd()).resolve()
    try:
        return path.relative_to(base).as_posix()
    except ValueError:
        return path.as_posix()


def _escape_data(value: str) -> str:
    return value.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


def _escape_property(value: str) -> str:
    return _escape_data(value).replace(":", "%3A").replace(",", "%2C")


class LSPDiagnosticFormatter:
    @staticmethod
    def summarize(results: Sequence[LintResult]) -> LintSummary:
        return {
            "files": len(results),
            "failed_files": sum(1 for r in results if not r.passed),
            "diagnostics": sum(len(r.diagnostics) for r in results),
            "errors": sum(1 for r in results if r.error is not None),
        }

    @staticmethod
    def format_location(diag: Diagnostic) -> str:
        line = diag.range.start.line + 1
        character = diag.range.start.character + 1
        end_line = diag.range.end.line + 1
        # A zero-based exclusive end is the one-based inclusive last column
        last_character = max(diag.range.end.character, character)

        if end_line == line and last_character == character:
            return f"line {line}, column {character}"
        if end_line == line:
            return f"line {line}, columns {character}-{last_character}"
        return f"lines {line}-{end_line}"

    @staticmethod
    def format_github_annotations(
        results: Sequence[LintResult],
        level: str = "error",
        title: str = "lsplint",
        root: Path | None = None,
    ) -> str:
        """Format results as GitHub Actions workflow commands.

        Each diagnostic becomes one `::error file=...,line=...::message` command;
        documents that failed to lint get a file-level command.
        """
        commands: list[str] = []
        for result in results:
            path = _escape_property(display_path(result.uri, root))
            if result.error is not None:
                commands.append(
                    f"::{level} file={path},title={_escape_property(title)}"
                    f"::{_escape_data(result.error)}"
                )
            for diag in result.diagnostics:
                start, end = diag.range.start, diag.range.end
                properties = [
                    f"file={path}",
                    f"line={start.line + 1}",
                    f"endLine={end.line + 1}",
                ]
                # GitHub rejects column ranges that span several lines
                if start.line == end.line:
                    properties += [
                        f"col={start.character + 1}",
                        f"endColumn={max(end.character, start.character + 1)}",
                    ]
                properties.append(f"title={_escape_property(title)}")
                commands.append(
                    f"::{level} {','.join(properties)}::{_escape_data(diag.message)}"
                )
        return "\n".join(commands)

    @staticmethod
    def format_text(results: Sequence[LintResult], root: Path | None = None) -> str:
        lines: list[str] = []
        for result in results:
            path = display_path(result.uri, root)
            if result.error is not None:
                lines.append(f"{path}: error: {result.error}")
            for diag in result.diagnostics:
                start = diag.range.start
                lines.append(
                    f"{path}:{start.line + 1}:{start.character + 1}: {diag.message}"
                )
        return "\n".join(lines)

    @staticmethod
    def format_yaml(results: Sequence[LintResult], root: Path | None = None) -> str:
        data: dict[str, Any] = {
            "summary": dict(LSPDiagnosticFormatter.summarize(results)),
            "files": [
                LSPDiagnosticFormatter._build_result_dict(result, root)
                for result in results
            ],
        }
        return yaml.dump(
            data, default_flow_style=False, sort_keys=False, allow_unicode=True
        ).strip()

    @staticmethod
    def _build_result_dict(result: LintResult, root: Path | None) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "path": display_path(result.uri, root),
            "passed": result.passed,
        }
        if result.error is not None:
            entry["error"] = result.error
        entry["diagnostics"] = [
            LSPDiagnosticFormatter._build_diagnostic_dict(diag)
            for diag in result.diagnostics
        ]
        return entry

    @staticmethod
    def _build_diagnostic_dict(diag: Diagnostic) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "location": LSPDiagnosticFormatter.format_location(diag),
            "message": diag.message,
        }
        details: dict[str, str] = {}
        if (level := diag.level) is not None:
            details["severity"] = level.name.lower()
        elif diag.severity is not None:
            details["severity"] = str(diag.severity)
        if diag.code is not None:
            details["code"] = str(diag.code)
        if diag.source:
            details["source"] = diag.source
        if details:
            entry["details"] = details
        return entry
