from __future__ import annotations

import argparse
import asyncio
from collections.abc import Sequence
import logging
import shlex
import sys

from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape

from lsplint import __version__
from lsplint.core.config import LintConfig, ReportFormat, load_dotenv_values
from lsplint.core.documents import expand_targets, load_documents, split_file_list
from lsplint.core.logger import apply_logging_config, logger
from lsplint.core.lsp.errors import LintSessionFailed, LSPError
from lsplint.core.lsp.formatter import LSPDiagnosticFormatter
from lsplint.core.lsp.server import JsonLanguageServer
from lsplint.core.lsp.session import LintSession
from lsplint.core.lsp.types import LintResult
from lsplint.core.paths.global_paths import CONFIG_FILE

EXIT_OK = 0
EXIT_LINT_FAILED = 1
EXIT_ERROR = 2

err_console = Console(stderr=True, soft_wrap=True)


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="lsplint",
        description="Lint JSON documents with a language server and report its diagnostics",
    )
    parser.add_argument(
        "-v", "--version", action="version", version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "targets", nargs="*", help="Files or directories to lint"
    )
    parser.add_argument(
        "--files",
        default=None,
        help="Comma-separated list of files to lint (e.g. 'a.json, b.json')",
    )
    parser.add_argument(
        "--server-command",
        default=None,
        help="Command that starts the language server in stdio mode",
    )
    parser.add_argument(
        "--format",
        dest="report_format",
        choices=[f.value for f in ReportFormat],
        default=None,
        help="Report format (default: from config, 'github')",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the diagnostics of each document",
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="How many documents may be open on the server at once",
    )
    parser.add_argument(
        "--install-server",
        action="store_true",
        help="Install vscode-json-languageserver with npm when it is missing",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help=f"Write the default configuration to {CONFIG_FILE.path} and exit",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Log language server traffic to stderr"
    )
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> LintConfig:
    config = LintConfig.load()

    if args.files is not None:
        config.files = split_file_list(args.files)
    if args.report_format is not None:
        config.report_format = ReportFormat(args.report_format)

    server_updates: dict[str, object] = {}
    if args.server_command:
        server_updates["command"] = shlex.split(args.server_command)
    if args.install_server:
        server_updates["auto_install"] = True
    if server_updates:
        config.server = config.server.model_copy(update=server_updates)

    session_updates: dict[str, object] = {}
    if args.timeout is not None:
        session_updates["diagnostics_timeout"] = args.timeout
    if args.jobs is not None:
        session_updates["max_open_documents"] = args.jobs
    if session_updates:
        # Re-validate so bad CLI values fail like bad config values
        config.session = config.session.model_validate(
            {**config.session.model_dump(), **session_updates}
        )

    return config


def configure_verbose_logging() -> None:
    handler = RichHandler(console=err_console, show_path=False)
    handler.setLevel(logging.DEBUG)
    logger.addHandler(handler)


async def lint_files(config: LintConfig, targets: Sequence[str]) -> list[LintResult]:
    paths = expand_targets([*targets, *config.files], config.server.file_patterns)
    if not paths:
        return []

    documents = load_documents(paths, config.server.language_id)
    server = JsonLanguageServer(config.server)
    session = LintSession(
        command=await server.get_command(),
        server_config=config.server,
        session_config=config.session,
        initialization_params=server.get_initialization_params(),
    )
    return await session.run(documents)


def render_report(results: Sequence[LintResult], config: LintConfig) -> str:
    match config.report_format:
        case ReportFormat.GITHUB:
            return LSPDiagnosticFormatter.format_github_annotations(
                results, config.annotation_level, config.annotation_title
            )
        case ReportFormat.YAML:
            return LSPDiagnosticFormatter.format_yaml(results)
        case ReportFormat.TEXT:
            return LSPDiagnosticFormatter.format_text(results)


def print_summary(results: Sequence[LintResult]) -> None:
    summary = LSPDiagnosticFormatter.summarize(results)
    if summary["failed_files"] == 0:
        err_console.print(f"[green]{summary['files']} file(s) passed[/]")
        return
    err_console.print(
        f"[red]{summary['failed_files']} of {summary['files']} file(s) failed "
        f"with {summary['diagnostics']} diagnostic(s)[/]"
    )


def run_cli(args: argparse.Namespace) -> int:
    load_dotenv_values()

    if args.init_config:
        if CONFIG_FILE.path.exists():
            err_console.print(
                f"[yellow]{escape(str(CONFIG_FILE.path))} already exists[/]"
            )
            return EXIT_OK
        LintConfig.save_updates(LintConfig.create_default())
        err_console.print(f"Wrote default configuration to {CONFIG_FILE.path}")
        return EXIT_OK

    try:
        config = build_config(args)
    except (ValidationError, RuntimeError) as e:
        err_console.print(f"[yellow]Invalid configuration: {escape(str(e))}[/]")
        return EXIT_ERROR

    try:
        results = asyncio.run(lint_files(config, args.targets))
    except LintSessionFailed as e:
        err_console.print(f"[red]{escape(str(e.cause))}[/]")
        if e.results and (report := render_report(e.results, config)):
            print(report)
        return EXIT_ERROR
    except (LSPError, OSError, UnicodeDecodeError) as e:
        err_console.print(f"[red]{escape(str(e))}[/]")
        return EXIT_ERROR

    if not results:
        err_console.print("[yellow]No files to lint[/]")
        return EXIT_OK

    if report := render_report(results, config):
        print(report)
    print_summary(results)

    return EXIT_OK if all(r.passed for r in results) else EXIT_LINT_FAILED


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_arguments(argv)
    apply_logging_config(logger)
    if args.verbose:
        configure_verbose_logging()

    try:
        sys.exit(run_cli(args))
    except KeyboardInterrupt:
        err_console.print("[yellow]Interrupted[/]")
        sys.exit(130)


if __name__ == "__main__":
    main()
