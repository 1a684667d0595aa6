from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from lsplint.core.config import LSPServerConfig
from lsplint.core.lsp.errors import ServerStartError
from lsplint.core.lsp.installer import JsonLSPInstaller
from lsplint.core.lsp.project_root import ProjectRootFinder
from lsplint.core.lsp.server import JsonLanguageServer


def make_installer(
    on_path: Path | None = None, local: Path | None = None
) -> MagicMock:
    installer = MagicMock(spec=JsonLSPInstaller)
    installer.install_dir = Path("/opt/lsplint/lsp/json")
    installer.find_on_path.return_value = on_path
    installer.get_executable_path.return_value = local
    installer.install = AsyncMock(return_value=False)
    return installer


class TestGetCommand:
    @pytest.mark.asyncio
    async def test_configured_command_wins(self) -> None:
        installer = make_installer(on_path=Path("/usr/bin/vscode-json-languageserver"))
        server = JsonLanguageServer(
            LSPServerConfig(command=["my-json-ls", "--stdio"]), installer
        )

        assert await server.get_command() == ["my-json-ls", "--stdio"]
        installer.find_on_path.assert_not_called()

    @pytest.mark.asyncio
    async def test_executable_on_path(self) -> None:
        installer = make_installer(on_path=Path("/usr/bin/vscode-json-languageserver"))

        command = await JsonLanguageServer(installer=installer).get_command()

        assert command == ["/usr/bin/vscode-json-languageserver", "--stdio"]

    @pytest.mark.asyncio
    async def test_local_install_runs_with_node(self) -> None:
        local = Path("/opt/lsplint/lsp/json/node_modules/x/bin/vscode-json-languageserver")
        installer = make_installer(local=local)

        command = await JsonLanguageServer(installer=installer).get_command()

        assert command == ["node", str(local), "--stdio"]

    @pytest.mark.asyncio
    async def test_missing_server_without_auto_install(self) -> None:
        installer = make_installer()

        with pytest.raises(ServerStartError, match="npm install -g"):
            await JsonLanguageServer(installer=installer).get_command()
        installer.install.assert_not_called()

    @pytest.mark.asyncio
    async def test_auto_install_then_use_local_install(self) -> None:
        local = Path("/opt/lsplint/lsp/json/out/node/jsonServerMain.js")
        installer = make_installer()
        installer.get_executable_path.side_effect = [None, local]
        installer.install.return_value = True

        command = await JsonLanguageServer(
            LSPServerConfig(auto_install=True), installer
        ).get_command()

        assert command == ["node", str(local), "--stdio"]
        installer.install.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_auto_install_raises(self) -> None:
        installer = make_installer()

        with pytest.raises(ServerStartError):
            await JsonLanguageServer(
                LSPServerConfig(auto_install=True), installer
            ).get_command()
        installer.install.assert_awaited_once()


def test_initialization_params_use_project_root(
    tmp_working_directory: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    (tmp_working_directory / "package.json").write_text("{}", encoding="utf-8")
    sub = tmp_working_directory / "src" / "conf"
    sub.mkdir(parents=True)
    server = JsonLanguageServer(
        LSPServerConfig(initialization_options={"handledSchemaProtocols": ["file"]}),
        make_installer(),
    )

    monkeypatch.chdir(sub)
    params = server.get_initialization_params()

    root_uri = tmp_working_directory.resolve().as_uri()
    assert params["rootUri"] == root_uri
    assert params["workspaceFolders"] == [
        {"uri": root_uri, "name": tmp_working_directory.resolve().name}
    ]
    assert params["initializationOptions"] == {
        "provideFormatter": False,
        "handledSchemaProtocols": ["file"],
    }


class TestProjectRootFinder:
    def test_walks_up_to_first_marker(self, tmp_path: Path) -> None:
        (tmp_path / ".git").mkdir()
        start = tmp_path / "a" / "b"
        start.mkdir(parents=True)

        assert ProjectRootFinder.find_project_root(start=start) == tmp_path.resolve()

    def test_custom_markers(self, tmp_path: Path) -> None:
        (tmp_path / "a").mkdir()
        (tmp_path / "a" / "tsconfig.json").write_text("{}", encoding="utf-8")
        start = tmp_path / "a" / "b"
        start.mkdir()

        root = ProjectRootFinder.find_project_root(["tsconfig.json"], start=start)

        assert root == (tmp_path / "a").resolve()

    def test_falls_back_to_start(self, tmp_path: Path) -> None:
        assert ProjectRootFinder.find_project_root([], start=tmp_path) == (
            tmp_path.resolve()
        )


class TestJsonLSPInstaller:
    def test_finds_local_bin_script(self, tmp_path: Path) -> None:
        installer = JsonLSPInstaller(install_dir=tmp_path)
        assert installer.get_executable_path() is None
        assert not installer.is_installed()

        bin_script = (
            tmp_path
            / "node_modules"
            / "vscode-json-languageserver"
            / "bin"
            / "vscode-json-languageserver"
        )
        bin_script.parent.mkdir(parents=True)
        bin_script.write_text("#!/usr/bin/env node\n", encoding="utf-8")

        assert installer.get_executable_path() == bin_script
        assert installer.is_installed()

    def test_default_install_dir_is_under_lsplint_home(self, lsplint_home: Path) -> None:
        assert JsonLSPInstaller().install_dir == lsplint_home / "lsp" / "json"

    @pytest.mark.asyncio
    async def test_install_without_npm_fails(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr("lsplint.core.lsp.installer.shutil.which", lambda _name: None)

        assert await JsonLSPInstaller(install_dir=tmp_path).install() is False
        assert JsonLSPInstaller(install_dir=tmp_path).find_on_path() is None
