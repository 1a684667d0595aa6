from __future__ import annotations

from typing import Any

from lsplint.core.config import LSPServerConfig
from lsplint.core.logger import logger
from lsplint.core.lsp.errors import ServerStartError
from lsplint.core.lsp.installer import JSON_SERVER_PACKAGE, JsonLSPInstaller
from lsplint.core.lsp.project_root import ProjectRootFinder


class JsonLanguageServer:
    name = "json"
    command_options = ["--stdio"]

    def __init__(
        self,
        config: LSPServerConfig | None = None,
        installer: JsonLSPInstaller | None = None,
    ) -> None:
        self.config = config or LSPServerConfig()
        self.installer = installer or JsonLSPInstaller()

    async def get_command(self) -> list[str]:
        if self.config.command:
            return list(self.config.command)

        if exec_path := self.installer.find_on_path():
            return [str(exec_path), *self.command_options]

        if exec_path := self.installer.get_executable_path():
            return ["node", str(exec_path), *self.command_options]

        if self.config.auto_install:
            logger.info(f"{JSON_SERVER_PACKAGE} not found. Attempting to install...")
            if await self.installer.install():
                if exec_path := self.installer.get_executable_path():
                    return ["node", str(exec_path), *self.command_options]

        raise ServerStartError(
            [JSON_SERVER_PACKAGE, *self.command_options],
            f"not found on PATH or in {self.installer.install_dir}. "
            f"Install it with 'npm install -g {JSON_SERVER_PACKAGE}' "
            "or set server.command in the lsplint config.",
        )

    def get_initialization_params(self) -> dict[str, Any]:
        root = ProjectRootFinder.find_project_root()
        root_uri = root.as_uri()
        return {
            "rootUri": root_uri,
            "workspaceFolders": [{"uri": root_uri, "name": root.name or "workspace"}],
            "initializationOptions": {
                "provideFormatter": False,
                **self.config.initialization_options,
            },
        }
