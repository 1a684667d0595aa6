from __future__ import annotations

import asyncio
from pathlib import Path
import shutil

from lsplint.core.logger import logger
from lsplint.core.paths.global_paths import LSP_INSTALL_DIR

JSON_SERVER_PACKAGE = "vscode-json-languageserver"
# The npm package has shipped its bin under both spellings
JSON_SERVER_EXECUTABLES = ["vscode-json-languageserver", "vscode-json-language-server"]


class JsonLSPInstaller:
    def __init__(self, install_dir: Path | None = None) -> None:
        self.install_dir = install_dir or LSP_INSTALL_DIR.path / "json"

    def find_on_path(self) -> Path | None:
        for name in JSON_SERVER_EXECUTABLES:
            if found := shutil.which(name):
                return Path(found)
        return None

    def get_executable_path(self) -> Path | None:
        # The package's bin script is a node entry point without a .js suffix
        package_dir = self.install_dir / "node_modules" / JSON_SERVER_PACKAGE
        for candidate in (
            package_dir / "bin" / "vscode-json-languageserver",
            package_dir / "out" / "node" / "jsonServerMain.js",
        ):
            if candidate.exists():
                return candidate
        return None

    def is_installed(self) -> bool:
        exec_path = self.get_executable_path()
        return exec_path is not None and exec_path.exists()

    async def install(self) -> bool:
        if shutil.which("npm") is None:
            logger.error("npm is not available. Please install Node.js and npm first.")
            return False

        self.install_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Installing {JSON_SERVER_PACKAGE} in {self.install_dir}...")
        proc = await asyncio.create_subprocess_exec(
            "npm",
            "install",
            JSON_SERVER_PACKAGE,
            "--prefix",
            str(self.install_dir),
            cwd=self.install_dir,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )

        _, stderr = await proc.communicate()

        if proc.returncode != 0:
            logger.error(f"Failed to install {JSON_SERVER_PACKAGE}: {stderr.decode()}")
            return False

        logger.info(f"{JSON_SERVER_PACKAGE} installed successfully")
        return True
