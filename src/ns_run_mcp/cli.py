"""NativeScript CLI accessor.

Resolves the executable (``NSR_TNS_PATH`` overrides the default ``tns``),
reads its version once, and builds argv for run commands.
"""

from __future__ import annotations

import functools
import logging
import subprocess
from pathlib import Path

from .config import DEFAULT_TNS_PATH
from .version_gate import DEFAULT_MAX_CLI_VERSION, DEFAULT_MIN_CLI_VERSION, VersionInfo, evaluate

__all__ = ["NativeScriptCli"]

logger = logging.getLogger(__name__)

# `tns --version` may check npm for updates before answering
VERSION_QUERY_TIMEOUT = 30.0


class NativeScriptCli:
    """Handle to the NativeScript command-line tool.

    Attributes:
        path: Executable path or name looked up in PATH
        min_version: Lowest supported CLI version
        max_version: Highest known-compatible CLI version
    """

    def __init__(
        self,
        path: str = DEFAULT_TNS_PATH,
        min_version: str = DEFAULT_MIN_CLI_VERSION,
        max_version: str = DEFAULT_MAX_CLI_VERSION,
        version_timeout: float = VERSION_QUERY_TIMEOUT,
    ) -> None:
        self.path = path
        self.min_version = min_version
        self.max_version = max_version
        self._version_timeout = version_timeout

    def query_version(self) -> str | None:
        """Run ``<cli> --version`` synchronously.

        Returns:
            Raw output, or None when the CLI cannot be executed
        """
        try:
            completed = subprocess.run(
                [self.path, "--version"],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self._version_timeout,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.info(f"NativeScript CLI not available at {self.path!r}: {e}")
            return None

        if completed.returncode != 0:
            logger.info(
                f"'{self.path} --version' exited with {completed.returncode}: "
                f"{completed.stderr.strip()[:200]}"
            )
            return None
        return completed.stdout.strip() or None

    @functools.cached_property
    def version(self) -> VersionInfo:
        """Version gate verdict, computed on first access."""
        raw = self.query_version()
        try:
            info = evaluate(raw, self.min_version, self.max_version)
        except ValueError as e:
            logger.warning(f"{e}, using v{DEFAULT_MIN_CLI_VERSION} - v{DEFAULT_MAX_CLI_VERSION}")
            info = evaluate(raw)
        logger.info(
            f"NativeScript CLI version: {info.display_version} "
            f"(compatible={info.is_compatible})"
        )
        return info

    def run_argv(self, platform: str, project_path: Path) -> list[str]:
        """Build argv for ``tns run <platform> --path <project>``."""
        return [self.path, "run", platform.lower(), "--path", str(project_path)]

    def __repr__(self) -> str:
        return f"NativeScriptCli(path={self.path!r})"
