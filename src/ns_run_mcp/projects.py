"""Run targets: one project-like object per platform.

A Project knows its platform name and how to start ``tns run`` for it.
It checks the project directory before spawning anything, so a missing
workspace never launches a process.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from .cli import NativeScriptCli
from .errors import PreconditionError
from .runtime import ProcessRunner, ProcessSpec, RunHandle

__all__ = ["Project", "IosProject", "AndroidProject"]

logger = logging.getLogger(__name__)


class Project(ABC):
    """Platform run capability."""

    def __init__(
        self,
        project_path: Path | None,
        cli: NativeScriptCli,
        runner: ProcessRunner,
    ) -> None:
        self._project_path = Path(project_path) if project_path is not None else None
        self._cli = cli
        self._runner = runner

    @property
    def project_path(self) -> Path | None:
        return self._project_path

    @abstractmethod
    def platform_name(self) -> str:
        """Human readable platform name ("iOS", "Android")."""
        ...

    def build_spec(self) -> ProcessSpec:
        """Describe the run process.

        Raises:
            PreconditionError: If there is no usable project directory
        """
        path = self._project_path
        if path is None:
            raise PreconditionError("No workspace opened.")
        if not path.is_dir():
            raise PreconditionError(f"Project directory does not exist: {path}")
        return ProcessSpec(argv=self._cli.run_argv(self.platform_name(), path), cwd=path)

    async def run(self) -> RunHandle:
        """Start ``tns run`` for this platform.

        Raises:
            PreconditionError: Before spawning, if the project directory is missing
            SpawnError: If the process could not be created
        """
        spec = self.build_spec()
        logger.info(f"Starting run on {self.platform_name()}: {' '.join(spec.argv)}")
        return await self._runner.spawn(spec)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._project_path})"


class IosProject(Project):
    def platform_name(self) -> str:
        return "iOS"


class AndroidProject(Project):
    def platform_name(self) -> str:
        return "Android"

