"""Exception types for gltf-optimizer."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from gltf_optimizer.stages import StageDescriptor


class OptimizerError(Exception):
    """Base class for all optimizer errors."""


class ConfigurationError(OptimizerError, ValueError):
    """Invalid configuration value, raised before any work begins."""


class StageError(OptimizerError):
    """A transform stage rejected its input or parameters."""

    def __init__(
        self,
        message: str,
        stage: Optional["StageDescriptor"] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.stage = stage
        self.cause = cause

    def __str__(self) -> str:
        message = super().__str__()
        if self.stage is None:
            return message
        return f"stage {self.stage.describe()} failed: {message}"


class PipelineCancelled(OptimizerError):
    """The run was cancelled between two stages."""


class DocumentIOError(OptimizerError, OSError):
    """Reading or writing a scene document failed."""

    def __init__(self, message: str, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path

    def __str__(self) -> str:
        message = self.args[0] if self.args else ""
        if self.path is None:
            return message
        return f"{self.path}: {message}"


class PartialOutputError(OptimizerError):
    """One or more requested output formats failed to write.

    Formats that were written successfully are kept and listed in
    ``written``; ``failures`` maps each failed format to its exception.
    """

    def __init__(self, written: list[Path], failures: dict[str, BaseException]) -> None:
        self.written = list(written)
        self.failures = dict(failures)
        detail = ", ".join(f"{fmt}: {exc}" for fmt, exc in self.failures.items())
        super().__init__(
            f"{len(self.failures)} output format(s) failed ({detail}); "
            f"{len(self.written)} written"
        )
