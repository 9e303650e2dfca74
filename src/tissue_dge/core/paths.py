"""
Path resolution for stage artifacts.

Stage artifacts live in a shared outputs directory and are named with a
numeric stage prefix (``01-sce.h5ad``, ``02-dge.parquet``).
"""

from __future__ import annotations

import logging
from pathlib import Path

from tissue_dge.core.config import Config

logger = logging.getLogger(__name__)


class OutputPaths:
    """
    Centralized path resolver for one analysis stage.

    Example:
        >>> paths = OutputPaths.from_config(config)
        >>> paths.input_artifact
        PosixPath('../outputs/01-sce.h5ad')
    """

    def __init__(
        self,
        outputs_dir: Path | str,
        input_name: str = "01-sce.h5ad",
        output_name: str = "02-dge.parquet",
        figures_dir: Path | str | None = None,
    ):
        self.outputs_dir = Path(outputs_dir)
        self.input_name = input_name
        self.output_name = output_name
        if figures_dir is None:
            figures_dir = self.outputs_dir / "figures" / self.stage
        self.figures_dir = Path(figures_dir)

    @classmethod
    def from_config(cls, config: Config) -> "OutputPaths":
        return cls(
            outputs_dir=config.outputs_dir,
            input_name=config.input_name,
            output_name=config.output_name,
            figures_dir=config.figures_dir,
        )

    @property
    def stage(self) -> str:
        """Stage label of the result artifact (file name without suffix)."""
        return Path(self.output_name).stem

    @property
    def input_artifact(self) -> Path:
        """Upstream dataset path."""
        return self.outputs_dir / self.input_name

    @property
    def result_artifact(self) -> Path:
        """Result table path."""
        return self.outputs_dir / self.output_name

    def ensure_output_dirs(self, figures: bool = True) -> None:
        """Create output directories if they don't exist."""
        dirs = [self.outputs_dir]
        if figures:
            dirs.append(self.figures_dir)
        for path in dirs:
            path.mkdir(parents=True, exist_ok=True)
            logger.debug("Ensured output directory exists: %s", path)
