"""
Parquet writer for the differential expression result table.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Union

import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq

logger = logging.getLogger(__name__)


class ResultWriter:
    """Writes result tables to Parquet.

    Files are written to a temporary file in the output directory and
    moved into place, so readers never see a partial artifact.
    """

    def __init__(
        self,
        output_dir: Union[Path, str],
        compression: str = "snappy",
        row_group_size: int = 100_000,
    ):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.compression = compression
        self.row_group_size = row_group_size

    def write_results(
        self,
        results: pd.DataFrame,
        filename: str = "02-dge.parquet",
    ) -> Path:
        """Write a flat result table.

        Parameters
        ----------
        results : pd.DataFrame
            Result table (index is discarded)
        filename : str
            Output filename inside ``output_dir``

        Returns
        -------
        Path
            Path to the written file
        """
        path = self.output_dir / filename
        table = pa.Table.from_pandas(results.reset_index(drop=True), preserve_index=False)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{filename}.", suffix=".tmp", dir=self.output_dir
        )
        os.close(fd)
        try:
            pq.write_table(
                table,
                tmp_name,
                compression=self.compression,
                row_group_size=self.row_group_size,
            )
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        logger.info("Wrote %d rows to %s", len(results), path)
        return path


def read_results(path: Union[Path, str]) -> pd.DataFrame:
    """Load a result table written by :class:`ResultWriter`."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Result table not found: {path}")
    return pq.read_table(path).to_pandas()
