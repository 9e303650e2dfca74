"""
Result export.
"""

from tissue_dge.export.parquet_writer import ResultWriter, read_results

__all__ = ["ResultWriter", "read_results"]
