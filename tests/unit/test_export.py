"""Tests for the Parquet result writer."""

import pytest
import numpy as np
import pandas as pd


def _results():
    np.random.seed(42)
    n = 20
    p = np.sort(np.random.uniform(0, 1, n))
    return pd.DataFrame({
        "gene": [f"gene_{i}" for i in range(n)],
        "logFC": np.random.normal(0, 2, n),
        "logCPM": np.random.uniform(0, 10, n),
        "F": np.random.exponential(5, n),
        "PValue": p,
        "FDR": np.minimum(p * 2, 1.0),
        "contrast": ["E-TLS_vs_Tumor"] * n,
        "TumorType": ["LUAD"] * n,
    })


class TestResultWriter:
    """Test result persistence."""

    def test_round_trip(self, temp_dir):
        from tissue_dge.export import ResultWriter, read_results

        results = _results()
        path = ResultWriter(temp_dir).write_results(results, "02-dge.parquet")

        assert path == temp_dir / "02-dge.parquet"
        back = read_results(path)
        assert list(back.columns) == list(results.columns)
        pd.testing.assert_frame_equal(back, results, check_dtype=False)

    def test_no_temporary_files_left(self, temp_dir):
        from tissue_dge.export import ResultWriter

        ResultWriter(temp_dir).write_results(_results(), "02-dge.parquet")
        assert sorted(p.name for p in temp_dir.iterdir()) == ["02-dge.parquet"]

    def test_overwrite_replaces(self, temp_dir):
        from tissue_dge.export import ResultWriter, read_results

        writer = ResultWriter(temp_dir)
        writer.write_results(_results(), "02-dge.parquet")
        writer.write_results(_results().head(5), "02-dge.parquet")
        assert len(read_results(temp_dir / "02-dge.parquet")) == 5

    def test_failed_write_keeps_previous_file(self, temp_dir, monkeypatch):
        import pyarrow.parquet as pq
        from tissue_dge.export import ResultWriter, read_results

        writer = ResultWriter(temp_dir)
        writer.write_results(_results(), "02-dge.parquet")

        def broken(*args, **kwargs):
            raise OSError("disk full")

        monkeypatch.setattr(pq, "write_table", broken)
        with pytest.raises(OSError):
            writer.write_results(_results().head(3), "02-dge.parquet")

        assert len(read_results(temp_dir / "02-dge.parquet")) == 20
        assert sorted(p.name for p in temp_dir.iterdir()) == ["02-dge.parquet"]

    def test_creates_output_dir(self, temp_dir):
        from tissue_dge.export import ResultWriter

        out = temp_dir / "nested" / "outputs"
        ResultWriter(out).write_results(_results(), "r.parquet")
        assert (out / "r.parquet").exists()

    def test_read_missing(self, temp_dir):
        from tissue_dge.export import read_results

        with pytest.raises(FileNotFoundError):
            read_results(temp_dir / "missing.parquet")
