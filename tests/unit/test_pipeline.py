"""End-to-end tests for the pipeline."""

import pytest
import numpy as np
import pandas as pd


@pytest.mark.slow
class TestDGEPipeline:
    """Test the full stage run."""

    def test_run_writes_results_and_figures(self, sample_config, mock_h5ad):
        from tissue_dge.differential import RESULT_COLUMNS
        from tissue_dge.export import read_results
        from tissue_dge.pipeline import DGEPipeline

        result = DGEPipeline(sample_config).run()

        assert result.output_path == sample_config.outputs_dir / "02-dge.parquet"
        saved = read_results(result.output_path)
        assert list(saved.columns) == RESULT_COLUMNS
        assert len(saved) == 3 * 150
        assert list(saved["TumorType"].unique()) == ["LUAD", "LUSC"]

        figures_dir = sample_config.outputs_dir / "figures" / "02-dge"
        names = {p.name for p in result.figure_paths}
        assert "volcano_E-TLS_vs_Tumor.png" in names
        assert all(p.parent == figures_dir and p.exists() for p in result.figure_paths)

    def test_excluded_subtypes_never_modelled(self, sample_config, sample_dataset):
        from tissue_dge.pipeline import DGEPipeline

        result = DGEPipeline(sample_config).analyze(sample_dataset)

        for stratum in result.strata.values():
            assert "Normal" not in stratum.design.levels
            assert "Normal" not in set(stratum.dataset.subtype.astype(str))
        assert "Normal" not in set(result.reshaped.long["TissueSub"].astype(str))
        assert result.fits["LUAD"].counts.shape[1] == 12

    def test_idempotent(self, sample_config, sample_dataset):
        from tissue_dge.export import read_results
        from tissue_dge.pipeline import DGEPipeline

        pipeline = DGEPipeline(sample_config)
        first = read_results(pipeline.run(dataset=sample_dataset, figures=False).output_path)
        second = read_results(pipeline.run(dataset=sample_dataset, figures=False).output_path)

        pd.testing.assert_frame_equal(first, second)

    def test_summary_counts_all_genes(self, sample_config, sample_dataset):
        from tissue_dge.pipeline import DGEPipeline

        result = DGEPipeline(sample_config).analyze(sample_dataset)

        assert list(result.summary.index) == [
            ("LUAD", "E-TLS_vs_Tumor"), ("LUAD", "TLS_vs_Tumor"), ("LUSC", "E-TLS_vs_Tumor"),
        ]
        np.testing.assert_array_equal(result.summary.sum(axis=1).values, [150, 150, 150])
        assert result.summary.loc[("LUAD", "E-TLS_vs_Tumor"), "Up"] >= 5

    def test_figure_failure_leaves_no_artifact(self, sample_config, sample_dataset, monkeypatch):
        import tissue_dge.pipeline as pipeline_module
        from tissue_dge.pipeline import DGEPipeline

        def broken(*args, **kwargs):
            raise RuntimeError("drawing failed")

        monkeypatch.setattr(pipeline_module, "plot_volcano", broken)
        with pytest.raises(RuntimeError):
            DGEPipeline(sample_config).run(dataset=sample_dataset, figures=True)

        assert not (sample_config.outputs_dir / "02-dge.parquet").exists()

    def test_missing_input(self, sample_config):
        from tissue_dge.pipeline import DGEPipeline

        with pytest.raises(FileNotFoundError):
            DGEPipeline(sample_config).run()

    def test_contrast_on_absent_level(self, sample_config, sample_dataset):
        from tissue_dge.core.config import ContrastSpec
        from tissue_dge.pipeline import DGEPipeline

        sample_config.contrasts.append(ContrastSpec("LUSC", "PFL_vs_T", "Tumor", "PFL-TLS"))
        with pytest.raises(KeyError, match="PFL-TLS"):
            DGEPipeline(sample_config).analyze(sample_dataset)


class TestCreatePipeline:
    """Test the factory."""

    def test_from_yaml(self, sample_config, temp_dir):
        from tissue_dge.pipeline import create_pipeline

        path = temp_dir / "config.yaml"
        sample_config.to_yaml(path)
        pipeline = create_pipeline(path, outputs_dir=temp_dir / "other")

        assert pipeline.config.tumor_types == ["LUAD", "LUSC"]
        assert pipeline.paths.result_artifact == temp_dir / "other" / "02-dge.parquet"
