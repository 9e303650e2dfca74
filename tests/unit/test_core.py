"""Tests for configuration and path resolution."""

import pytest
from pathlib import Path


class TestContrastSpec:
    """Test contrast definitions."""

    def test_string_groups_become_tuples(self):
        from tissue_dge.core.config import ContrastSpec

        spec = ContrastSpec("LUAD", "E_vs_T", "Tumor", "E-TLS")
        assert spec.reference == ("Tumor",)
        assert spec.target == ("E-TLS",)
        assert spec.kind == "pairwise"

    def test_composite_kind(self):
        from tissue_dge.core.config import ContrastSpec

        spec = ContrastSpec("LUAD", "TLS_vs_T", ["Tumor"], ["E-TLS", "SFL-TLS"])
        assert spec.kind == "composite"


class TestConfig:
    """Test analysis configuration."""

    def test_defaults(self):
        from tissue_dge.core.config import Config

        config = Config()
        assert config.tumor_col == "TumorType"
        assert config.subtype_col == "TissueSub"
        assert config.outputs_dir == Path("../outputs")
        assert config.model.prior_count == pytest.approx(0.125)
        assert config.plots.boxplot.top_n == 25

    def test_missing_reference_raises(self):
        from tissue_dge.core.config import Config

        with pytest.raises(ValueError, match="No reference"):
            Config(tumor_types=["LUAD"], reference_by_type={})

    def test_contrast_dicts_converted(self):
        from tissue_dge.core.config import Config, ContrastSpec

        config = Config(
            tumor_types=["LUAD"],
            reference_by_type={"LUAD": "Tumor"},
            contrasts=[{"tumor_type": "LUAD", "name": "c", "reference": ["Tumor"],
                        "target": ["E-TLS"]}],
        )
        assert isinstance(config.contrasts[0], ContrastSpec)
        assert [c.name for c in config.contrasts_for("LUAD")] == ["c"]
        assert config.contrasts_for("LUSC") == []

    def test_from_dict_builds_nested(self):
        from tissue_dge.core.config import Config, PlotPolicy

        config = Config.from_dict({
            "tumor_types": ["LUAD"],
            "reference_by_type": {"LUAD": "Tumor"},
            "model": {"prior_df": 5.0, "grid_range": [-6, 6]},
            "plots": {"heatmap": {"contrast": "c", "top_n": 10}},
        })
        assert config.model.prior_df == 5.0
        assert config.model.grid_range == (-6, 6)
        assert isinstance(config.plots.heatmap, PlotPolicy)
        assert config.plots.heatmap.top_n == 10
        # Untouched views keep their defaults
        assert config.plots.volcano.fdr_threshold == pytest.approx(0.01)

    def test_yaml_round_trip(self, sample_config, temp_dir):
        from tissue_dge.core.config import Config

        path = temp_dir / "config.yaml"
        sample_config.to_yaml(path)
        loaded = Config.from_yaml(path)

        assert loaded.tumor_types == sample_config.tumor_types
        assert loaded.contrasts == sample_config.contrasts
        assert loaded.outputs_dir == sample_config.outputs_dir
        assert loaded.plots.formats == ["png"]
        assert loaded.model == sample_config.model

    def test_from_yaml_missing_file(self, temp_dir):
        from tissue_dge.core.config import Config

        with pytest.raises(FileNotFoundError):
            Config.from_yaml(temp_dir / "nope.yaml")

    def test_logging_options_not_in_config(self, sample_config):
        from tissue_dge.core.config import Config

        # Logging is set from CLI flags only
        d = sample_config.to_dict()
        assert "verbose" not in d and "log_file" not in d
        with pytest.raises(TypeError):
            Config.from_dict({**d, "verbose": True})

    def test_shipped_default_config_loads(self):
        from tissue_dge.core.config import Config

        path = Path(__file__).parents[2] / "config" / "default.yaml"
        config = Config.from_yaml(path)
        assert config.tumor_types == ["LUAD", "LUSC"]
        assert config.reference_by_type["LUAD"] == "Tumor"
        assert "Normal" in config.excluded_subtypes
        assert any(c.kind == "composite" for c in config.contrasts)


class TestOutputPaths:
    """Test stage artifact paths."""

    def test_default_layout(self):
        from tissue_dge.core.paths import OutputPaths

        paths = OutputPaths("../outputs")
        assert paths.input_artifact == Path("../outputs/01-sce.h5ad")
        assert paths.result_artifact == Path("../outputs/02-dge.parquet")
        assert paths.figures_dir == Path("../outputs/figures/02-dge")

    def test_from_config_and_ensure(self, sample_config, temp_dir):
        from tissue_dge.core.paths import OutputPaths

        paths = OutputPaths.from_config(sample_config)
        paths.ensure_output_dirs()
        assert paths.figures_dir.is_dir()
        assert paths.figures_dir == temp_dir / "figures" / "02-dge"
