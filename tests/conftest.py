"""Pytest configuration and fixtures."""

import matplotlib

matplotlib.use("Agg")

import pytest
import numpy as np
import pandas as pd
from pathlib import Path
import tempfile


TUMOR_TYPES = ["LUAD", "LUSC"]
SUBTYPES = ["Tumor", "E-TLS", "SFL-TLS"]
N_DE = 10


def simulate_adata(n_per_group: int = 4, n_genes: int = 150, dispersion: float = 0.1):
    """Samples x genes AnnData with NB counts, logcounts in X and an excluded subtype.

    The first ``N_DE`` genes are 4-fold up in E-TLS samples of every tumor type.
    """
    import anndata as ad

    np.random.seed(42)
    rows = []
    for tumor in TUMOR_TYPES:
        for subtype in SUBTYPES + ["Normal"]:
            n = 2 if subtype == "Normal" else n_per_group
            rows += [(tumor, subtype)] * n

    obs = pd.DataFrame(rows, columns=["TumorType", "TissueSub"])
    obs.index = [f"sample_{i}" for i in range(len(obs))]

    base = np.exp(np.random.normal(4.0, 1.0, n_genes))
    fold = np.ones((len(obs), n_genes))
    fold[(obs["TissueSub"] == "E-TLS").values, :N_DE] = 4.0
    lib = np.random.uniform(0.8, 1.2, len(obs))
    mu = base[None, :] * fold * lib[:, None]

    r = 1.0 / dispersion
    counts = np.random.negative_binomial(r, r / (r + mu)).astype(np.float64)
    lib_size = counts.sum(axis=1, keepdims=True)
    logcounts = np.log2(counts / lib_size * np.median(lib_size) + 1)

    var = pd.DataFrame(index=[f"gene_{i}" for i in range(n_genes)])
    adata = ad.AnnData(X=logcounts, obs=obs, var=var)
    adata.layers["counts"] = counts
    return adata


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_adata():
    """Simulated two-tumor-type experiment."""
    return simulate_adata()


@pytest.fixture
def sample_dataset(sample_adata):
    """ExpressionDataset built from the simulated experiment."""
    from tissue_dge.ingest import from_anndata

    return from_anndata(sample_adata)


@pytest.fixture
def mock_h5ad(temp_dir, sample_adata):
    """Simulated experiment written as the upstream stage artifact."""
    path = temp_dir / "01-sce.h5ad"
    sample_adata.write_h5ad(path)
    return path


def make_config(outputs_dir, **overrides):
    from tissue_dge.core.config import Config, PlotConfig

    d = {
        "tumor_types": ["LUAD", "LUSC"],
        "reference_by_type": {"LUAD": "Tumor", "LUSC": "Tumor"},
        "excluded_subtypes": ["Normal"],
        "contrasts": [
            {"tumor_type": "LUAD", "name": "E-TLS_vs_Tumor",
             "reference": ["Tumor"], "target": ["E-TLS"]},
            {"tumor_type": "LUAD", "name": "TLS_vs_Tumor",
             "reference": ["Tumor"], "target": ["E-TLS", "SFL-TLS"]},
            {"tumor_type": "LUSC", "name": "E-TLS_vs_Tumor",
             "reference": ["Tumor"], "target": ["E-TLS"]},
        ],
        "outputs_dir": outputs_dir,
        "plots": PlotConfig(formats=["png"], dpi=40),
    }
    d.update(overrides)
    return Config(**d)


@pytest.fixture
def sample_config(temp_dir):
    """Analysis config pointing at the temporary outputs directory."""
    return make_config(temp_dir)
