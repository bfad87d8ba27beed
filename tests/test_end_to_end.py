"""Checks against the published orange-juice dataset.

These run only when `data/OJ.csv` exists at the repository root, e.g. after
one `python -m ojtree` run has downloaded it.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pytest_check import check

from ojtree.config import AnalysisSettings
from ojtree.dataset import describe_dataset, load_dataset, prepare_dataset
from ojtree.partition import stratified_split
from ojtree.pipeline import run_analysis

DATA_DIR = Path(__file__).resolve().parents[1] / "data"

pytestmark = [
    pytest.mark.dataset,
    pytest.mark.skipif(not (DATA_DIR / "OJ.csv").exists(), reason="OJ.csv is not cached under data/"),
]


@pytest.fixture
def settings(tmp_path: Path) -> AnalysisSettings:
    return AnalysisSettings(data_dir=DATA_DIR, plots_dir=tmp_path / "plots", save_plots=False)


def test_dataset_shape_and_balance(settings: AnalysisSettings) -> None:
    """The published data has 1070 complete rows, 653 CH and 417 MM."""
    # Act
    summary = describe_dataset(prepare_dataset(load_dataset(settings=settings)), "Purchase")

    # Assert
    with check:
        assert (summary.rows, summary.columns) == (1070, 18)
    with check:
        assert summary.missing_values == 0
    with check:
        assert summary.class_distribution == {"CH": 653, "MM": 417}


def test_partition_sizes(settings: AnalysisSettings) -> None:
    """The seeded 70/30 split gives 750 training and 320 holdout rows."""
    # Arrange
    df = prepare_dataset(load_dataset(settings=settings))

    # Act
    partition = stratified_split(df["Purchase"], train_fraction=0.7, seed=123)

    # Assert
    with check:
        assert len(partition.train_indices) == 750
    with check:
        assert len(partition.test_indices) == 320


def test_full_run(settings: AnalysisSettings) -> None:
    """Both holdout matrices cover the 320 rows, accuracies are plausible and tuning never grows the tree."""
    # Act
    report = run_analysis(settings)

    # Assert
    for evaluation in (report.initial, report.tuned):
        with check:
            assert evaluation.confusion_matrix.total == 320
        with check:
            assert evaluation.metrics.accuracy is not None and 0.7 < evaluation.metrics.accuracy < 0.9
    with check:
        assert "LoyalCH" in report.tuned_importance
    with check:
        assert report.tuned.n_leaves <= report.initial.n_leaves
