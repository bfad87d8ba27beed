"""Tests for the end-to-end analysis run and its text report."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import polars as pl
import pytest
from pytest_check import check

from ojtree.config import AnalysisSettings
from ojtree.exceptions import MissingValuesError
from ojtree.models import AnalysisReport
from ojtree.pipeline import format_report, format_summary, main, run_analysis


@pytest.fixture
def fast_settings(tmp_path: Path) -> AnalysisSettings:
    """Settings with a small CV grid and plots written under `tmp_path`."""
    return AnalysisSettings(
        cv_folds=5,
        tune_length=4,
        plots_dir=tmp_path / "plots",
        data_dir=tmp_path / "data",
        dataset_url="https://example.invalid/OJ.csv",
    )


@pytest.fixture
def report(oj_raw: pl.DataFrame, fast_settings: AnalysisSettings) -> AnalysisReport:
    """A full run over the synthetic frame."""
    return run_analysis(fast_settings, dataset=oj_raw)


class TestRunAnalysis:
    """Tests for `run_analysis`."""

    def test_partition_and_evaluations_are_consistent(self, report: AnalysisReport, oj_raw: pl.DataFrame) -> None:
        """Both models are scored on the whole holdout, and the subsets cover the dataset."""
        # Assert
        with check:
            assert report.train_rows + report.test_rows == oj_raw.height
        with check:
            assert report.initial.confusion_matrix.total == report.test_rows
        with check:
            assert report.tuned.confusion_matrix.total == report.test_rows
        with check:
            assert report.dataset.rows == oj_raw.height
        with check:
            assert sum(report.dataset.class_distribution.values()) == oj_raw.height
        with check:
            assert report.seed == 123

    def test_tuned_model_uses_selected_alpha(self, report: AnalysisReport) -> None:
        """The tuned evaluation is of the tree refitted with the selected pruning value."""
        # Assert
        with check:
            assert report.tuned.ccp_alpha == report.tuning.best_ccp_alpha
        with check:
            assert report.initial.ccp_alpha == 0.0
        with check:
            assert report.tuned.n_leaves <= report.initial.n_leaves
        with check:
            assert 1 <= len(report.tuning.rows) <= 4
        with check:
            assert report.tuning.n_folds == 5
        with check:
            assert report.accuracy_change == pytest.approx(
                report.tuned.metrics.accuracy - report.initial.metrics.accuracy
            )

    def test_rules_match_leaf_counts(self, report: AnalysisReport) -> None:
        """There is one rendered rule per leaf of each evaluated tree."""
        with check:
            assert len(report.initial_rules) == report.initial.n_leaves
        with check:
            assert len(report.tuned_rules) == report.tuned.n_leaves
        with check:
            assert all(rule.startswith("IF ") for rule in report.tuned_rules)

    def test_plots_are_written(self, report: AnalysisReport, fast_settings: AnalysisSettings) -> None:
        """Every chart is saved under the plots directory."""
        # Arrange
        expected_names = {
            "label_distribution.png",
            "price_scatter.png",
            "density_PriceCH.png",
            "density_PriceMM.png",
            "tree_initial.png",
            "importance_initial.png",
            "confusion_matrix_initial.png",
            "tuning_curve.png",
            "tree_tuned.png",
            "importance_tuned.png",
            "confusion_matrix_tuned.png",
        }

        # Assert
        with check:
            assert {Path(path).name for path in report.plots} == expected_names
        with check:
            assert all(Path(path).parent == fast_settings.plots_dir for path in report.plots)
        with check:
            assert all(Path(path).exists() for path in report.plots)

    def test_save_plots_disabled(self, oj_raw: pl.DataFrame, fast_settings: AnalysisSettings) -> None:
        """With plotting off nothing is written and no paths are reported."""
        # Arrange
        settings = fast_settings.model_copy(update={"save_plots": False})

        # Act
        result = run_analysis(settings, dataset=oj_raw)

        # Assert
        with check:
            assert result.plots == []
        with check:
            assert not fast_settings.plots_dir.exists()

    def test_same_seed_reproduces_report(self, oj_raw: pl.DataFrame, fast_settings: AnalysisSettings) -> None:
        """Two runs with the same seed give the same partition, counts and selection."""
        # Arrange
        settings = fast_settings.model_copy(update={"save_plots": False})

        # Act
        first = run_analysis(settings, dataset=oj_raw)
        second = run_analysis(settings, dataset=oj_raw)

        # Assert
        with check:
            assert first.initial.confusion_matrix == second.initial.confusion_matrix
        with check:
            assert first.tuning == second.tuning
        with check:
            assert first.tuned_rules == second.tuned_rules

    def test_missing_value_stops_the_run(self, oj_raw: pl.DataFrame, fast_settings: AnalysisSettings) -> None:
        """A null anywhere in the data fails before partitioning."""
        # Arrange
        df = oj_raw.with_columns(
            pl.when(pl.int_range(pl.len()) == 5).then(None).otherwise(pl.col("PriceCH")).alias("PriceCH")
        )

        # Act/Assert
        with pytest.raises(MissingValuesError) as exc_info:
            run_analysis(fast_settings, dataset=df)

        with check:
            assert exc_info.value.per_column == {"PriceCH": 1}
        with check:
            assert not fast_settings.plots_dir.exists()

    def test_loads_dataset_from_cache(
        self,
        oj_raw: pl.DataFrame,
        fast_settings: AnalysisSettings,
    ) -> None:
        """Without an explicit frame the dataset is read from the data directory."""
        # Arrange
        fast_settings.data_dir.mkdir(parents=True)
        oj_raw.write_csv(fast_settings.data_dir / "OJ.csv")
        settings = fast_settings.model_copy(update={"save_plots": False})

        # Act
        result = run_analysis(settings)

        # Assert
        assert result.dataset.rows == oj_raw.height


class TestFormatting:
    """Tests for `format_report` and `format_summary`."""

    def test_report_contains_every_section(self, report: AnalysisReport) -> None:
        """The printed report has the summary, both evaluations, the tuning table and the rules."""
        # Act
        text = format_report(report)

        # Assert
        for fragment in (
            f"Dataset: {report.dataset.rows} rows x 18 columns",
            f"Partition (seed=123): {report.train_rows} training rows, {report.test_rows} holdout rows",
            "Confusion Matrix and Statistics: initial",
            "Confusion Matrix and Statistics: tuned",
            "Initial Accuracy: ",
            "Final Accuracy: ",
            "Cross-validated tuning (5 folds):",
            "| ccp_alpha",
            "Selected ccp_alpha: ",
            "Tuned tree rules:",
            "Saved plots:",
        ):
            with check:
                assert fragment in text

    def test_summary_lists_classes_largest_first(self, report: AnalysisReport) -> None:
        """The class distribution line lists each level with its count."""
        # Act
        text = format_summary(report.dataset)

        # Assert
        expected = ", ".join(f"{level}={count}" for level, count in report.dataset.class_distribution.items())
        with check:
            assert f"Class distribution: {expected}" in text
        with check:
            assert "Missing values: 0" in text


class TestMain:
    """Tests for the command-line entry point."""

    def test_main_prints_report(
        self,
        monkeypatch: pytest.MonkeyPatch,
        capsys: pytest.CaptureFixture[str],
        tmp_path: Path,
        oj_frame_factory: Callable[..., pl.DataFrame],
    ) -> None:
        """`main` reads settings from the environment, runs the analysis and prints the report."""
        # Arrange
        data_dir = tmp_path / "cache"
        data_dir.mkdir()
        oj_frame_factory(n_rows=200, seed=3).write_csv(data_dir / "OJ.csv")
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("OJTREE_DATA_DIR", str(data_dir))
        monkeypatch.setenv("OJTREE_CV_FOLDS", "3")
        monkeypatch.setenv("OJTREE_TUNE_LENGTH", "3")
        monkeypatch.setenv("OJTREE_SAVE_PLOTS", "false")
        monkeypatch.setenv("OJTREE_LOG_LEVEL", "WARNING")

        # Act
        main()

        # Assert
        out = capsys.readouterr().out
        with check:
            assert "Dataset: 200 rows x 18 columns" in out
        with check:
            assert "Final Accuracy: " in out
        with check:
            assert "Saved plots:" not in out
