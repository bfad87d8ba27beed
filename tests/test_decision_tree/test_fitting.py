"""Tests for tree fitting, prediction, pruning path, rules and feature importance."""

from __future__ import annotations

import numpy as np
import polars as pl
import pytest
from pytest_check import check

from ojtree.config import TreeSettings
from ojtree.decision_tree.fitting import (
    compute_feature_importance,
    extract_rules,
    feature_importance_frame,
    fit_tree,
    make_estimator,
    prepare_training_data,
    pruning_path_alphas,
)
from ojtree.exceptions import ColumnsNotFoundError, DegenerateDataError


def _make_threshold_data() -> pl.DataFrame:
    """Purchase is CH exactly when LoyalCH exceeds 0.5; Store7 is noise."""
    loyal = np.linspace(0.0, 1.0, 80)
    return pl.DataFrame({
        "LoyalCH": loyal,
        "Store7": pl.Series(["No", "Yes"] * 40, dtype=pl.Enum(["No", "Yes"])),
        "Purchase": pl.Series(np.where(loyal > 0.5, "CH", "MM").tolist(), dtype=pl.Enum(["CH", "MM"])),
    })


class TestFitTree:
    """Tests for `fit_tree` and `FittedTree`."""

    def test_learns_single_threshold(self) -> None:
        """A separable label is fitted with one split on the informative predictor."""
        # Arrange
        df = _make_threshold_data()

        # Act
        fitted = fit_tree(df, label="Purchase", random_state=0)

        # Assert
        with check:
            assert fitted.leaf_count == 2
        with check:
            assert fitted.node_count == 3
        with check:
            assert fitted.depth == 1
        with check:
            assert fitted.feature_names == ["LoyalCH", "Store7"]
        with check:
            assert fitted.classes == ("CH", "MM")
        with check:
            assert fitted.predict(df).equals(df["Purchase"])

    def test_predictions_are_declared_classes(self, oj_prepared: pl.DataFrame) -> None:
        """Predictions are typed as the label Enum and hold only declared classes."""
        # Arrange
        fitted = fit_tree(oj_prepared, label="Purchase", random_state=123)

        # Act
        predicted = fitted.predict(oj_prepared)

        # Assert
        with check:
            assert predicted.dtype == pl.Enum(["CH", "MM"])
        with check:
            assert predicted.name == "Purchase"
        with check:
            assert predicted.len() == oj_prepared.height
        with check:
            assert set(predicted.cast(pl.String).unique().to_list()) <= {"CH", "MM"}

    def test_respects_size_controls(self, oj_prepared: pl.DataFrame) -> None:
        """No leaf holds fewer rows than `min_samples_leaf` and depth stays within `max_depth`."""
        # Arrange
        settings = TreeSettings(min_samples_split=20, min_samples_leaf=7, max_depth=3)

        # Act
        fitted = fit_tree(oj_prepared, label="Purchase", tree_settings=settings, random_state=1)

        # Assert
        sklearn_tree = fitted.estimator.tree_
        leaf_mask = sklearn_tree.children_left == sklearn_tree.children_right
        with check:
            assert sklearn_tree.n_node_samples[leaf_mask].min() >= 7
        with check:
            assert fitted.depth <= 3

    def test_larger_alpha_never_grows_tree(self, oj_prepared: pl.DataFrame) -> None:
        """Node counts are non-increasing along an ascending grid of pruning values."""
        # Arrange
        alphas = [0.0, 0.001, 0.005, 0.01, 0.02, 0.05, 0.5]

        # Act
        node_counts = [
            fit_tree(oj_prepared, label="Purchase", ccp_alpha=alpha, random_state=123).node_count for alpha in alphas
        ]

        # Assert
        with check:
            assert all(a >= b for a, b in zip(node_counts, node_counts[1:], strict=False))
        with check:
            assert node_counts[-1] == 1

    def test_negative_alpha_raises(self, oj_prepared: pl.DataFrame) -> None:
        """A negative pruning value raises ValueError."""
        # Act/Assert
        with pytest.raises(ValueError, match="ccp_alpha"):
            fit_tree(oj_prepared, label="Purchase", ccp_alpha=-0.01)

    def test_empty_training_frame_raises(self, oj_prepared: pl.DataFrame) -> None:
        """An empty training subset raises DegenerateDataError."""
        # Act/Assert
        with pytest.raises(DegenerateDataError):
            fit_tree(oj_prepared.head(0), label="Purchase")

    def test_single_class_training_frame_raises(self, oj_prepared: pl.DataFrame) -> None:
        """A training subset with one observed class raises DegenerateDataError."""
        # Arrange
        ch_only = oj_prepared.filter(pl.col("Purchase") == "CH")

        # Act/Assert
        with pytest.raises(DegenerateDataError) as exc_info:
            fit_tree(ch_only, label="Purchase")

        with check:
            assert exc_info.value.observed_classes == ["CH"]

    def test_missing_label_raises(self, oj_prepared: pl.DataFrame) -> None:
        """An absent label column raises ColumnsNotFoundError."""
        # Act/Assert
        with pytest.raises(ColumnsNotFoundError):
            fit_tree(oj_prepared.drop("Purchase"), label="Purchase")

    def test_explicit_features_subset(self, oj_prepared: pl.DataFrame) -> None:
        """Only the requested predictors are used."""
        # Act
        fitted = fit_tree(oj_prepared, label="Purchase", features=["LoyalCH", "PriceDiff"], random_state=0)

        # Assert
        assert fitted.feature_names == ["LoyalCH", "PriceDiff"]

    def test_no_usable_predictor_raises(self) -> None:
        """A frame whose only predictor cannot be encoded raises ValueError."""
        # Arrange
        df = pl.DataFrame({
            "Visits": [[1], [2], [3], [4]],
            "Purchase": pl.Series(["CH", "MM", "CH", "MM"], dtype=pl.Enum(["CH", "MM"])),
        })

        # Act/Assert
        with pytest.raises(ValueError, match="No valid predictor"):
            fit_tree(df, label="Purchase")


class TestPruningPathAlphas:
    """Tests for `pruning_path_alphas`."""

    def test_alphas_are_sorted_distinct_and_non_negative(self, oj_prepared: pl.DataFrame) -> None:
        """The path is ascending, distinct and starts at zero."""
        # Act
        alphas = pruning_path_alphas(oj_prepared, label="Purchase", random_state=123)

        # Assert
        with check:
            assert alphas[0] == 0.0
        with check:
            assert np.all(np.diff(alphas) > 0)
        with check:
            assert len(alphas) >= 2

    def test_last_alpha_prunes_to_root(self, oj_prepared: pl.DataFrame) -> None:
        """Refitting at the largest alpha leaves a single leaf."""
        # Arrange
        alphas = pruning_path_alphas(oj_prepared, label="Purchase", random_state=123)

        # Act
        fitted = fit_tree(oj_prepared, label="Purchase", ccp_alpha=float(alphas[-1]), random_state=123)

        # Assert
        assert fitted.leaf_count == 1


class TestExtractRules:
    """Tests for `extract_rules`."""

    def test_one_rule_per_leaf_covering_training_rows(self, oj_prepared: pl.DataFrame) -> None:
        """There is one rule per leaf and their sample counts add up to the training size."""
        # Arrange
        fitted = fit_tree(oj_prepared, label="Purchase", random_state=123)

        # Act
        rules = extract_rules(fitted)

        # Assert
        with check:
            assert len(rules) == fitted.leaf_count
        with check:
            assert sum(rule.samples for rule in rules) == oj_prepared.height
        with check:
            assert {rule.prediction for rule in rules} <= {"CH", "MM"}

    def test_threshold_rules(self) -> None:
        """The separable data gives a `<=` rule for MM and a `>` rule for CH."""
        # Arrange
        fitted = fit_tree(_make_threshold_data(), label="Purchase", random_state=0)

        # Act
        rules = extract_rules(fitted)

        # Assert
        with check:
            assert [rule.prediction for rule in rules] == ["MM", "CH"]
        with check:
            assert [rule.predicates[0].operator for rule in rules] == ["<=", ">"]
        with check:
            assert all(rule.confidence == 1.0 for rule in rules)

    def test_rules_reproduce_predictions(self, oj_prepared: pl.DataFrame) -> None:
        """Every row matches exactly one rule, whose prediction equals the tree's."""
        # Arrange
        fitted = fit_tree(oj_prepared, label="Purchase", ccp_alpha=0.005, random_state=123)
        rules = extract_rules(fitted)
        rows = oj_prepared.with_columns(pl.col("Store7").cast(pl.String)).head(50).to_dicts()

        # Act
        predicted = fitted.predict(oj_prepared.head(50)).cast(pl.String).to_list()

        # Assert
        for row, expected in zip(rows, predicted, strict=True):
            matching = [rule for rule in rules if rule.matches(row)]
            with check:
                assert len(matching) == 1
            with check:
                assert matching[0].prediction == expected

    def test_single_leaf_tree_gives_unconditional_rule(self, oj_prepared: pl.DataFrame) -> None:
        """A fully pruned tree yields one rule without predicates."""
        # Arrange
        fitted = fit_tree(oj_prepared, label="Purchase", ccp_alpha=1.0)

        # Act
        rules = extract_rules(fitted)

        # Assert
        with check:
            assert len(rules) == 1
        with check:
            assert rules[0].predicates == []


class TestFeatureImportance:
    """Tests for `compute_feature_importance` and `feature_importance_frame`."""

    def test_importance_sums_to_one_and_is_sorted(self, oj_prepared: pl.DataFrame) -> None:
        """Normalised importances are positive, sorted descending and sum to 1."""
        # Arrange
        fitted = fit_tree(oj_prepared, label="Purchase", random_state=123)

        # Act
        importance = compute_feature_importance(fitted)

        # Assert
        values = list(importance.values())
        with check:
            assert sum(values) == pytest.approx(1.0, abs=1e-4)
        with check:
            assert values == sorted(values, reverse=True)
        with check:
            assert all(value > 0 for value in values)
        with check:
            assert "LoyalCH" in importance

    def test_single_leaf_tree_has_no_importance(self, oj_prepared: pl.DataFrame) -> None:
        """A single-leaf tree yields an empty mapping."""
        # Arrange
        fitted = fit_tree(oj_prepared, label="Purchase", ccp_alpha=1.0)

        # Act/Assert
        assert compute_feature_importance(fitted) == {}

    def test_frame_lists_every_feature(self, oj_prepared: pl.DataFrame) -> None:
        """The raw frame keeps zero-importance predictors and is sorted descending."""
        # Arrange
        fitted = fit_tree(oj_prepared, label="Purchase", random_state=123)

        # Act
        frame = feature_importance_frame(fitted)

        # Assert
        with check:
            assert frame.columns == ["feature", "importance"]
        with check:
            assert sorted(frame["feature"].to_list()) == sorted(fitted.feature_names)
        with check:
            assert frame["importance"].to_list() == sorted(frame["importance"].to_list(), reverse=True)
        with check:
            assert frame["importance"].min() >= 0.0


class TestEstimatorHelpers:
    """Tests for `make_estimator` and `prepare_training_data`."""

    def test_make_estimator_applies_settings(self) -> None:
        """The estimator carries the size controls and pruning value."""
        # Arrange
        settings = TreeSettings(min_samples_split=30, min_samples_leaf=10, max_depth=5, criterion="entropy")

        # Act
        estimator = make_estimator(settings, ccp_alpha=0.01, random_state=7)

        # Assert
        with check:
            assert estimator.min_samples_split == 30
        with check:
            assert estimator.min_samples_leaf == 10
        with check:
            assert estimator.max_depth == 5
        with check:
            assert estimator.criterion == "entropy"
        with check:
            assert estimator.ccp_alpha == 0.01
        with check:
            assert estimator.random_state == 7

    def test_prepare_training_data_excludes_label(self, oj_prepared: pl.DataFrame) -> None:
        """All columns but the label become predictors."""
        # Act
        matrix, target, encoders, classes = prepare_training_data(oj_prepared, label="Purchase", features=None)

        # Assert
        with check:
            assert matrix.shape == (oj_prepared.height, oj_prepared.width - 1)
        with check:
            assert "Purchase" not in [encoder.column_name for encoder in encoders]
        with check:
            assert target.shape == (oj_prepared.height,)
        with check:
            assert classes == ("CH", "MM")
