"""Tree induction, prediction, rule extraction and feature importance."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
import polars as pl
from loguru import logger
from sklearn.tree import DecisionTreeClassifier

from ojtree.config import TreeSettings
from ojtree.decision_tree.models import ClassificationRule, Predicate
from ojtree.decision_tree.preprocessing import (
    THRESHOLD_DECIMAL_PLACES,
    FeatureEncoder,
    apply_encoders,
    encode_features,
    encode_target,
    filter_features,
)
from ojtree.exceptions import ColumnsNotFoundError, DegenerateDataError

# ---------------------------------------------------------------------------
# Public interface -- Fitted tree
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FittedTree:
    """A fitted classification tree together with everything needed to use it.

    Attributes:
        estimator (DecisionTreeClassifier): The fitted sklearn tree.
        encoders (list[FeatureEncoder]): Predictor encoders built from the
            training frame, in feature order.
        label (str): Label column name.
        classes (tuple[str, ...]): Declared label levels; class code `i` is `classes[i]`.
        ccp_alpha (float): Cost-complexity pruning value the tree was fitted with.
        n_train_rows (int): Number of training rows.
    """

    estimator: DecisionTreeClassifier
    encoders: list[FeatureEncoder]
    label: str
    classes: tuple[str, ...]
    ccp_alpha: float
    n_train_rows: int

    @property
    def feature_names(self) -> list[str]:
        """Predictor names in feature order."""
        return [encoder.column_name for encoder in self.encoders]

    @property
    def node_count(self) -> int:
        """Total number of nodes, internal and leaf."""
        return int(self.estimator.tree_.node_count)

    @property
    def leaf_count(self) -> int:
        """Number of leaf nodes."""
        return int(self.estimator.get_n_leaves())

    @property
    def depth(self) -> int:
        """Depth of the tree; 0 for a single leaf."""
        return int(self.estimator.get_depth())

    def predict(self, df: pl.DataFrame) -> pl.Series:
        """Predict the label of every row.

        Args:
            df (pl.DataFrame): Frame holding every predictor column.

        Returns:
            pl.Series: Predictions named after the label column, typed as the
                label's `pl.Enum` so every value is a declared class.
        """
        feature_matrix = apply_encoders(df, self.encoders)
        codes = self.estimator.predict(feature_matrix).astype(np.int64)
        labels = [self.classes[code] for code in codes]
        return pl.Series(self.label, labels, dtype=pl.Enum(list(self.classes)))


# ---------------------------------------------------------------------------
# Public interface -- Tree fitting
# ---------------------------------------------------------------------------


def fit_tree(
    train_df: pl.DataFrame,
    *,
    label: str,
    ccp_alpha: float = 0.0,
    features: list[str] | None = None,
    tree_settings: TreeSettings | None = None,
    random_state: int | None = None,
) -> FittedTree:
    """Fit a classification tree with minimal cost-complexity pruning.

    Larger `ccp_alpha` values prune more aggressively; `0.0` keeps the
    deepest tree the size controls in `tree_settings` allow.

    Args:
        train_df (pl.DataFrame): Training rows, label column included.
        label (str): Label column; must be a `pl.Enum`.
        ccp_alpha (float): Cost-complexity pruning value, `>= 0`.
        features (list[str] | None): Predictor columns. When `None`, every
            column except `label` is used.
        tree_settings (TreeSettings | None): Size controls. Defaults to `TreeSettings()`.
        random_state (int | None): Seed for the tree's tie-breaking among
            equally good splits.

    Returns:
        FittedTree: The fitted tree.

    Raises:
        ValueError: If `ccp_alpha` is negative or no predictor can be encoded.
        ColumnsNotFoundError: If `label` or a requested predictor is absent.
        DegenerateDataError: If `train_df` is empty or the label has fewer
            than two observed classes.
    """
    if ccp_alpha < 0.0:
        raise ValueError(f"ccp_alpha must be non-negative, got {ccp_alpha}")
    feature_matrix, target_array, encoders, classes = prepare_training_data(train_df, label=label, features=features)

    tree = make_estimator(tree_settings, ccp_alpha=ccp_alpha, random_state=random_state)
    tree.fit(feature_matrix, target_array)

    fitted = FittedTree(
        estimator=tree,
        encoders=encoders,
        label=label,
        classes=classes,
        ccp_alpha=float(ccp_alpha),
        n_train_rows=train_df.height,
    )
    logger.info(
        "Tree fitted",
        ccp_alpha=ccp_alpha,
        rows=train_df.height,
        nodes=fitted.node_count,
        leaves=fitted.leaf_count,
        depth=fitted.depth,
    )
    return fitted


def pruning_path_alphas(
    train_df: pl.DataFrame,
    *,
    label: str,
    features: list[str] | None = None,
    tree_settings: TreeSettings | None = None,
    random_state: int | None = None,
) -> np.ndarray:
    """Compute the effective alphas of the minimal cost-complexity pruning path.

    Each alpha is the value at which one more subtree of the unpruned tree is
    collapsed. The last alpha prunes the tree down to its root.

    Args:
        train_df (pl.DataFrame): Training rows, label column included.
        label (str): Label column; must be a `pl.Enum`.
        features (list[str] | None): Predictor columns; `None` means all but `label`.
        tree_settings (TreeSettings | None): Size controls of the unpruned tree.
        random_state (int | None): Seed for tie-breaking.

    Returns:
        np.ndarray: Sorted, non-negative, distinct alphas.

    Raises:
        ColumnsNotFoundError: If `label` or a requested predictor is absent.
        DegenerateDataError: If `train_df` is empty or single-class.
    """
    feature_matrix, target_array, _, _ = prepare_training_data(train_df, label=label, features=features)
    tree = make_estimator(tree_settings, ccp_alpha=0.0, random_state=random_state)
    path = tree.cost_complexity_pruning_path(feature_matrix, target_array)
    # Floating-point noise can make the first alpha a tiny negative number.
    return np.unique(np.clip(path.ccp_alphas, 0.0, None))


# ---------------------------------------------------------------------------
# Public interface -- Rule extraction
# ---------------------------------------------------------------------------


def extract_rules(fitted: FittedTree) -> list[ClassificationRule]:
    """Describe a fitted tree as one rule per leaf.

    Categorical splits are decoded back to label sets: categories whose code
    is `<= threshold` go left, the rest go right, both as `"in"` predicates.

    Args:
        fitted (FittedTree): The fitted tree.

    Returns:
        list[ClassificationRule]: One rule per leaf, in depth-first left-to-right order.
    """
    rules: list[ClassificationRule] = []
    _walk_tree(fitted=fitted, node_id=0, path_predicates=[], rules=rules)
    return rules


# ---------------------------------------------------------------------------
# Public interface -- Feature importance
# ---------------------------------------------------------------------------


def compute_feature_importance(fitted: FittedTree) -> dict[str, float]:
    """Build a normalised feature-importance mapping from a fitted tree.

    Importance is the total impurity reduction attributable to each predictor
    across all of its splits. Predictors that never split are left out and the
    rest are renormalised to sum to 1.0. A single-leaf tree yields `{}`.

    Args:
        fitted (FittedTree): The fitted tree.

    Returns:
        dict[str, float]: Predictor name to rounded importance, sorted in
            descending order of importance.
    """
    importances = fitted.estimator.feature_importances_
    paired = [(name, round(float(value), 4)) for name, value in zip(fitted.feature_names, importances, strict=True)]
    filtered = [(name, value) for name, value in paired if value > 0.0]
    filtered.sort(key=lambda item: item[1], reverse=True)
    total_rounded = sum(value for _, value in filtered)
    renormalized = [(name, round(value / total_rounded, 4)) for name, value in filtered]
    if renormalized:
        others_sum = sum(value for _, value in renormalized[:-1])
        last_name = renormalized[-1][0]
        renormalized[-1] = (last_name, round(1.0 - others_sum, 4))
    return dict(renormalized)


def feature_importance_frame(fitted: FittedTree) -> pl.DataFrame:
    """Tabulate the raw impurity reduction of every predictor.

    Unlike `compute_feature_importance`, values are not normalised and
    predictors with zero importance are kept, which suits plotting.

    Args:
        fitted (FittedTree): The fitted tree.

    Returns:
        pl.DataFrame: Columns `feature` and `importance`, sorted by descending importance.
    """
    raw = fitted.estimator.tree_.compute_feature_importances(normalize=False)
    return pl.DataFrame(
        {"feature": fitted.feature_names, "importance": np.asarray(raw, dtype=np.float64)},
    ).sort("importance", descending=True, maintain_order=True)


# ---------------------------------------------------------------------------
# Public interface -- Estimator and training data
# ---------------------------------------------------------------------------


def make_estimator(
    tree_settings: TreeSettings | None,
    *,
    ccp_alpha: float,
    random_state: int | None,
) -> DecisionTreeClassifier:
    """Create an unfitted sklearn tree from the size controls.

    Args:
        tree_settings (TreeSettings | None): Size controls; `None` means defaults.
        ccp_alpha (float): Cost-complexity pruning value.
        random_state (int | None): Seed for tie-breaking.

    Returns:
        DecisionTreeClassifier: The configured estimator.
    """
    settings = tree_settings or TreeSettings()
    return DecisionTreeClassifier(
        criterion=settings.criterion,
        min_samples_split=settings.min_samples_split,
        min_samples_leaf=settings.min_samples_leaf,
        max_depth=settings.max_depth,
        ccp_alpha=ccp_alpha,
        random_state=random_state,
    )


def prepare_training_data(
    train_df: pl.DataFrame,
    *,
    label: str,
    features: list[str] | None,
) -> tuple[np.ndarray, np.ndarray, list[FeatureEncoder], tuple[str, ...]]:
    """Validate a training frame and encode its predictors and label.

    Args:
        train_df (pl.DataFrame): Training rows, label column included.
        label (str): Label column name.
        features (list[str] | None): Predictor columns; `None` means all but `label`.

    Returns:
        tuple[np.ndarray, np.ndarray, list[FeatureEncoder], tuple[str, ...]]:
            `(feature_matrix, target_codes, encoders, classes)`.

    Raises:
        ColumnsNotFoundError: If `label` or a requested predictor is absent.
        DegenerateDataError: If `train_df` is empty or single-class.
        ValueError: If no predictor can be encoded.
    """
    if label not in train_df.columns:
        raise ColumnsNotFoundError(missing_columns=[label], available_columns=train_df.columns)
    if train_df.height == 0:
        raise DegenerateDataError("Cannot fit a tree on an empty training subset", n_rows=0)

    feature_columns = features if features is not None else [col for col in train_df.columns if col != label]
    kept_columns, excluded = filter_features(train_df, feature_columns)
    if excluded:
        logger.warning("Predictors excluded", excluded=[f"{ef.name} ({ef.reason})" for ef in excluded])
    if not kept_columns:
        raise ValueError(f"No valid predictor columns remain after filtering. Excluded: {excluded}")

    target_array, classes = encode_target(train_df[label])
    feature_matrix, encoders = encode_features(train_df, kept_columns)
    return feature_matrix, target_array, encoders, classes


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _walk_tree(
    *,
    fitted: FittedTree,
    node_id: int,
    path_predicates: list[Predicate],
    rules: list[ClassificationRule],
) -> None:
    """Recursively walk a tree node and accumulate leaf rules.

    Args:
        fitted (FittedTree): The fitted tree.
        node_id (int): The current node index in `estimator.tree_`.
        path_predicates (list[Predicate]): Predicates from the root to `node_id`.
        rules (list[ClassificationRule]): Accumulator; leaf rules are appended in place.
    """
    sklearn_tree = fitted.estimator.tree_
    left_child = sklearn_tree.children_left[node_id]
    right_child = sklearn_tree.children_right[node_id]

    if left_child == right_child:  # Both are TREE_LEAF (-1) at leaves
        rules.append(_build_leaf_rule(fitted, sklearn_tree, node_id, path_predicates))
        return

    encoder = fitted.encoders[sklearn_tree.feature[node_id]]
    left_predicate, right_predicate = _build_split_predicates(encoder, sklearn_tree.threshold[node_id])
    _walk_tree(fitted=fitted, node_id=left_child, path_predicates=[*path_predicates, left_predicate], rules=rules)
    _walk_tree(fitted=fitted, node_id=right_child, path_predicates=[*path_predicates, right_predicate], rules=rules)


def _build_split_predicates(encoder: FeatureEncoder, threshold: float) -> tuple[Predicate, Predicate]:
    """Build the left and right branch predicates of one split.

    Args:
        encoder (FeatureEncoder): Encoder of the predictor being split.
        threshold (float): Raw sklearn split threshold.

    Returns:
        tuple[Predicate, Predicate]: `(left_predicate, right_predicate)`.
    """
    feature_name = encoder.column_name

    if encoder.category_mapping is not None:
        left_labels = {label for code, label in encoder.category_mapping.items() if code <= threshold}
        right_labels = {label for code, label in encoder.category_mapping.items() if code > threshold}
        return (
            Predicate(variable=feature_name, operator="in", value=left_labels),
            Predicate(variable=feature_name, operator="in", value=right_labels),
        )

    rounded_threshold = round(float(threshold), THRESHOLD_DECIMAL_PLACES)
    return (
        Predicate(variable=feature_name, operator="<=", value=rounded_threshold),
        Predicate(variable=feature_name, operator=">", value=rounded_threshold),
    )


def _build_leaf_rule(
    fitted: FittedTree,
    sklearn_tree: Any,
    node_id: int,
    path_predicates: list[Predicate],
) -> ClassificationRule:
    """Construct a leaf rule from a node's stored class distribution.

    `tree_.value` holds class counts or class fractions depending on the
    sklearn version; the argmax and the max share are the same either way.

    Args:
        fitted (FittedTree): The fitted tree.
        sklearn_tree (Any): The `estimator.tree_` structure.
        node_id (int): Index of the leaf node.
        path_predicates (list[Predicate]): Predicates along the root-to-leaf path.

    Returns:
        ClassificationRule: The leaf rule.
    """
    class_weights = sklearn_tree.value[node_id][0]
    class_index = int(np.argmax(class_weights))
    total = float(class_weights.sum())
    confidence = float(class_weights[class_index]) / total if total > 0 else 0.0
    class_code = int(fitted.estimator.classes_[class_index])

    return ClassificationRule(
        predicates=path_predicates,
        prediction=fitted.classes[class_code],
        samples=int(sklearn_tree.n_node_samples[node_id]),
        confidence=round(confidence, 4),
    )
