"""Decision tree sub-package: rule models, preprocessing, and fitting."""

from __future__ import annotations

from ojtree.decision_tree.fitting import (
    FittedTree,
    compute_feature_importance,
    extract_rules,
    feature_importance_frame,
    fit_tree,
    pruning_path_alphas,
)
from ojtree.decision_tree.models import ClassificationRule, ColumnType, Predicate, PredicateOp

__all__ = [
    "ClassificationRule",
    "ColumnType",
    "FittedTree",
    "Predicate",
    "PredicateOp",
    "compute_feature_importance",
    "extract_rules",
    "feature_importance_frame",
    "fit_tree",
    "pruning_path_alphas",
]
