"""Cross-validated selection of the cost-complexity pruning value."""

from __future__ import annotations

import math
from collections.abc import Sequence

import numpy as np
import polars as pl
from loguru import logger
from sklearn.metrics import cohen_kappa_score, make_scorer
from sklearn.model_selection import StratifiedKFold, cross_validate

from ojtree.config import TreeSettings
from ojtree.decision_tree.fitting import make_estimator, prepare_training_data, pruning_path_alphas
from ojtree.exceptions import DegenerateDataError
from ojtree.models import TuningResult, TuningRow

_TIE_TOLERANCE: float = 1e-12  # Mean accuracies closer than this are treated as tied.


def candidate_alphas(
    train_df: pl.DataFrame,
    *,
    label: str,
    tune_length: int = 10,
    tree_settings: TreeSettings | None = None,
    random_state: int | None = None,
) -> list[float]:
    """Build the grid of pruning values to cross-validate.

    Candidates come from the pruning path of the unpruned training tree. When
    the path has at least `tune_length` values, the `tune_length` largest are
    used, so every candidate selects a different subtree. A shorter path is
    replaced by `tune_length` evenly spaced values between its smallest and
    largest alpha.

    Args:
        train_df (pl.DataFrame): Training rows, label column included.
        label (str): Label column.
        tune_length (int): Number of candidates.
        tree_settings (TreeSettings | None): Size controls of the unpruned tree.
        random_state (int | None): Seed for tie-breaking in the tree.

    Returns:
        list[float]: Ascending, distinct candidate values.

    Raises:
        ValueError: If `tune_length` is less than 1.
    """
    if tune_length < 1:
        raise ValueError(f"tune_length must be at least 1, got {tune_length}")
    alphas = pruning_path_alphas(train_df, label=label, tree_settings=tree_settings, random_state=random_state)
    if len(alphas) >= tune_length:
        alphas = alphas[-tune_length:]
    else:
        alphas = np.unique(np.linspace(alphas.min(), alphas.max(), num=tune_length))
    return [float(alpha) for alpha in alphas]


def tune_ccp_alpha(
    train_df: pl.DataFrame,
    *,
    label: str,
    candidates: Sequence[float],
    n_folds: int = 10,
    seed: int = 123,
    tree_settings: TreeSettings | None = None,
) -> TuningResult:
    """Select the pruning value with the best cross-validated accuracy.

    Every candidate is scored on the same stratified, shuffled folds drawn
    with `seed`. The candidate with the highest mean accuracy wins; ties go to
    the largest value, i.e. the simplest tree.

    Args:
        train_df (pl.DataFrame): Training rows, label column included.
        label (str): Label column.
        candidates (Sequence[float]): Pruning values to evaluate, each `>= 0`.
        n_folds (int): Number of folds.
        seed (int): Seed of the fold assignment and of the trees' tie-breaking.
        tree_settings (TreeSettings | None): Size controls for every fold fit.

    Returns:
        TuningResult: Per-candidate accuracy and kappa with the selected value.

    Raises:
        ValueError: If `candidates` is empty or holds a negative value, or
            `n_folds` is less than 2.
        DegenerateDataError: If a class has fewer rows than `n_folds`.
    """
    if not candidates:
        raise ValueError("candidates must not be empty")
    if any(candidate < 0.0 for candidate in candidates):
        raise ValueError(f"candidates must be non-negative, got {list(candidates)}")
    if n_folds < 2:
        raise ValueError(f"n_folds must be at least 2, got {n_folds}")

    feature_matrix, target_array, _, _ = prepare_training_data(train_df, label=label, features=None)
    class_counts = np.bincount(target_array)
    smallest_class = int(class_counts[class_counts > 0].min())
    if smallest_class < n_folds:
        raise DegenerateDataError(
            f"Stratified {n_folds}-fold cross-validation needs at least {n_folds} rows per class, "
            f"smallest class has {smallest_class}",
            n_rows=train_df.height,
        )

    folds = StratifiedKFold(n_splits=n_folds, shuffle=True, random_state=seed)
    scoring = {"accuracy": "accuracy", "kappa": make_scorer(cohen_kappa_score)}

    rows: list[TuningRow] = []
    for candidate in sorted({float(candidate) for candidate in candidates}):
        scores = cross_validate(
            make_estimator(tree_settings, ccp_alpha=candidate, random_state=seed),
            feature_matrix,
            target_array,
            cv=folds,
            scoring=scoring,
        )
        row = _summarise_fold_scores(candidate, scores["test_accuracy"], scores["test_kappa"])
        logger.debug(
            "Candidate scored",
            ccp_alpha=candidate,
            mean_accuracy=row.mean_accuracy,
            accuracy_sd=row.accuracy_sd,
            mean_kappa=row.mean_kappa,
        )
        rows.append(row)

    best = select_best_row(rows)
    logger.info(
        "Pruning value selected",
        ccp_alpha=best.ccp_alpha,
        mean_accuracy=best.mean_accuracy,
        candidates=len(rows),
        folds=n_folds,
    )
    return TuningResult(n_folds=n_folds, seed=seed, rows=rows, best_ccp_alpha=best.ccp_alpha)


def select_best_row(rows: Sequence[TuningRow]) -> TuningRow:
    """Pick the row with the highest mean accuracy, breaking ties toward the largest `ccp_alpha`.

    Args:
        rows (Sequence[TuningRow]): Scored candidates.

    Returns:
        TuningRow: The selected row.

    Raises:
        ValueError: If `rows` is empty.

    Examples:
        >>> rows = [
        ...     TuningRow(ccp_alpha=0.0, mean_accuracy=0.8, accuracy_variance=0.0, accuracy_sd=0.0,
        ...               mean_kappa=None, kappa_sd=None),
        ...     TuningRow(ccp_alpha=0.01, mean_accuracy=0.8, accuracy_variance=0.0, accuracy_sd=0.0,
        ...               mean_kappa=None, kappa_sd=None),
        ... ]
        >>> select_best_row(rows).ccp_alpha
        0.01
    """
    if not rows:
        raise ValueError("rows must not be empty")
    best_accuracy = max(row.mean_accuracy for row in rows)
    tied = [row for row in rows if best_accuracy - row.mean_accuracy <= _TIE_TOLERANCE]
    return max(tied, key=lambda row: row.ccp_alpha)


def tuning_frame(result: TuningResult) -> pl.DataFrame:
    """Tabulate a tuning result, one row per candidate, with the selected row flagged."""
    return pl.DataFrame({
        "ccp_alpha": [row.ccp_alpha for row in result.rows],
        "accuracy": [row.mean_accuracy for row in result.rows],
        "accuracy_sd": [row.accuracy_sd for row in result.rows],
        "kappa": [row.mean_kappa for row in result.rows],
        "kappa_sd": [row.kappa_sd for row in result.rows],
        "selected": [row.ccp_alpha == result.best_ccp_alpha for row in result.rows],
    })


def _summarise_fold_scores(candidate: float, accuracies: np.ndarray, kappas: np.ndarray) -> TuningRow:
    """Reduce per-fold scores to means and spreads.

    Kappa is undefined (NaN) in a fold where chance agreement is perfect; the
    candidate's kappa summary is then `None`.

    Args:
        candidate (float): The pruning value.
        accuracies (np.ndarray): Per-fold accuracy.
        kappas (np.ndarray): Per-fold Cohen's kappa.

    Returns:
        TuningRow: The summary row.
    """
    accuracy_variance = float(np.var(accuracies, ddof=1)) if len(accuracies) > 1 else 0.0
    kappa_defined = bool(np.all(np.isfinite(kappas)))
    return TuningRow(
        ccp_alpha=candidate,
        mean_accuracy=float(np.mean(accuracies)),
        accuracy_variance=accuracy_variance,
        accuracy_sd=math.sqrt(accuracy_variance),
        mean_kappa=float(np.mean(kappas)) if kappa_defined else None,
        kappa_sd=float(np.std(kappas, ddof=1)) if kappa_defined and len(kappas) > 1 else None,
    )
