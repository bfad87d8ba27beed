"""End-to-end purchase analysis: load, split, plot, fit, evaluate, tune, refit."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import matplotlib.pyplot as plt
import polars as pl
from loguru import logger
from matplotlib.figure import Figure

from ojtree.config import AnalysisSettings
from ojtree.dataset import coerce_label, describe_dataset, get_dataset_entry, load_dataset, prepare_dataset
from ojtree.decision_tree.fitting import FittedTree, compute_feature_importance, extract_rules, fit_tree
from ojtree.evaluation import evaluate, format_accuracy, format_evaluation, format_metric
from ojtree.logging import STAGE_LEVEL, enable_logging
from ojtree.models import AnalysisReport, ConfusionMatrix, DatasetSummary
from ojtree.partition import stratified_split
from ojtree.plotting import (
    PRICE_COLUMNS,
    plot_confusion_matrix,
    plot_decision_tree,
    plot_feature_importance,
    plot_label_distribution,
    plot_price_density,
    plot_price_scatter,
    plot_tuning_curve,
)
from ojtree.polars_utils import to_markdown_table
from ojtree.tuning import candidate_alphas, tune_ccp_alpha, tuning_frame

_N_STAGES: int = 9

# ---------------------------------------------------------------------------
# Public interface
# ---------------------------------------------------------------------------


def run_analysis(
    settings: AnalysisSettings | None = None,
    *,
    dataset: pl.DataFrame | None = None,
) -> AnalysisReport:
    """Run every stage of the analysis in order.

    Stages are strictly sequential; the first failure propagates and the
    remaining stages do not run.

    Args:
        settings (AnalysisSettings | None): Run settings. Defaults to
            `AnalysisSettings()`, i.e. environment and `.env` overrides apply.
        dataset (pl.DataFrame | None): A raw frame to analyse instead of
            loading `settings.dataset_name` from the cache.

    Returns:
        AnalysisReport: Summary, both evaluations, the tuning table, rules and
            saved plot paths.

    Raises:
        MissingValuesError: If the dataset has a missing value.
        DegenerateDataError: If a partition is empty or single-class.
        DatasetUnavailableError: If the dataset must be downloaded and cannot be.
    """
    settings = settings or AnalysisSettings()
    label = settings.label_column
    plots: list[str] = []

    _stage(1, "Loading dataset", name=settings.dataset_name)
    raw = dataset if dataset is not None else load_dataset(settings.dataset_name, settings=settings)

    _stage(2, "Preprocessing", rows=raw.height, columns=raw.width)
    df = prepare_dataset(raw, get_dataset_entry(settings.dataset_name))
    df = coerce_label(df, label, settings.label_levels)
    summary = describe_dataset(df, label)

    _stage(3, "Partitioning", train_fraction=settings.train_fraction, seed=settings.seed)
    partition = stratified_split(df[label], train_fraction=settings.train_fraction, seed=settings.seed)
    train_df, test_df = partition.take(df)

    _stage(4, "Exploratory plots", enabled=settings.save_plots)
    if settings.save_plots:
        plots.append(_render(plot_label_distribution, settings, "label_distribution.png", df, label))
        plots.append(_render(plot_price_scatter, settings, "price_scatter.png", df, label))
        for column in PRICE_COLUMNS:
            plots.append(_render(plot_price_density, settings, f"density_{column}.png", df, label, column))

    _stage(5, "Fitting initial tree", ccp_alpha=settings.initial_ccp_alpha)
    initial_tree = fit_tree(
        train_df,
        label=label,
        ccp_alpha=settings.initial_ccp_alpha,
        tree_settings=settings.tree,
        random_state=settings.seed,
    )

    _stage(6, "Evaluating initial tree", test_rows=test_df.height)
    initial = evaluate(initial_tree, test_df, model_name="initial")
    if settings.save_plots:
        plots.extend(_render_model_plots(initial_tree, initial.confusion_matrix, settings, "initial"))

    _stage(7, "Tuning ccp_alpha", folds=settings.cv_folds, tune_length=settings.tune_length)
    candidates = candidate_alphas(
        train_df,
        label=label,
        tune_length=settings.tune_length,
        tree_settings=settings.tree,
        random_state=settings.seed,
    )
    tuning = tune_ccp_alpha(
        train_df,
        label=label,
        candidates=candidates,
        n_folds=settings.cv_folds,
        seed=settings.seed,
        tree_settings=settings.tree,
    )
    if settings.save_plots:
        plots.append(_render(plot_tuning_curve, settings, "tuning_curve.png", tuning))

    _stage(8, "Refitting tuned tree", ccp_alpha=tuning.best_ccp_alpha)
    tuned_tree = fit_tree(
        train_df,
        label=label,
        ccp_alpha=tuning.best_ccp_alpha,
        tree_settings=settings.tree,
        random_state=settings.seed,
    )

    _stage(9, "Evaluating tuned tree", test_rows=test_df.height)
    tuned = evaluate(tuned_tree, test_df, model_name="tuned")
    if settings.save_plots:
        plots.extend(_render_model_plots(tuned_tree, tuned.confusion_matrix, settings, "tuned"))

    report = AnalysisReport(
        dataset=summary,
        seed=settings.seed,
        train_rows=train_df.height,
        test_rows=test_df.height,
        initial=initial,
        initial_importance=compute_feature_importance(initial_tree),
        tuning=tuning,
        tuned=tuned,
        tuned_importance=compute_feature_importance(tuned_tree),
        initial_rules=[str(rule) for rule in extract_rules(initial_tree)],
        tuned_rules=[str(rule) for rule in extract_rules(tuned_tree)],
        plots=plots,
    )
    logger.log(
        STAGE_LEVEL,
        "Analysis complete",
        initial_accuracy=initial.metrics.accuracy,
        tuned_accuracy=tuned.metrics.accuracy,
        accuracy_change=report.accuracy_change,
    )
    return report


def format_report(report: AnalysisReport) -> str:
    """Render an analysis report as the printed run summary.

    Args:
        report (AnalysisReport): The report to render.

    Returns:
        str: Dataset summary, both evaluations, the tuning table and the
            tuned tree's rules.
    """
    tuning_table = to_markdown_table(tuning_frame(report.tuning), num_rows=len(report.tuning.rows), float_precision=4)
    sections = [
        format_summary(report.dataset),
        f"Partition (seed={report.seed}): {report.train_rows} training rows, {report.test_rows} holdout rows",
        format_evaluation(report.initial),
        format_accuracy("Initial", report.initial.metrics.accuracy),
        _format_importance("Initial feature importance", report.initial_importance),
        f"Cross-validated tuning ({report.tuning.n_folds} folds):\n{tuning_table}",
        f"Selected ccp_alpha: {report.tuning.best_ccp_alpha:.6g}",
        format_evaluation(report.tuned),
        format_accuracy("Final", report.tuned.metrics.accuracy),
        "Tuned tree rules:\n" + "\n".join(report.tuned_rules),
    ]
    if report.plots:
        sections.append("Saved plots:\n" + "\n".join(report.plots))
    return "\n\n".join(sections)


def format_summary(summary: DatasetSummary) -> str:
    """Render a dataset summary as a short text block."""
    distribution = ", ".join(f"{level}={count}" for level, count in summary.class_distribution.items())
    return (
        f"Dataset: {summary.rows} rows x {summary.columns} columns\n"
        f"Missing values: {summary.missing_values}\n"
        f"Class distribution: {distribution}"
    )


def main() -> None:
    """Run the analysis with settings from the environment and print the report."""
    settings = AnalysisSettings()
    logger.remove()  # loguru's default handler would print every record a second time
    with enable_logging(level=settings.log_level):
        report = run_analysis(settings)
    print(format_report(report))  # noqa: T201


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _stage(number: int, title: str, **context: Any) -> None:
    logger.log(STAGE_LEVEL, f"[{number}/{_N_STAGES}] {title}", **context)


def _render(
    plot_fn: Callable[..., Figure],
    settings: AnalysisSettings,
    filename: str,
    *args: Any,
    **kwargs: Any,
) -> str:
    """Draw one chart into the plots directory, close it and return its path."""
    save_path = Path(settings.plots_dir) / filename
    fig = plot_fn(*args, save_path=save_path, **kwargs)
    plt.close(fig)
    return str(save_path)


def _render_model_plots(
    fitted: FittedTree,
    cm: ConfusionMatrix,
    settings: AnalysisSettings,
    model_name: str,
) -> list[str]:
    """Draw the tree, its feature importance and its holdout confusion matrix."""
    return [
        _render(plot_decision_tree, settings, f"tree_{model_name}.png", fitted, title=f"Decision tree ({model_name})"),
        _render(
            plot_feature_importance,
            settings,
            f"importance_{model_name}.png",
            fitted,
            title=f"Feature importance ({model_name})",
        ),
        _render(
            plot_confusion_matrix,
            settings,
            f"confusion_matrix_{model_name}.png",
            cm,
            title=f"Confusion matrix ({model_name})",
        ),
    ]


def _format_importance(title: str, importance: dict[str, float]) -> str:
    if not importance:
        return f"{title}: none (single-leaf tree)"
    lines = [f"  {name:<16} {format_metric(value)}" for name, value in importance.items()]
    return title + ":\n" + "\n".join(lines)
