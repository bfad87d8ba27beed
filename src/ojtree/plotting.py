"""Descriptive and diagnostic charts for the purchase analysis.

Every function builds a fresh `matplotlib.figure.Figure`, optionally writes
it to `save_path` as PNG and returns it. Closing the figure is left to the
caller.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
import polars as pl
import seaborn as sns
from loguru import logger
from matplotlib.figure import Figure
from sklearn.tree import plot_tree

from ojtree.decision_tree.fitting import FittedTree, feature_importance_frame
from ojtree.exceptions import ColumnsNotFoundError
from ojtree.models import ConfusionMatrix, TuningResult

PLOT_DPI: int = 150
PRICE_COLUMNS: tuple[str, str] = ("PriceCH", "PriceMM")

# ---------------------------------------------------------------------------
# Public interface -- Exploratory plots
# ---------------------------------------------------------------------------


def plot_label_distribution(
    df: pl.DataFrame,
    label: str,
    *,
    save_path: Path | None = None,
    figsize: tuple[float, float] = (6, 5),
) -> Figure:
    """Bar chart of row counts per label level.

    Args:
        df (pl.DataFrame): The dataset.
        label (str): Label column; declared `pl.Enum` levels are shown even when unobserved.
        save_path (Path | None): Where to write the PNG; `None` skips saving.
        figsize (tuple[float, float]): Figure size in inches.

    Returns:
        Figure: The chart.
    """
    _require_columns(df, [label])
    fig, ax = plt.subplots(figsize=figsize)
    sns.countplot(x=df[label].cast(pl.String).to_list(), order=_levels(df[label]), ax=ax)
    ax.set_xlabel(label)
    ax.set_ylabel("Count")
    ax.set_title(f"Distribution of {label}", fontweight="bold")
    fig.tight_layout()
    _save(fig, save_path)
    return fig


def plot_price_scatter(
    df: pl.DataFrame,
    label: str,
    *,
    x: str = PRICE_COLUMNS[0],
    y: str = PRICE_COLUMNS[1],
    save_path: Path | None = None,
    figsize: tuple[float, float] = (7, 6),
) -> Figure:
    """Scatter plot of two price columns, coloured by label.

    Args:
        df (pl.DataFrame): The dataset.
        label (str): Label column used for colour.
        x (str): Column on the horizontal axis.
        y (str): Column on the vertical axis.
        save_path (Path | None): Where to write the PNG; `None` skips saving.
        figsize (tuple[float, float]): Figure size in inches.

    Returns:
        Figure: The chart.
    """
    _require_columns(df, [label, x, y])
    fig, ax = plt.subplots(figsize=figsize)
    sns.scatterplot(
        x=df[x].to_numpy(),
        y=df[y].to_numpy(),
        hue=df[label].cast(pl.String).to_list(),
        hue_order=_levels(df[label]),
        alpha=0.6,
        ax=ax,
    )
    ax.set_xlabel(x)
    ax.set_ylabel(y)
    ax.set_title(f"{x} vs {y} by {label}", fontweight="bold")
    fig.tight_layout()
    _save(fig, save_path)
    return fig


def plot_price_density(
    df: pl.DataFrame,
    label: str,
    column: str,
    *,
    save_path: Path | None = None,
    figsize: tuple[float, float] = (7, 5),
) -> Figure:
    """Kernel density of one numeric column per label level.

    Args:
        df (pl.DataFrame): The dataset.
        label (str): Label column used for grouping.
        column (str): Numeric column whose density is drawn.
        save_path (Path | None): Where to write the PNG; `None` skips saving.
        figsize (tuple[float, float]): Figure size in inches.

    Returns:
        Figure: The chart.
    """
    _require_columns(df, [label, column])
    fig, ax = plt.subplots(figsize=figsize)
    sns.kdeplot(
        x=df[column].cast(pl.Float64).to_numpy(),
        hue=df[label].cast(pl.String).to_list(),
        hue_order=_levels(df[label]),
        fill=True,
        alpha=0.4,
        common_norm=False,
        ax=ax,
    )
    ax.set_xlabel(column)
    ax.set_ylabel("Density")
    ax.set_title(f"Density of {column} by {label}", fontweight="bold")
    fig.tight_layout()
    _save(fig, save_path)
    return fig


# ---------------------------------------------------------------------------
# Public interface -- Model plots
# ---------------------------------------------------------------------------


def plot_feature_importance(
    fitted: FittedTree,
    *,
    title: str = "Feature importance",
    save_path: Path | None = None,
    figsize: tuple[float, float] = (8, 6),
) -> Figure:
    """Horizontal bar chart of every predictor's raw impurity reduction.

    Args:
        fitted (FittedTree): The fitted tree.
        title (str): Chart title.
        save_path (Path | None): Where to write the PNG; `None` skips saving.
        figsize (tuple[float, float]): Figure size in inches.

    Returns:
        Figure: The chart, most important predictor on top.
    """
    importance = feature_importance_frame(fitted)
    values = importance["importance"].to_numpy()
    positions = np.arange(importance.height)

    fig, ax = plt.subplots(figsize=figsize)
    colors = plt.cm.viridis(np.linspace(0.2, 0.8, importance.height))
    ax.barh(positions, values, color=colors)
    ax.set_yticks(positions)
    ax.set_yticklabels(importance["feature"].to_list())
    ax.invert_yaxis()
    ax.set_xlabel("Impurity reduction")
    ax.set_title(title, fontweight="bold")
    fig.tight_layout()
    _save(fig, save_path)
    return fig


def plot_tuning_curve(
    result: TuningResult,
    *,
    save_path: Path | None = None,
    figsize: tuple[float, float] = (8, 5),
) -> Figure:
    """Cross-validated accuracy against the pruning value, one point per candidate.

    Error bars span one fold standard deviation; the selected value is marked
    with a dashed vertical line.

    Args:
        result (TuningResult): The tuning outcome.
        save_path (Path | None): Where to write the PNG; `None` skips saving.
        figsize (tuple[float, float]): Figure size in inches.

    Returns:
        Figure: The chart.
    """
    alphas = [row.ccp_alpha for row in result.rows]
    accuracies = [row.mean_accuracy for row in result.rows]
    spreads = [row.accuracy_sd for row in result.rows]

    fig, ax = plt.subplots(figsize=figsize)
    ax.errorbar(alphas, accuracies, yerr=spreads, marker="o", capsize=3)
    ax.axvline(result.best_ccp_alpha, color="grey", linestyle="--", label=f"selected = {result.best_ccp_alpha:.4g}")
    ax.set_xlabel("ccp_alpha")
    ax.set_ylabel(f"Accuracy ({result.n_folds}-fold CV)")
    ax.set_title("Cross-validated accuracy by pruning value", fontweight="bold")
    ax.legend()
    fig.tight_layout()
    _save(fig, save_path)
    return fig


def plot_decision_tree(
    fitted: FittedTree,
    *,
    title: str = "Decision tree",
    save_path: Path | None = None,
    figsize: tuple[float, float] = (16, 9),
) -> Figure:
    """Draw the fitted tree with class proportions at every node.

    Args:
        fitted (FittedTree): The fitted tree.
        title (str): Chart title.
        save_path (Path | None): Where to write the PNG; `None` skips saving.
        figsize (tuple[float, float]): Figure size in inches.

    Returns:
        Figure: The chart.
    """
    fig, ax = plt.subplots(figsize=figsize)
    plot_tree(
        fitted.estimator,
        feature_names=fitted.feature_names,
        class_names=[fitted.classes[int(code)] for code in fitted.estimator.classes_],
        filled=True,
        rounded=True,
        proportion=True,
        impurity=False,
        fontsize=8,
        ax=ax,
    )
    ax.set_title(f"{title} (ccp_alpha={fitted.ccp_alpha:.4g}, leaves={fitted.leaf_count})", fontweight="bold")
    _save(fig, save_path)
    return fig


def plot_confusion_matrix(
    cm: ConfusionMatrix,
    *,
    title: str = "Confusion matrix",
    save_path: Path | None = None,
    figsize: tuple[float, float] = (6, 5),
) -> Figure:
    """Annotated heatmap of a 2x2 confusion matrix, predictions as rows.

    Args:
        cm (ConfusionMatrix): The counts.
        title (str): Chart title.
        save_path (Path | None): Where to write the PNG; `None` skips saving.
        figsize (tuple[float, float]): Figure size in inches.

    Returns:
        Figure: The chart.
    """
    counts = np.array([[cm.tp, cm.fp], [cm.fn, cm.tn]])
    levels = [cm.positive, cm.negative]

    fig, ax = plt.subplots(figsize=figsize)
    sns.heatmap(
        counts,
        annot=True,
        fmt="d",
        cmap="Blues",
        xticklabels=levels,
        yticklabels=levels,
        ax=ax,
        cbar_kws={"label": "Count"},
    )
    ax.set_xlabel("Reference")
    ax.set_ylabel("Prediction")
    ax.set_title(title, fontweight="bold")
    fig.tight_layout()
    _save(fig, save_path)
    return fig


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _levels(series: pl.Series) -> list[str]:
    """Declared levels of an enum series, else its sorted observed values."""
    if isinstance(series.dtype, pl.Enum):
        return series.cat.get_categories().to_list()
    return sorted(str(value) for value in series.drop_nulls().unique().to_list())


def _require_columns(df: pl.DataFrame, columns: Sequence[str]) -> None:
    missing = [column for column in columns if column not in df.columns]
    if missing:
        raise ColumnsNotFoundError(missing_columns=missing, available_columns=df.columns)


def _save(fig: Figure, save_path: Path | None) -> None:
    if save_path is None:
        return
    save_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(save_path, dpi=PLOT_DPI, bbox_inches="tight")
    logger.debug("Plot saved", path=str(save_path))
