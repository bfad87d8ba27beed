"""Holdout evaluation: confusion matrix, closed-form metrics and text reports."""

from __future__ import annotations

import polars as pl
from loguru import logger
from scipy import stats

from ojtree.decision_tree.fitting import FittedTree
from ojtree.exceptions import ColumnsNotFoundError, DegenerateDataError
from ojtree.models import ClassificationMetrics, ConfusionMatrix, Evaluation
from ojtree.polars_utils import to_markdown_table

_CONFIDENCE_LEVEL: float = 0.95
UNDEFINED: str = "undefined"

# ---------------------------------------------------------------------------
# Public interface -- Confusion matrix and metrics
# ---------------------------------------------------------------------------


def confusion_matrix(
    predicted: pl.Series,
    actual: pl.Series,
    *,
    positive: str,
    negative: str,
) -> ConfusionMatrix:
    """Count predicted-versus-actual label pairs for a binary label.

    Args:
        predicted (pl.Series): Predicted labels.
        actual (pl.Series): Reference labels, same length as `predicted`.
        positive (str): The positive class label.
        negative (str): The negative class label.

    Returns:
        ConfusionMatrix: The 2x2 counts; they sum to `len(actual)`.

    Raises:
        ValueError: If the series lengths differ or either holds a value other
            than `positive` or `negative`.
    """
    if predicted.len() != actual.len():
        raise ValueError(f"predicted has {predicted.len()} rows but actual has {actual.len()}")

    pairs = pl.DataFrame({
        "predicted": predicted.cast(pl.String),
        "actual": actual.cast(pl.String),
    })
    allowed = {positive, negative}
    for column in ("predicted", "actual"):
        unexpected = sorted({str(value) for value in pairs[column].unique().to_list()} - allowed)
        if unexpected:
            raise ValueError(f"{column} labels {unexpected} are not among the declared classes {[positive, negative]}")

    def _count(predicted_label: str, actual_label: str) -> int:
        return pairs.filter((pl.col("predicted") == predicted_label) & (pl.col("actual") == actual_label)).height

    return ConfusionMatrix(
        positive=positive,
        negative=negative,
        tp=_count(positive, positive),
        fn=_count(negative, positive),
        fp=_count(positive, negative),
        tn=_count(negative, negative),
    )


def compute_metrics(cm: ConfusionMatrix) -> ClassificationMetrics:
    """Derive rate metrics from a 2x2 confusion matrix.

    Every metric is a closed-form function of the counts, apart from the
    exact binomial confidence interval and the two test p-values. A metric
    whose denominator is zero is `None`.

    Args:
        cm (ConfusionMatrix): The counts.

    Returns:
        ClassificationMetrics: The derived metrics.
    """
    n = cm.total
    correct = cm.tp + cm.tn
    actual_positive = cm.tp + cm.fn
    actual_negative = cm.fp + cm.tn
    predicted_positive = cm.tp + cm.fp
    predicted_negative = cm.fn + cm.tn

    accuracy = _ratio(correct, n)
    sensitivity = _ratio(cm.tp, actual_positive)
    specificity = _ratio(cm.tn, actual_negative)
    balanced_accuracy = None if sensitivity is None or specificity is None else (sensitivity + specificity) / 2
    no_information_rate = _ratio(max(actual_positive, actual_negative), n)

    ci_lower, ci_upper, accuracy_p_value = None, None, None
    if n > 0 and no_information_rate is not None:
        test = stats.binomtest(correct, n)
        interval = test.proportion_ci(confidence_level=_CONFIDENCE_LEVEL, method="exact")
        ci_lower, ci_upper = float(interval.low), float(interval.high)
        accuracy_p_value = float(stats.binomtest(correct, n, p=no_information_rate, alternative="greater").pvalue)

    return ClassificationMetrics(
        accuracy=accuracy,
        accuracy_ci_lower=ci_lower,
        accuracy_ci_upper=ci_upper,
        no_information_rate=no_information_rate,
        accuracy_p_value=accuracy_p_value,
        kappa=_kappa(cm),
        mcnemar_p_value=_mcnemar_p_value(cm.fp, cm.fn),
        sensitivity=sensitivity,
        specificity=specificity,
        pos_pred_value=_ratio(cm.tp, predicted_positive),
        neg_pred_value=_ratio(cm.tn, predicted_negative),
        prevalence=_ratio(actual_positive, n),
        detection_rate=_ratio(cm.tp, n),
        detection_prevalence=_ratio(predicted_positive, n),
        balanced_accuracy=balanced_accuracy,
    )


def evaluate(fitted: FittedTree, test_df: pl.DataFrame, *, model_name: str) -> Evaluation:
    """Predict the holdout rows and score the predictions.

    The first declared label level is the positive class.

    Args:
        fitted (FittedTree): The fitted tree.
        test_df (pl.DataFrame): Holdout rows, label column included.
        model_name (str): Name used in reports.

    Returns:
        Evaluation: Confusion matrix and metrics.

    Raises:
        ColumnsNotFoundError: If the label column is absent.
        DegenerateDataError: If `test_df` is empty.
        ValueError: If the label is not binary.
    """
    if fitted.label not in test_df.columns:
        raise ColumnsNotFoundError(missing_columns=[fitted.label], available_columns=test_df.columns)
    if test_df.height == 0:
        raise DegenerateDataError("Cannot evaluate on an empty holdout subset", n_rows=0)
    if len(fitted.classes) != 2:
        raise ValueError(f"Binary evaluation needs exactly two classes, got {list(fitted.classes)}")

    positive, negative = fitted.classes
    predicted = fitted.predict(test_df)
    cm = confusion_matrix(predicted, test_df[fitted.label], positive=positive, negative=negative)
    metrics = compute_metrics(cm)

    undefined = metrics.undefined_metrics()
    if undefined:
        logger.warning("Metrics undefined for this confusion matrix", model=model_name, metrics=undefined)
    logger.info("Model evaluated", model=model_name, rows=cm.total, accuracy=metrics.accuracy)

    return Evaluation(
        model_name=model_name,
        ccp_alpha=fitted.ccp_alpha,
        n_leaves=fitted.leaf_count,
        confusion_matrix=cm,
        metrics=metrics,
    )


# ---------------------------------------------------------------------------
# Public interface -- Text reports
# ---------------------------------------------------------------------------


def format_metric(value: float | None, *, digits: int = 4) -> str:
    """Render a metric value, spelling out undefined values.

    Examples:
        >>> format_metric(0.815625)
        '0.8156'
        >>> format_metric(None)
        'undefined'
    """
    if value is None:
        return UNDEFINED
    return f"{value:.{digits}f}"


def format_accuracy(prefix: str, accuracy: float | None) -> str:
    """Render an accuracy as a percentage line.

    Examples:
        >>> format_accuracy("Initial", 0.815625)
        'Initial Accuracy: 81.56 %'
        >>> format_accuracy("Final", None)
        'Final Accuracy: undefined'
    """
    if accuracy is None:
        return f"{prefix} Accuracy: {UNDEFINED}"
    return f"{prefix} Accuracy: {round(accuracy * 100, 2)} %"


def confusion_matrix_frame(cm: ConfusionMatrix) -> pl.DataFrame:
    """Lay out a confusion matrix as a table with predictions as rows."""
    return pl.DataFrame({
        "Prediction": [cm.positive, cm.negative],
        f"Reference {cm.positive}": [cm.tp, cm.fn],
        f"Reference {cm.negative}": [cm.fp, cm.tn],
    })


def format_evaluation(evaluation: Evaluation) -> str:
    """Render an evaluation as a multi-line text report.

    Args:
        evaluation (Evaluation): The evaluation to render.

    Returns:
        str: Confusion matrix table followed by one line per metric.
    """
    cm = evaluation.confusion_matrix
    m = evaluation.metrics
    ci = (
        UNDEFINED
        if m.accuracy_ci_lower is None or m.accuracy_ci_upper is None
        else f"({format_metric(m.accuracy_ci_lower)}, {format_metric(m.accuracy_ci_upper)})"
    )
    lines = [
        f"Confusion Matrix and Statistics: {evaluation.model_name} (ccp_alpha={evaluation.ccp_alpha:.6g}, "
        f"leaves={evaluation.n_leaves})",
        "",
        to_markdown_table(confusion_matrix_frame(cm), num_rows=2),
        "",
        f"               Accuracy : {format_metric(m.accuracy)}",
        f"                 95% CI : {ci}",
        f"    No Information Rate : {format_metric(m.no_information_rate)}",
        f"    P-Value [Acc > NIR] : {format_metric(m.accuracy_p_value, digits=6)}",
        f"                  Kappa : {format_metric(m.kappa)}",
        f" Mcnemar's Test P-Value : {format_metric(m.mcnemar_p_value, digits=6)}",
        f"            Sensitivity : {format_metric(m.sensitivity)}",
        f"            Specificity : {format_metric(m.specificity)}",
        f"         Pos Pred Value : {format_metric(m.pos_pred_value)}",
        f"         Neg Pred Value : {format_metric(m.neg_pred_value)}",
        f"             Prevalence : {format_metric(m.prevalence)}",
        f"         Detection Rate : {format_metric(m.detection_rate)}",
        f"   Detection Prevalence : {format_metric(m.detection_prevalence)}",
        f"      Balanced Accuracy : {format_metric(m.balanced_accuracy)}",
        "",
        f"       'Positive' Class : {cm.positive}",
    ]
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Private helpers
# ---------------------------------------------------------------------------


def _ratio(numerator: int, denominator: int) -> float | None:
    """Divide, returning `None` for a zero denominator."""
    if denominator == 0:
        return None
    return numerator / denominator


def _kappa(cm: ConfusionMatrix) -> float | None:
    """Cohen's kappa; `None` when the matrix is empty or chance agreement is 1."""
    n = cm.total
    if n == 0:
        return None
    observed = (cm.tp + cm.tn) / n
    expected = ((cm.tp + cm.fp) * (cm.tp + cm.fn) + (cm.fn + cm.tn) * (cm.fp + cm.tn)) / (n * n)
    if expected == 1.0:
        return None
    return (observed - expected) / (1.0 - expected)


def _mcnemar_p_value(off_diagonal_a: int, off_diagonal_b: int) -> float | None:
    """McNemar's chi-squared test; `None` when both counts are zero.

    The continuity correction applies only when the two counts differ, so
    equal counts give a statistic of 0 and a p-value of 1.
    """
    discordant = off_diagonal_a + off_diagonal_b
    if discordant == 0:
        return None
    correction = 1 if off_diagonal_a != off_diagonal_b else 0
    statistic = (abs(off_diagonal_a - off_diagonal_b) - correction) ** 2 / discordant
    return float(stats.chi2.sf(statistic, df=1))
