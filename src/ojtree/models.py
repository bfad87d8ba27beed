"""Pydantic result models shared across the analysis pipeline."""

from __future__ import annotations

from pydantic import BaseModel, Field, computed_field, model_validator

# ---------------------------------------------------------------------------
# Dataset
# ---------------------------------------------------------------------------


class DatasetSummary(BaseModel):
    """Size, completeness and class balance of a loaded dataset.

    Attributes:
        rows (int): Number of rows.
        columns (int): Number of columns, label included.
        missing_values (int): Total null or NaN cells.
        class_distribution (dict[str, int]): Row count per label value,
            largest class first.
    """

    rows: int = Field(ge=0)
    columns: int = Field(ge=0)
    missing_values: int = Field(ge=0)
    class_distribution: dict[str, int]


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


class ConfusionMatrix(BaseModel):
    """Predicted-versus-actual counts for a binary label.

    Rows are predictions and columns are the reference labels, with the
    positive class first:

    ```
                  actual +   actual -
    predicted +      tp         fp
    predicted -      fn         tn
    ```

    Attributes:
        positive (str): The positive class label.
        negative (str): The negative class label.
        tp (int): Positive rows predicted positive.
        fn (int): Positive rows predicted negative.
        fp (int): Negative rows predicted positive.
        tn (int): Negative rows predicted negative.

    Examples:
        >>> cm = ConfusionMatrix(positive="CH", negative="MM", tp=169, fn=33, fp=26, tn=92)
        >>> cm.total
        320
    """

    positive: str
    negative: str
    tp: int = Field(ge=0)
    fn: int = Field(ge=0)
    fp: int = Field(ge=0)
    tn: int = Field(ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> int:
        """Total number of rows counted."""
        return self.tp + self.fn + self.fp + self.tn

    @model_validator(mode="after")
    def _validate_distinct_labels(self) -> ConfusionMatrix:
        """Reject a matrix whose positive and negative labels coincide.

        Returns:
            ConfusionMatrix: The validated model instance.

        Raises:
            ValueError: If `positive == negative`.
        """
        if self.positive == self.negative:
            raise ValueError(f"positive and negative labels must differ, got {self.positive!r} for both")
        return self


class ClassificationMetrics(BaseModel):
    """Rate metrics derived in closed form from a 2x2 confusion matrix.

    Any metric whose denominator is zero is `None` (undefined) rather than
    being coerced to 0 or 1.

    Attributes:
        accuracy (float | None): (TP + TN) / N.
        accuracy_ci_lower (float | None): Lower bound of the exact binomial 95%
            confidence interval for accuracy.
        accuracy_ci_upper (float | None): Upper bound of the same interval.
        no_information_rate (float | None): Share of the largest actual class.
        accuracy_p_value (float | None): One-sided binomial p-value for
            accuracy being greater than the no-information rate.
        kappa (float | None): Cohen's kappa against chance agreement.
        mcnemar_p_value (float | None): McNemar's test p-value (with continuity
            correction) on the off-diagonal counts.
        sensitivity (float | None): TP / (TP + FN).
        specificity (float | None): TN / (TN + FP).
        pos_pred_value (float | None): TP / (TP + FP).
        neg_pred_value (float | None): TN / (TN + FN).
        prevalence (float | None): (TP + FN) / N.
        detection_rate (float | None): TP / N.
        detection_prevalence (float | None): (TP + FP) / N.
        balanced_accuracy (float | None): Mean of sensitivity and specificity.
    """

    accuracy: float | None
    accuracy_ci_lower: float | None
    accuracy_ci_upper: float | None
    no_information_rate: float | None
    accuracy_p_value: float | None
    kappa: float | None
    mcnemar_p_value: float | None
    sensitivity: float | None
    specificity: float | None
    pos_pred_value: float | None
    neg_pred_value: float | None
    prevalence: float | None
    detection_rate: float | None
    detection_prevalence: float | None
    balanced_accuracy: float | None

    def undefined_metrics(self) -> list[str]:
        """Return the names of metrics that are undefined for this matrix."""
        return [name for name, value in self if value is None]


class Evaluation(BaseModel):
    """Holdout evaluation of one fitted tree.

    Attributes:
        model_name (str): Label used in reports, e.g. `"initial"` or `"tuned"`.
        ccp_alpha (float): Complexity value the tree was fitted with.
        n_leaves (int): Leaf count of the evaluated tree.
        confusion_matrix (ConfusionMatrix): Holdout counts.
        metrics (ClassificationMetrics): Derived rate metrics.
    """

    model_name: str
    ccp_alpha: float = Field(ge=0.0)
    n_leaves: int = Field(ge=1)
    confusion_matrix: ConfusionMatrix
    metrics: ClassificationMetrics


# ---------------------------------------------------------------------------
# Tuning
# ---------------------------------------------------------------------------


class TuningRow(BaseModel):
    """Cross-validated performance of one candidate complexity value.

    Attributes:
        ccp_alpha (float): The candidate cost-complexity pruning value.
        mean_accuracy (float): Mean accuracy across folds.
        accuracy_variance (float): Sample variance of fold accuracies.
        accuracy_sd (float): Sample standard deviation of fold accuracies.
        mean_kappa (float | None): Mean Cohen's kappa across folds; `None`
            when kappa is undefined in any fold.
        kappa_sd (float | None): Sample standard deviation of fold kappas.
    """

    ccp_alpha: float = Field(ge=0.0)
    mean_accuracy: float = Field(ge=0.0, le=1.0)
    accuracy_variance: float = Field(ge=0.0)
    accuracy_sd: float = Field(ge=0.0)
    mean_kappa: float | None
    kappa_sd: float | None


class TuningResult(BaseModel):
    """Outcome of the cross-validated search over complexity values.

    Attributes:
        n_folds (int): Number of stratified folds.
        seed (int): Seed of the fold assignment.
        rows (list[TuningRow]): One row per candidate, in ascending `ccp_alpha` order.
        best_ccp_alpha (float): The selected candidate.
    """

    n_folds: int = Field(ge=2)
    seed: int
    rows: list[TuningRow] = Field(min_length=1)
    best_ccp_alpha: float = Field(ge=0.0)

    @property
    def best_row(self) -> TuningRow:
        """The tuning row of the selected candidate."""
        return next(row for row in self.rows if row.ccp_alpha == self.best_ccp_alpha)

    @model_validator(mode="after")
    def _validate_best_is_a_candidate(self) -> TuningResult:
        """Validate that the selected value is one of the evaluated candidates.

        Returns:
            TuningResult: The validated model instance.

        Raises:
            ValueError: If `best_ccp_alpha` does not appear in `rows`.
        """
        if all(row.ccp_alpha != self.best_ccp_alpha for row in self.rows):
            raise ValueError(f"best_ccp_alpha {self.best_ccp_alpha} is not among the evaluated candidates")
        return self


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


class AnalysisReport(BaseModel):
    """Everything one run of the analysis produced.

    Attributes:
        dataset (DatasetSummary): Summary of the prepared dataset.
        seed (int): Seed used for the partition and the CV folds.
        train_rows (int): Training subset size.
        test_rows (int): Holdout subset size.
        initial (Evaluation): Holdout evaluation of the tree with default complexity control.
        initial_importance (dict[str, float]): Normalised feature importance of the initial tree.
        tuning (TuningResult): Cross-validated search over complexity values.
        tuned (Evaluation): Holdout evaluation of the tree refitted with the selected value.
        tuned_importance (dict[str, float]): Normalised feature importance of the tuned tree.
        initial_rules (list[str]): One rendered rule per leaf of the initial tree.
        tuned_rules (list[str]): One rendered rule per leaf of the tuned tree.
        plots (list[str]): Paths of the saved charts.
    """

    dataset: DatasetSummary
    seed: int
    train_rows: int = Field(ge=1)
    test_rows: int = Field(ge=1)
    initial: Evaluation
    initial_importance: dict[str, float]
    tuning: TuningResult
    tuned: Evaluation
    tuned_importance: dict[str, float]
    initial_rules: list[str] = Field(default_factory=list)
    tuned_rules: list[str] = Field(default_factory=list)
    plots: list[str] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def accuracy_change(self) -> float | None:
        """Tuned holdout accuracy minus initial holdout accuracy."""
        initial_accuracy = self.initial.metrics.accuracy
        tuned_accuracy = self.tuned.metrics.accuracy
        if initial_accuracy is None or tuned_accuracy is None:
            return None
        return tuned_accuracy - initial_accuracy
