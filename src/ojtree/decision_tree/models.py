"""Pydantic rule models and predicate logic for fitted classification trees."""

from __future__ import annotations

import operator
from collections.abc import Callable
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, Field, model_validator

# ---------------------------------------------------------------------------
# Public type aliases
# ---------------------------------------------------------------------------

PredicateOp: TypeAlias = Literal[">", ">=", "!=", "==", "<", "<=", "in", "not in"]

ColumnType: TypeAlias = Literal["numeric", "boolean", "categorical", "excluded"]

# ---------------------------------------------------------------------------
# Public models
# ---------------------------------------------------------------------------


class Predicate(BaseModel):
    """A single boolean condition on one predictor.

    Predicates are the building blocks of tree rules; each rule holds the
    ordered predicates along the path from the root to one leaf.

    Attributes:
        variable (str): Predictor the condition applies to, e.g. `"LoyalCH"`.
        operator (PredicateOp): Comparison operator. `"in"` and `"not in"` test
            membership in a set of category labels.
        value (float | str | set[float] | set[str]): Threshold for scalar
            comparisons, or the label set for membership tests.

    Examples:
        >>> p = Predicate(variable="LoyalCH", operator=">", value=0.4825)
        >>> str(p)
        'LoyalCH > 0.4825'
        >>> p.eval(0.9)
        True
        >>> Predicate(variable="Store7", operator="in", value={"Yes"}).eval("No")
        False
    """

    variable: str = Field(description="Predictor name the condition applies to, e.g. 'LoyalCH'.")
    operator: PredicateOp = Field(
        description="Comparison operator; 'in' and 'not in' test membership in a set of labels.",
    )
    value: float | str | set[float] | set[str] = Field(
        description="Threshold for scalar comparisons, or a set of labels for membership tests.",
    )

    @model_validator(mode="after")
    def _validate_operator_value_compatibility(self) -> Predicate:
        """Validate that the operator and value type are compatible.

        Returns:
            Predicate: The validated model instance.

        Raises:
            ValueError: If a membership operator is paired with a scalar, or a
                scalar operator with a set.
        """
        try:
            _validate_operator_threshold_types(self.operator, self.value)
        except TypeError as exc:
            raise ValueError(str(exc)) from exc
        return self

    def __str__(self) -> str:
        """Return the predicate as `"<variable> <operator> <value>"`."""
        if self.operator in {"in", "not in"}:
            sorted_values = ", ".join(str(v) for v in sorted(self.value))  # type: ignore[arg-type]
            return f"{self.variable} {self.operator} {{{sorted_values}}}"
        return f"{self.variable} {self.operator} {self.value}"

    def eval(self, x: float | str) -> bool:
        """Evaluate this predicate against a predictor value.

        Args:
            x (float | str): The predictor value to test.

        Returns:
            bool: `True` if the predicate holds for `x`.
        """
        return _apply_operator(self.operator, x, self.value)


class ClassificationRule(BaseModel):
    """The root-to-leaf path of one leaf of a fitted classification tree.

    Attributes:
        predicates (list[Predicate]): Conditions along the path. Empty when the
            tree is a single leaf.
        prediction (str): Label predicted for rows reaching this leaf.
        samples (int): Training rows that reached this leaf.
        confidence (float): Share of the leaf's training rows that carry the
            predicted label.

    Examples:
        >>> rule = ClassificationRule(
        ...     predicates=[Predicate(variable="LoyalCH", operator=">", value=0.4825)],
        ...     prediction="CH",
        ...     samples=412,
        ...     confidence=0.86,
        ... )
        >>> str(rule)
        'IF LoyalCH > 0.4825 THEN CH (samples=412, confidence=0.86)'
    """

    predicates: list[Predicate] = Field(
        description="Predicates along the path from root to this leaf; empty for a single-leaf tree.",
    )
    prediction: str = Field(description="Label predicted for rows reaching this leaf.")
    samples: int = Field(ge=1, description="Number of training rows that reached this leaf.")
    confidence: float = Field(
        ge=0.0,
        le=1.0,
        description="Share of the leaf's training rows carrying the predicted label.",
    )

    def __str__(self) -> str:
        """Return the rule as a single `IF ... THEN ...` line."""
        condition = " AND ".join(str(predicate) for predicate in self.predicates) or "TRUE"
        return f"IF {condition} THEN {self.prediction} (samples={self.samples}, confidence={self.confidence})"

    def matches(self, row: dict[str, Any]) -> bool:
        """Return `True` if every predicate holds for the given row.

        Args:
            row (dict[str, Any]): Mapping of predictor name to value.

        Returns:
            bool: Whether the row reaches this leaf.
        """
        return all(predicate.eval(row[predicate.variable]) for predicate in self.predicates)


# ---------------------------------------------------------------------------
# Private helpers -- Predicate operator evaluation
# ---------------------------------------------------------------------------

_SCALAR_OPS: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}


def _apply_operator(
    op: PredicateOp,
    x: float | str,
    threshold: float | str | set[float] | set[str],
) -> bool:
    """Apply a comparison operator between a predictor value and a threshold.

    Args:
        op (PredicateOp): The comparison operator to apply.
        x (float | str): The predictor value.
        threshold (float | str | set[float] | set[str]): Threshold or label set.

    Returns:
        bool: Result of applying `op` between `x` and `threshold`.

    Raises:
        ValueError: If `op` is not a recognised operator.
    """
    _validate_operator_threshold_types(op, threshold)
    if op in _SCALAR_OPS:
        return _SCALAR_OPS[op](x, threshold)
    if op == "in" and isinstance(threshold, set):
        return x in threshold
    if op == "not in" and isinstance(threshold, set):
        return x not in threshold
    raise ValueError(f"Unexpected operator: {op!r}")


def _validate_operator_threshold_types(
    op: PredicateOp,
    threshold: float | str | set[float] | set[str],
) -> None:
    """Raise TypeError when operator and threshold types are incompatible.

    Raises:
        TypeError: If a scalar operator is paired with a set threshold, or a
            membership operator with a non-set threshold.
    """
    if op in _SCALAR_OPS and isinstance(threshold, set):
        raise TypeError(f"Scalar operator '{op}' cannot compare against a set")
    if op in {"in", "not in"} and not isinstance(threshold, set):
        raise TypeError(f"Membership operator '{op}' requires a set threshold")
