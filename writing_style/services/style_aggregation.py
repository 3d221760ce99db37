"""Incremental style matrix aggregation.

Pure functions that fold one ``FeatureVector`` into a ``StyleMatrix``:

- continuous metrics keep Welford running statistics (count, mean, M2),
  updated in a single pass without storing earlier values;
- count metrics keep running totals;
- categorical metrics keep a frequency map bounded to the top K values.

Nothing here touches the store; persistence lives in
``WritingStyleService``.
"""

from writing_style.models.style import (
    CATEGORICAL_METRICS,
    CONTINUOUS_METRICS,
    COUNT_METRICS,
    FeatureVector,
    StyleMatrix,
    WelfordState,
)

DEFAULT_TOP_K = 12


def welford_initialize(value: float) -> WelfordState:
    """Start Welford statistics from a first observation."""
    return WelfordState(count=1, mean=value, m2=0.0)


def welford_update(state: WelfordState, value: float) -> WelfordState:
    """Fold one observation into Welford running statistics.

    Args:
        state: Statistics over all previous observations.
        value: The new observation.

    Returns:
        Statistics over the previous observations plus ``value``.
    """
    count = state.count + 1
    delta = value - state.mean
    mean = state.mean + delta / count
    m2 = state.m2 + delta * (value - mean)
    return WelfordState(count=count, mean=mean, m2=m2)


def sum_update(total: int, value: int) -> int:
    """Add a count metric to its running total."""
    return total + value


def top_k_update(freq_map: dict[str, int], value: str, k: int = DEFAULT_TOP_K) -> dict[str, int]:
    """Record one categorical observation in a bounded frequency map.

    Empty values are not recorded.  Whenever the map holds more than ``k``
    entries, including one persisted under a larger bound, only the ``k``
    highest counts are kept; equal counts keep first-seen order.  The input
    map is not modified.

    Args:
        freq_map: Current value → count map.
        value: Normalized categorical value, possibly empty.
        k: Maximum number of entries to retain.

    Returns:
        The updated frequency map.
    """
    updated = dict(freq_map)
    if value:
        updated[value] = updated.get(value, 0) + 1

    if len(updated) > k:
        # sorted() is stable, so ties keep insertion (first-seen) order
        ranked = sorted(updated.items(), key=lambda item: -item[1])
        updated = dict(ranked[:k])
    return updated


def bootstrap_style_matrix(vector: FeatureVector) -> StyleMatrix:
    """Build the style matrix for a connection's first email."""
    return StyleMatrix(
        continuous={name: welford_initialize(getattr(vector, name)) for name in CONTINUOUS_METRICS},
        counts={name: getattr(vector, name) for name in COUNT_METRICS},
        categorical={
            name: ({value: 1} if (value := getattr(vector, name)) else {})
            for name in CATEGORICAL_METRICS
        },
    )


def merge_style_matrix(
    matrix: StyleMatrix,
    vector: FeatureVector,
    top_k: int = DEFAULT_TOP_K,
) -> StyleMatrix:
    """Fold one more email's features into an existing style matrix.

    Every continuous metric advances in the same call, so all Welford
    counts stay equal.

    Args:
        matrix: The current aggregate.
        vector: Features of the new email.
        top_k: Bound for categorical frequency maps.

    Returns:
        A new matrix; ``matrix`` is left unchanged.
    """
    return StyleMatrix(
        continuous={
            name: welford_update(matrix.continuous[name], getattr(vector, name))
            for name in CONTINUOUS_METRICS
        },
        counts={
            name: sum_update(matrix.counts[name], getattr(vector, name)) for name in COUNT_METRICS
        },
        categorical={
            name: top_k_update(matrix.categorical[name], getattr(vector, name), top_k)
            for name in CATEGORICAL_METRICS
        },
    )
