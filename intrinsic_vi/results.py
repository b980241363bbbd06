"""
Combining importance estimates into comparison tables.

Estimates are computed independently (typically one per covariate group) and
merged read-only: no estimate is recomputed and no multiple-comparison
adjustment is applied.
"""

from typing import Iterator, List, Tuple, Union

import pandas as pd

from .estimate import ImportanceEstimate
from .exceptions import InvalidInputError

TABLE_COLUMNS = ['s', 'est', 'se', 'cil', 'ciu', 'test', 'p_value']


class ComparisonTable:
    """
    Immutable, ordered collection of importance estimates.

    Rows are sorted by decreasing point estimate. Each row is the
    :class:`ImportanceEstimate` passed to :func:`merge_estimates`, unchanged.

    Examples
    --------
    >>> table = merge_estimates(est_x1, est_x2)
    >>> table.to_frame()
    """

    def __init__(self, estimates: Tuple[ImportanceEstimate, ...]):
        self._rows = tuple(
            sorted(estimates, key=lambda est: est.point_estimate, reverse=True)
        )

    @property
    def rows(self) -> Tuple[ImportanceEstimate, ...]:
        return self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def __iter__(self) -> Iterator[ImportanceEstimate]:
        return iter(self._rows)

    def __getitem__(self, i: int) -> ImportanceEstimate:
        return self._rows[i]

    @property
    def feature_sets(self) -> List[Tuple[int, ...]]:
        return [est.feature_set for est in self._rows]

    def to_frame(self) -> pd.DataFrame:
        """
        Summary table with one row per estimate.

        Returns
        -------
        df : pd.DataFrame
            Columns ``s`` (feature indices), ``est``, ``se``, ``cil``,
            ``ciu``, ``test`` and ``p_value``
        """
        records = [
            {key: est.to_dict()[key] for key in TABLE_COLUMNS}
            for est in self._rows
        ]
        return pd.DataFrame(records, columns=TABLE_COLUMNS)

    def __repr__(self) -> str:
        return f"ComparisonTable(n_rows={len(self)})\n{self.to_frame().to_string(index=False)}"


def merge_estimates(*estimates: Union[ImportanceEstimate, ComparisonTable]) -> ComparisonTable:
    """
    Merge importance estimates into a single table.

    Parameters
    ----------
    *estimates : ImportanceEstimate or ComparisonTable
        Estimates to merge; rows of existing tables are included as-is

    Returns
    -------
    ComparisonTable
        Rows ordered by decreasing point estimate
    """
    rows = []
    for item in estimates:
        if isinstance(item, ComparisonTable):
            rows.extend(item.rows)
        elif isinstance(item, ImportanceEstimate):
            rows.append(item)
        else:
            raise InvalidInputError(
                f"can only merge ImportanceEstimate objects, got {type(item).__name__}"
            )
    if not rows:
        raise InvalidInputError("no estimates to merge")
    measures = {est.measure_type for est in rows}
    if len(measures) > 1:
        raise InvalidInputError(
            f"cannot merge estimates of different measures: "
            f"{sorted(m.value for m in measures)}"
        )
    return ComparisonTable(tuple(rows))


def format_estimate_ci(est: float, lower: float, upper: float, precision: int = 3) -> str:
    """
    Format an estimate with its confidence interval.

    Returns
    -------
    formatted : str
        String like "0.052 [0.011, 0.093]"
    """
    fmt = f"{{:.{precision}f}}"
    return f"{fmt.format(est)} [{fmt.format(lower)}, {fmt.format(upper)}]"


def format_importance_table(table: ComparisonTable, precision: int = 3) -> pd.DataFrame:
    """
    Format a comparison table for display.

    Parameters
    ----------
    table : ComparisonTable
        Merged estimates
    precision : int, default=3
        Number of decimal places

    Returns
    -------
    df : pd.DataFrame
        Indexed by feature set, with columns 'Estimate [CI]', 'SE' and
        'p-value'
    """
    fmt = f"{{:.{precision}f}}"
    data = {
        'Estimate [CI]': [
            format_estimate_ci(est.point_estimate, *est.confidence_interval, precision=precision)
            for est in table
        ],
        'SE': [fmt.format(est.standard_error) for est in table],
        'p-value': [
            '' if est.p_value is None else fmt.format(est.p_value)
            for est in table
        ],
    }
    return pd.DataFrame(data, index=[est.label for est in table])
