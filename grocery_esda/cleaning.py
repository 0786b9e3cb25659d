"""
Tabular preparation of regional covariates before they reach the statistics.
"""

import re
import warnings

import numpy as np
import pandas as pd

from .exceptions import InputError

__all__ = [
    "clean_numeric",
    "apply_percentage_policy",
    "drop_incomplete",
    "per_capita",
    "PERCENTAGE_POLICIES",
]

PERCENTAGE_POLICIES = ("clip", "rescale", "nan", "error")

_MISSING = {"", "na", "n/a", "nan", "--", "none", "null"}
_DECORATION = re.compile(r"[()$%,]")


def _to_float(value):
    if value is None:
        return np.nan
    if isinstance(value, (int, float, np.number)):
        return float(value)
    s = str(value).strip()
    if s.lower() in _MISSING:
        return np.nan
    # "(12.5%)" and "$41,200" keep the number once decoration is removed;
    # any other text is not a number
    s = _DECORATION.sub("", s).strip()
    try:
        return float(s)
    except ValueError:
        return np.nan


def clean_numeric(values):
    """
    Coerce reported figures such as ``"12.5%"``, ``"$41,200"`` or ``"N/A"``
    to floats, with NaN for anything that is not a number.

    Parameters
    ----------
    values : pandas.Series | sequence

    Returns
    -------
    pandas.Series
        float series with the same index as ``values``
    """
    series = values if isinstance(values, pd.Series) else pd.Series(values)
    return series.map(_to_float).astype(float)


def apply_percentage_policy(values, policy="clip", population=None):
    """
    Resolve percentage values outside [0, 100].

    Parameters
    ----------
    values     : pandas.Series | sequence
                 percentages, possibly mixed with raw counts
    policy     : {'clip', 'rescale', 'nan', 'error'}
                 - 'clip': clip every value to [0, 100].
                 - 'rescale': values above 100 are taken to be head counts and
                   converted to a percentage of ``population``, then clipped.
                   Values above 100 without a usable population become NaN.
                 - 'nan': values outside [0, 100] become NaN.
                 - 'error': raise an ``InputError`` if any value is outside
                   [0, 100].
    population : pandas.Series | sequence
                 population aligned with ``values``, required by 'rescale'

    Returns
    -------
    pandas.Series
        a new float series; the input is not modified
    """
    if policy not in PERCENTAGE_POLICIES:
        raise ValueError(
            f"policy must be one of {PERCENTAGE_POLICIES}, received '{policy}'"
        )
    pct = clean_numeric(values)
    outside = (pct < 0) | (pct > 100)
    if not outside.any():
        return pct
    if policy == "error":
        raise InputError(
            f"{int(outside.sum())} percentage value(s) fall outside [0, 100]"
            f" at {pct.index[outside].tolist()}"
        )
    if policy == "nan":
        result = pct.mask(outside)
    elif policy == "clip":
        result = pct.clip(0.0, 100.0)
    else:
        if population is None:
            raise ValueError("the 'rescale' policy requires a population")
        population = clean_numeric(population)
        population.index = pct.index
        counts = pct > 100
        usable = counts & (population > 0)
        result = pct.copy()
        result[usable] = pct[usable] / population[usable] * 100.0
        result[counts & ~usable] = np.nan
        result = result.clip(0.0, 100.0)
    warnings.warn(
        f"{int(outside.sum())} percentage value(s) outside [0, 100] were"
        f" resolved with the '{policy}' policy",
        stacklevel=2,
    )
    return result


def drop_incomplete(df, columns):
    """
    Exclude rows with a missing or non-finite value in any of ``columns``.

    Returns
    -------
    pandas.DataFrame
        a copy holding only the complete rows, in their original order
    """
    columns = list(columns)
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise InputError(f"columns {missing} are not in the table")
    values = df[columns].apply(pd.to_numeric, errors="coerce")
    complete = np.isfinite(values.to_numpy(dtype=float)).all(axis=1)
    n_dropped = int((~complete).sum())
    if n_dropped:
        warnings.warn(
            f"{n_dropped} of {len(df)} rows have missing values in {columns}"
            " and were excluded",
            stacklevel=2,
        )
    return df.loc[complete].copy()


def per_capita(counts, population, scale=1000.0):
    """
    Counts per ``scale`` residents, such as grocery stores per 1,000 people.

    Regions with a zero or missing population get NaN.
    """
    counts = clean_numeric(counts)
    population = clean_numeric(population)
    population.index = counts.index
    return (counts / population.where(population > 0)) * scale
