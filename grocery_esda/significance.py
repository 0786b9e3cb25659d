import numpy as np
from scipy import stats

ALTERNATIVES = ("two-sided", "greater", "lesser", "directed", "folded")

_ALIASES = {"less": "lesser", "two_sided": "two-sided", "two-tailed": "two-sided"}


def _resolve_alternative(alternative):
    alternative = _ALIASES.get(alternative, alternative)
    if alternative not in ALTERNATIVES:
        raise ValueError(
            f"alternative='{alternative}' provided, but is not"
            f" one of the supported options: {', '.join(ALTERNATIVES)}"
        )
    return alternative


def calculate_significance(test_stat, reference_distribution, alternative="greater"):
    """
    Calculate a pseudo p-value from a reference distribution.

    Pseudo-p values are calculated using the formula (M + 1) / (R + 1). Where R is
    the number of simulations and M is the number of times that the simulated value
    was equal to, or more extreme than the observed test statistic.

    Parameters
    ----------
    test_stat: float
        The observed test statistic
    reference_distribution: numpy.ndarray
        A 1-d array containing simulated test statistics from random permutation.
    alternative: string
        One of 'two-sided', 'lesser' (or 'less'), 'greater', 'folded', or
        'directed'. Indicates the alternative hypothesis.
        - 'greater': the observed test statistic is large relative to the reference
          distribution.
        - 'lesser': the observed test statistic is small relative to the reference
          distribution.
        - 'two-sided': the observed test statistic is in either tail. The p-value is
          twice the smaller of the 'greater' and 'lesser' p-values, capped at 1.
        - 'folded': the observed test statistic is an extreme value of the reference
          distribution folded about its mean.
        - 'directed': the tail is selected depending on the test statistic. This
          is included solely to reproduce past results.

    Returns
    -------
    float in (0, 1]

    Notes
    -----
    The smallest attainable p-value is 1 / (R + 1) for the directed alternatives.
    """
    alternative = _resolve_alternative(alternative)
    reference_distribution = np.asarray(reference_distribution, dtype=float).ravel()
    n_permutations = reference_distribution.shape[0]
    if n_permutations < 1:
        raise ValueError("reference distribution is empty")

    if alternative == "greater":
        extreme = (reference_distribution >= test_stat).sum()
    elif alternative == "lesser":
        extreme = (reference_distribution <= test_stat).sum()
    elif alternative == "two-sided":
        greater = (reference_distribution >= test_stat).sum()
        lesser = (reference_distribution <= test_stat).sum()
        p_value = 2.0 * (min(greater, lesser) + 1.0) / (n_permutations + 1.0)
        return float(min(p_value, 1.0))
    elif alternative == "directed":
        larger = (reference_distribution >= test_stat).sum()
        if (n_permutations - larger) < larger:
            larger = n_permutations - larger
        extreme = larger
    else:
        mean = reference_distribution.mean()
        extreme = (
            np.abs(reference_distribution - mean) >= np.abs(test_stat - mean)
        ).sum()
    return float((extreme + 1.0) / (n_permutations + 1.0))


def normal_significance(z, alternative="two-sided"):
    """
    p-value of a standard normal deviate.

    'directed' is the one-tailed p-value in the direction of ``z``; 'folded'
    is not defined for an analytical distribution and is treated as
    'two-sided'.
    """
    alternative = _resolve_alternative(alternative)
    if alternative == "greater":
        return stats.norm.sf(z)
    if alternative == "lesser":
        return stats.norm.cdf(z)
    if alternative == "directed":
        return stats.norm.sf(z) if z > 0 else stats.norm.cdf(z)
    return 2.0 * stats.norm.sf(abs(z))
