"""
Missing-value handling for the Kd pipeline.

Zero or missing readings inside a (protein, bait) dilution series are split
into left-censored values (below detection, imputed) and values missing at
random (excluded from fitting). Groups with too many gaps are dropped before
fitting.
"""

import copy

import numpy as np
import pandas as pd

from .errors import InsufficientDataError
from .utils import _autosave, _save_table, get_params

GROUP_KEYS = ['protein_id', 'bait_id']

OBSERVED = 'observed'
CENSORED = 'censored'
MISSING = 'missing'


def classify_missing(df, value_col='lfq'):
    """
    Label every reading as observed, censored or missing.

    Within each (protein, bait) group, let ``max_conc`` be the highest
    concentration with a non-zero reading. A zero/NaN reading below
    ``max_conc`` is censored; one at or above it (or in a group without any
    signal) is missing at random.

    Returns
    -------
    pd.Series
        Status per row, aligned to df.
    """
    observed = df[value_col].fillna(0) > 0
    max_conc = (
        df['concentration'].where(observed)
        .groupby([df[k] for k in GROUP_KEYS]).transform('max')
    )
    # NaN max_conc (no signal at all) compares False -> missing
    censored = ~observed & (df['concentration'] < max_conc)

    status = np.select([observed, censored], [OBSERVED, CENSORED], default=MISSING)
    return pd.Series(status, index=df.index, name='status')


def group_missing_counts(df):
    """Count observed, censored and missing readings per group."""
    counts = (
        pd.crosstab([df[k] for k in GROUP_KEYS], df['status'])
        .reindex(columns=[OBSERVED, CENSORED, MISSING], fill_value=0)
    )
    counts.columns = ['n_observed', 'n_censored', 'n_missing']
    counts.columns.name = None
    return counts.reset_index()


def check_group_counts(n_observed, n_censored, n_missing,
                       min_nonzero=5, max_censored=3, max_missing=4, max_combined=5):
    """
    Raise InsufficientDataError if a group fails the acceptance gate.
    """
    problems = []
    if n_observed < min_nonzero:
        problems.append(f"{n_observed} non-zero points < {min_nonzero}")
    if n_censored > max_censored:
        problems.append(f"{n_censored} censored points > {max_censored}")
    if n_missing > max_missing:
        problems.append(f"{n_missing} missing points > {max_missing}")
    if n_censored + n_missing > max_combined:
        problems.append(f"{n_censored + n_missing} censored+missing points > {max_combined}")

    if problems:
        raise InsufficientDataError('; '.join(problems))


def missing_gate(counts, min_nonzero=5, max_censored=3, max_missing=4, max_combined=5):
    """
    Apply the acceptance gate to every group.

    Parameters
    ----------
    counts : pd.DataFrame
        Output of ``group_missing_counts``.

    Returns
    -------
    pd.DataFrame
        counts with 'passed' (bool) and 'reason' (str, empty when passed).
    """
    passed = []
    reasons = []
    for row in counts.itertuples(index=False):
        try:
            check_group_counts(row.n_observed, row.n_censored, row.n_missing,
                               min_nonzero, max_censored, max_missing, max_combined)
        except InsufficientDataError as e:
            passed.append(False)
            reasons.append(str(e))
        else:
            passed.append(True)
            reasons.append('')

    gated = counts.copy()
    gated['passed'] = passed
    gated['reason'] = reasons
    return gated


def impute_censored(df, scope='global', value_col='lfq'):
    """
    Fill censored readings with the minimum observed value at their concentration.

    Parameters
    ----------
    df : pd.DataFrame
        Table with 'status' from ``classify_missing``.
    scope : str, optional
        'global': minimum over all groups at that concentration (default).
        'bait': minimum over groups of the same bait_id at that concentration.

    Returns
    -------
    pd.Series
        Values with censored rows imputed and missing rows set to NaN.
    """
    if scope == 'global':
        keys = ['concentration']
    elif scope == 'bait':
        keys = ['bait_id', 'concentration']
    else:
        raise ValueError(f"Unknown impute_scope '{scope}' (use 'global' or 'bait')")

    observed = df['status'] == OBSERVED
    floor = df.loc[observed].groupby(keys)[value_col].min().rename('_floor')
    floor_per_row = df[keys].join(floor, on=keys)['_floor']

    values = df[value_col].where(observed)
    censored = df['status'] == CENSORED
    values = values.where(~censored, floor_per_row)
    return values


def resolve_missing(data):
    """
    Classify gaps, drop under-populated groups, and impute censored values.

    Gate options (missing_values section):
    - min_nonzero: minimum non-zero points per group (default 5)
    - max_censored: maximum censored points (default 3)
    - max_missing: maximum missing-at-random points (default 4)
    - max_combined: maximum censored + missing points (default 5)
    - impute_scope: 'global' or 'bait' (default 'global')

    Parameters
    ----------
    data : dict
        Output from norm_kd().

    Returns
    -------
    dict
        Updated data dictionary with:
        - 'df': only gated-in groups, with 'status' and imputed 'lfq'
        - 'missing_counts': per-group counts and gate outcome
        - 'excluded_groups': groups dropped, with stage and reason

    Example
    -------
    >>> data = norm_kd(data)
    >>> data = resolve_missing(data)
    """

    print("\n" + "="*80)
    print("MISSING VALUES AND CENSORING")
    print("="*80)

    params = get_params(data['config'], 'missing_values')
    df = data['df'].copy()

    print(f"\nGate: >= {params['min_nonzero']} non-zero, <= {params['max_censored']} censored, "
          f"<= {params['max_missing']} missing, <= {params['max_combined']} combined")
    print(f"Imputation scope: {params['impute_scope']}")

    # =========================================================================
    # 1. CLASSIFY
    # =========================================================================
    print(f"\n[1/3] Classifying zero/missing readings...")

    df['status'] = classify_missing(df)
    status_counts = df['status'].value_counts()
    for status in (OBSERVED, CENSORED, MISSING):
        print(f"  {status}: {int(status_counts.get(status, 0))} readings")

    # =========================================================================
    # 2. GATE
    # =========================================================================
    print(f"\n[2/3] Applying group acceptance gate...")

    gated = missing_gate(
        group_missing_counts(df),
        params['min_nonzero'], params['max_censored'],
        params['max_missing'], params['max_combined'],
    )
    n_total = len(gated)
    n_passed = int(gated['passed'].sum())
    print(f"  > {n_passed}/{n_total} groups pass, {n_total - n_passed} excluded")

    excluded = gated.loc[~gated['passed'], ['protein_id', 'bait_id', 'reason']].copy()
    excluded.insert(2, 'stage', 'missing_gate')

    # =========================================================================
    # 3. IMPUTE
    # =========================================================================
    print(f"\n[3/3] Imputing censored values...")

    df['lfq'] = impute_censored(df, params['impute_scope'])

    keep = gated.loc[gated['passed'], ['protein_id', 'bait_id']]
    df = df.merge(keep, on=['protein_id', 'bait_id'], how='inner')

    n_imputed = int((df['status'] == CENSORED).sum())
    n_unfilled = int(((df['status'] == CENSORED) & df['lfq'].isna()).sum())
    print(f"  > Imputed {n_imputed - n_unfilled} censored values in retained groups")
    if n_unfilled:
        print(f"  Warning: {n_unfilled} censored values had no observed value at their "
              f"concentration and were left undefined")
    print(f"  > {int((df['status'] == MISSING).sum())} missing-at-random readings excluded from fitting")

    data_updated = copy.copy(data)
    data_updated['df'] = df
    data_updated['missing_counts'] = gated
    data_updated['excluded_groups'] = excluded.reset_index(drop=True)
    data_updated['missing_params'] = params

    _save_table(data_updated, gated, 'missing_value_counts.csv')
    _autosave(data_updated, 'missing')

    print("\n" + "="*80)
    print("MISSING VALUE RESOLUTION COMPLETE")
    print("="*80)
    print(f"\nNext step: response_kd() to derive binding responses")
    print("="*80 + "\n")

    return data_updated
