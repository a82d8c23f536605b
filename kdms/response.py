"""
Response transformation for the Kd pipeline.

Turns unbound-protein signal into a response that grows with bait
occupancy: the drop of each reading below the group's maximum.
"""

import copy

from .utils import _autosave

GROUP_KEYS = ['protein_id', 'bait_id']


def compute_response(df, value_col='lfq'):
    """
    Response per reading: ``max(lfq in group) - lfq``.

    Non-negative, and exactly 0 at the group's maximum reading. NaN lfq
    stays NaN.
    """
    group_max = df.groupby(GROUP_KEYS)[value_col].transform('max')
    return (group_max - df[value_col]).rename('response')


def response_kd(data):
    """
    Add the 'response' column used for fitting.

    Parameters
    ----------
    data : dict
        Output from resolve_missing().

    Returns
    -------
    dict
        Updated data dictionary with 'response' in data['df'].
    """

    print("\n" + "="*80)
    print("RESPONSE TRANSFORMATION")
    print("="*80)

    df = data['df'].copy()
    df['response'] = compute_response(df)
    df = df.sort_values(GROUP_KEYS + ['concentration']).reset_index(drop=True)

    n_valid = int(df['response'].notna().sum())
    print(f"\n  > {n_valid} fit-ready points in "
          f"{df.groupby(GROUP_KEYS).ngroups} groups")

    data_updated = copy.copy(data)
    data_updated['df'] = df

    _autosave(data_updated, 'response')

    print(f"\nNext step: fit_kd() for isotherm fitting")
    print("="*80 + "\n")

    return data_updated
