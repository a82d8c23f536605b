"""
Total Protein Approach (TPA) concentration estimates.

A protein's molar concentration in a sample is estimated from its share of
the sample's total signal and its molecular weight. The estimate is used to
check that prey concentration is small relative to the fitted Kd.
"""

import copy

from .errors import MissingReferenceDataError
from .utils import _autosave, _save_table, get_params


def tpa_concentrations(df, protein_info, strict=False):
    """
    Per-sample TPA estimate for every protein.

    ``tpa = intensity / sum(intensity in sample) / (MW_kDa * 1000)`` (mol/g
    of total protein) and ``prey_conc_nm = tpa * 1e9``. Zero or missing
    intensity gives NaN, never 0.

    Parameters
    ----------
    df : pd.DataFrame
        Observation table with raw 'intensity'.
    protein_info : pd.DataFrame
        Reference table indexed by protein_id with 'mw_kda'.
    strict : bool, optional
        Raise MissingReferenceDataError when a protein has no usable
        molecular weight (default: False, its estimates are NaN).

    Returns
    -------
    tuple
        (pd.DataFrame of per-sample estimates, list of protein ids without
        molecular weight)
    """
    intensity = df['intensity'].where(df['intensity'] > 0)
    sample_total = intensity.groupby(df['sample']).transform('sum')

    mw = df['protein_id'].map(protein_info['mw_kda']).astype(float)
    mw = mw.where(mw > 0)

    missing_mw = sorted(df.loc[mw.isna(), 'protein_id'].unique().tolist())
    if missing_mw and strict:
        raise MissingReferenceDataError(missing_mw)

    tpa = intensity / sample_total / (mw * 1000)

    out = df[['protein_id', 'bait_id', 'sample', 'concentration', 'intensity']].copy()
    out['mw_kda'] = mw
    out['tpa'] = tpa
    out['prey_conc_nm'] = tpa * 1e9
    return out.reset_index(drop=True), missing_mw


def max_prey_concentration(tpa_df):
    """Maximum prey concentration (nM) per protein over all samples; NaN if none defined."""
    return tpa_df.groupby('protein_id')['prey_conc_nm'].max().rename('max_prey_conc_nm')


def tpa_kd(data):
    """
    Estimate prey concentrations with the Total Protein Approach.

    Uses the raw observation table from prep_kd(), independent of the
    normalization and gating applied for fitting.

    Parameters
    ----------
    data : dict
        Output of any stage after prep_kd().

    Returns
    -------
    dict
        Updated data dictionary with:
        - 'tpa': per-sample estimates
        - 'max_prey': pd.Series protein_id -> maximum prey concentration (nM)
        - metadata['proteins_missing_mw']: proteins without molecular weight

    Raises
    ------
    MissingReferenceDataError
        When tpa.strict is set and a protein lacks a molecular weight.

    Example
    -------
    >>> data = tpa_kd(data)
    >>> data['max_prey'].sort_values().tail()
    """

    print("\n" + "="*80)
    print("TPA CONCENTRATION ESTIMATES")
    print("="*80)

    params = get_params(data['config'], 'tpa')
    observations = data.get('observations', data['df'])

    tpa_df, missing_mw = tpa_concentrations(observations, data['protein_info'], params['strict'])
    max_prey = max_prey_concentration(tpa_df)

    n_defined = int(max_prey.notna().sum())
    print(f"\n  > Estimated {n_defined}/{len(max_prey)} proteins")
    if n_defined:
        print(f"    Max prey concentration: {max_prey.min():.3g} to {max_prey.max():.3g} nM")
    if missing_mw:
        print(f"  Warning: {len(missing_mw)} proteins have no molecular weight; "
              f"their abundance check will be inconclusive")

    metadata = copy.deepcopy(data['metadata'])
    metadata['proteins_missing_mw'] = missing_mw

    data_updated = copy.copy(data)
    data_updated['tpa'] = tpa_df
    data_updated['max_prey'] = max_prey
    data_updated['metadata'] = metadata

    _save_table(data_updated, tpa_df, 'tpa_concentrations.csv')
    _autosave(data_updated, 'tpa')

    print("\n" + "="*80 + "\n")

    return data_updated
