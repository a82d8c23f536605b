"""
Interactor filtering for the Kd pipeline.

Narrows the fitted groups to validated interactors through sequential
gates (convergence, Kd range, abundance or CV), ranks them by CV, and takes
a high-confidence subset at a low CV percentile.
"""

import copy

import numpy as np
import pandas as pd

from .utils import _autosave, _save_table, get_params

PASS = 'pass'
FAIL = 'fail'
INCONCLUSIVE = 'inconclusive'


def abundance_check(kd, max_prey, factor=10.0):
    """
    Compare Kd against the prey concentration.

    Returns 'pass' when ``kd > factor * max_prey``, 'fail' otherwise, and
    'inconclusive' when the prey concentration is unknown.
    """
    kd = np.asarray(kd, dtype=float)
    max_prey = np.asarray(max_prey, dtype=float)
    with np.errstate(invalid='ignore'):
        passed = kd > factor * max_prey
    return np.where(np.isnan(max_prey), INCONCLUSIVE, np.where(passed, PASS, FAIL))


def rank_by_cv(df):
    """Sort by ascending CV (ties by protein_id, bait_id) and add confidence_rank."""
    ranked = df.sort_values(['cv', 'protein_id', 'bait_id'], kind='mergesort').reset_index(drop=True)
    ranked['confidence_rank'] = np.arange(1, len(ranked) + 1)
    return ranked


def high_confidence(interactors, percentile=5.0):
    """
    Keep interactors with CV at or below the given CV percentile.

    Returns
    -------
    tuple
        (subset DataFrame, CV threshold; NaN when there are no interactors)
    """
    cv = interactors['cv'].dropna()
    if cv.empty:
        return interactors.iloc[0:0].copy(), np.nan

    threshold = float(np.percentile(cv.to_numpy(), percentile))
    subset = interactors[interactors['cv'] <= threshold].copy()
    return subset, threshold


def run_filters(fits, max_prey=None, kd_min=1.0, kd_max=1000.0, final_gate='abundance',
                abundance_factor=10.0, cv_max=100.0, keep_inconclusive=False,
                hc_percentile=5.0):
    """
    Apply the interactor gates in order.

    1. converged: drop fits that did not converge
    2. kd_range: keep kd_min <= Kd <= kd_max
    3. abundance: keep Kd > abundance_factor * max prey concentration
       ('inconclusive' rows pass only with keep_inconclusive), or
       cv: keep CV < cv_max
    4. ranking: sort by ascending CV
    5. high_confidence: CV <= hc_percentile-th percentile of CV

    Parameters
    ----------
    fits : pd.DataFrame
        Output table of the fitter.
    max_prey : pd.Series, optional
        protein_id -> maximum prey concentration (nM). Required information
        for the abundance gate; without it every row is inconclusive.

    Returns
    -------
    tuple
        (interactors, high-confidence subset, stage counts DataFrame,
        high-confidence CV threshold)
    """
    counts = []

    def record(stage, before, after):
        counts.append({'stage': stage, 'n_in': len(before), 'n_out': len(after)})
        return after

    current = fits.copy()
    current = record('converged', current, current[current['converged'].astype(bool)])

    in_range = current['kd'].between(kd_min, kd_max, inclusive='both')
    current = record('kd_range', current, current[in_range])

    if final_gate == 'abundance':
        current = current.copy()
        if max_prey is None:
            current['max_prey_conc_nm'] = np.nan
        else:
            current['max_prey_conc_nm'] = current['protein_id'].map(max_prey).astype(float)
        current['abundance_check'] = abundance_check(
            current['kd'], current['max_prey_conc_nm'], abundance_factor)

        keep = current['abundance_check'] == PASS
        if keep_inconclusive:
            keep |= current['abundance_check'] == INCONCLUSIVE
        current = record('abundance', current, current[keep])
    elif final_gate == 'cv':
        current = record('cv', current, current[current['cv'] < cv_max])
    else:
        raise ValueError(f"Unknown final_gate '{final_gate}' (use 'abundance' or 'cv')")

    interactors = record('ranking', current, rank_by_cv(current))

    hc, threshold = high_confidence(interactors, hc_percentile)
    record('high_confidence', interactors, hc)

    return interactors, hc.reset_index(drop=True), pd.DataFrame(counts), threshold


def filter_kd(data):
    """
    Select validated and high-confidence interactors from the fits.

    Filtering options (filtering section, defaults set by the profile):
    - kd_min, kd_max: plausible Kd range in nM (1 or 3, and 1000)
    - final_gate: 'abundance' (TPA check) or 'cv' (flat CV cutoff)
    - abundance_factor: required Kd / prey concentration ratio (10)
    - cv_max: CV cutoff in percent for the 'cv' gate (100)
    - keep_inconclusive: let proteins without a TPA estimate pass (False)
    - hc_percentile: CV percentile for the high-confidence list (5)

    Parameters
    ----------
    data : dict
        Output from fit_kd(), and from tpa_kd() for the abundance gate.

    Returns
    -------
    dict
        Updated data dictionary with:
        - 'interactors': ranked interactor table
        - 'high_confidence': high-confidence subset
        - 'stage_counts': n_in / n_out per filter stage
        - 'hc_threshold': CV threshold of the high-confidence list

    Example
    -------
    >>> data = tpa_kd(fit_kd(data))
    >>> data = filter_kd(data)
    >>> data['stage_counts']
    """

    print("\n" + "="*80)
    print("INTERACTOR FILTERING")
    print("="*80)

    params = get_params(data['config'], 'filtering')
    max_prey = data.get('max_prey')

    print(f"\nKd range: {params['kd_min']:g} to {params['kd_max']:g} nM")
    if params['final_gate'] == 'abundance':
        print(f"Abundance gate: Kd > {params['abundance_factor']:g} x max prey concentration")
        print(f"  Unknown prey concentration: "
              f"{'kept' if params['keep_inconclusive'] else 'dropped'} (inconclusive)")
        if max_prey is None:
            print(f"  Warning: No TPA estimates, run tpa_kd() first; all rows are inconclusive")
    else:
        print(f"CV gate: CV < {params['cv_max']:g}%")
    print(f"High confidence: CV <= {params['hc_percentile']:g}th percentile")

    interactors, hc, stage_counts, threshold = run_filters(
        data['fits'], max_prey,
        kd_min=params['kd_min'], kd_max=params['kd_max'],
        final_gate=params['final_gate'],
        abundance_factor=params['abundance_factor'],
        cv_max=params['cv_max'],
        keep_inconclusive=params['keep_inconclusive'],
        hc_percentile=params['hc_percentile'],
    )

    info = data['protein_info'][['accession', 'gene_symbol']]
    interactors = interactors.join(info, on='protein_id')
    hc = hc.join(info, on='protein_id')

    print(f"\n  {'Stage':18} {'In':>8} {'Out':>8}")
    for row in stage_counts.itertuples(index=False):
        print(f"  {row.stage:18} {row.n_in:8d} {row.n_out:8d}")
    if np.isfinite(threshold):
        print(f"\n  > High-confidence CV threshold: {threshold:.2f}%")

    if 'abundance_check' in interactors.columns:
        n_inconclusive = int((interactors['abundance_check'] == INCONCLUSIVE).sum())
        if n_inconclusive:
            print(f"  > {n_inconclusive} interactors kept with inconclusive abundance check")

    data_updated = copy.copy(data)
    data_updated['interactors'] = interactors
    data_updated['high_confidence'] = hc
    data_updated['stage_counts'] = stage_counts
    data_updated['hc_threshold'] = threshold
    data_updated['filter_params'] = params

    print(f"\n[Saving results]")
    _save_table(data_updated, interactors, 'interactors.csv')
    _save_table(data_updated, hc, 'high_confidence.csv')
    _save_table(data_updated, stage_counts, 'stage_counts.csv')
    _autosave(data_updated, 'filter')

    print("\n" + "="*80)
    print("FILTERING COMPLETE")
    print("="*80)
    print(f"\nInteractors:             {len(interactors)}")
    print(f"High confidence:         {len(hc)}")
    print("="*80 + "\n")

    return data_updated
