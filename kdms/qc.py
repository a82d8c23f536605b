"""
Quality control functions for the Kd pipeline.

Summarizes per-sample detection and intensity, and handles sample dropping
after QC review or when normalization finds a degenerate sample.
"""

import copy

import numpy as np

from .utils import _save_table


def sample_summary(df):
    """
    Per-sample detection summary.

    Returns
    -------
    pd.DataFrame
        One row per sample: bait_id, concentration, n_detected, pct_missing,
        median_intensity (over non-zero readings, NaN when none).
    """
    detected = df['intensity'].fillna(0) > 0
    work = df.assign(_detected=detected,
                     _nonzero=df['intensity'].where(detected))

    summary = work.groupby('sample').agg(
        bait_id=('bait_id', 'first'),
        concentration=('concentration', 'first'),
        n_proteins=('protein_id', 'size'),
        n_detected=('_detected', 'sum'),
        median_intensity=('_nonzero', 'median'),
    ).reset_index()

    summary['pct_missing'] = 100.0 * (1 - summary['n_detected'] / summary['n_proteins'])
    summary = summary.sort_values(['bait_id', 'concentration']).reset_index(drop=True)
    return summary[['sample', 'bait_id', 'concentration', 'n_proteins',
                    'n_detected', 'pct_missing', 'median_intensity']]


def qc_kd(data):
    """
    Print and return a per-sample QC summary.

    Flags samples without any detected protein, which median normalization
    cannot scale.

    Parameters
    ----------
    data : dict
        Output from prep_kd().

    Returns
    -------
    pd.DataFrame
        Per-sample summary (see ``sample_summary``).

    Example
    -------
    >>> summary = qc_kd(data)
    >>> data = drop_samples(data, ['PTPN11_7'])
    """

    print("\n" + "="*80)
    print("QUALITY CONTROL SUMMARY")
    print("="*80)

    summary = sample_summary(data['df'])

    total = summary['n_proteins'].sum()
    pct_missing = 100.0 * (1 - summary['n_detected'].sum() / total) if total else np.nan
    print(f"\n  Overall: {pct_missing:.1f}% missing values")

    print(f"\n  Detected proteins per sample:")
    for _, row in summary.iterrows():
        print(f"    {row['sample']:24} {int(row['n_detected']):6d} "
              f"({row['pct_missing']:.1f}% missing)")

    empty = summary.loc[summary['n_detected'] == 0, 'sample'].tolist()
    if empty:
        print(f"\n  Warning: {len(empty)} sample(s) have no detected proteins: {', '.join(empty)}")
        print(f"  These cannot be median-normalized; drop them with drop_samples()")

    _save_table(data, summary, 'qc_sample_summary.csv')

    print("\n" + "="*80 + "\n")

    return summary


def drop_samples(data, samples_to_drop):
    """
    Remove samples from the dataset.

    Parameters
    ----------
    data : dict
        Output from prep_kd() (or any later stage before fitting).
    samples_to_drop : list of str or dict
        Samples to remove. Can be:
        - List of sample names: ['PTPN11_7', 'PTPN11-Rep2-GST']
        - Dict mapping bait_id to exponents: {'PTPN11': [7], 'GRB2': ['GST']};
          exponents may also be strings, e.g. '7' from a YAML or CLI value

    Returns
    -------
    dict
        Updated data dictionary with samples removed.

    Example
    -------
    >>> data = drop_samples(data, ['PTPN11_7'])
    >>> data = drop_samples(data, {'PTPN11-Rep1': [6, 7]})
    """

    df = data['df']
    control_token = (data['config'].get('design') or {}).get('control_token', 'GST')

    print("\n" + "="*80)
    print("DROP SAMPLES")
    print("="*80)

    if isinstance(samples_to_drop, dict):
        to_drop = []
        for bait_id, levels in samples_to_drop.items():
            sub = df[df['bait_id'] == bait_id]
            if sub.empty:
                print(f"  Warning: Bait '{bait_id}' not found")
                continue
            for level in levels:
                if str(level) == control_token:
                    mask = sub['concentration'] == 0
                else:
                    try:
                        mask = sub['exponent'] == int(level)
                    except ValueError:
                        raise ValueError(
                            f"Level '{level}' for {bait_id} is neither an integer "
                            f"exponent nor '{control_token}'"
                        ) from None
                names = sub.loc[mask, 'sample'].unique().tolist()
                if not names:
                    print(f"  Warning: {bait_id} level {level} doesn't exist")
                to_drop.extend(names)
    elif isinstance(samples_to_drop, (list, tuple, set)):
        to_drop = list(samples_to_drop)
    else:
        raise ValueError("samples_to_drop must be a list of sample names or a dict")

    present = set(df['sample'].unique())
    to_drop = [s for s in dict.fromkeys(to_drop) if s in present]

    if not to_drop:
        print("\nNo valid samples to drop.")
        return data

    print(f"\nDropping {len(to_drop)} sample(s):")
    for sample in to_drop:
        print(f"  - {sample}")

    df_updated = df[~df['sample'].isin(to_drop)].reset_index(drop=True)

    metadata_updated = copy.deepcopy(data['metadata'])
    metadata_updated['n_samples'] = df_updated['sample'].nunique()
    metadata_updated['samples_dropped'] = list(metadata_updated.get('samples_dropped', [])) + to_drop
    metadata_updated['levels_per_bait'] = {
        b: sorted(sub['concentration'].unique().tolist())
        for b, sub in df_updated.groupby('bait_id')
    }
    metadata_updated['baits'] = sorted(metadata_updated['levels_per_bait'])

    data_updated = copy.copy(data)
    data_updated['df'] = df_updated
    data_updated['metadata'] = metadata_updated
    if 'observations' in data:
        observations = data['observations']
        data_updated['observations'] = observations[
            ~observations['sample'].isin(to_drop)].reset_index(drop=True)

    print(f"\nRemaining samples: {metadata_updated['n_samples']}")
    print("="*80 + "\n")

    return data_updated
