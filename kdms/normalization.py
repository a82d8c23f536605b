"""
Normalization functions for the Kd pipeline.

Supports median normalization onto a common log2 reference, and passthrough
of label-free quantitation values that are already normalized upstream.
"""

import copy

import numpy as np

from .errors import DegenerateSampleError
from .qc import drop_samples
from .utils import _autosave, get_params


def sample_medians_log2(df, value_col='intensity'):
    """
    Log2 of each sample's median non-zero value.

    Zero and missing readings are ignored. Samples without any non-zero
    reading get NaN.
    """
    values = df[value_col].where(df[value_col] > 0)
    medians = values.groupby(df['sample']).median()
    with np.errstate(divide='ignore', invalid='ignore'):
        return np.log2(medians)


def median_normalize(df, reference_log2=None, value_col='intensity'):
    """
    Rescale every sample onto a common median.

    Each value becomes ``value * 2 ** (reference_log2 - sample_median_log2)``,
    so the median of each sample's non-zero values equals
    ``2 ** reference_log2``. Zeros stay zero and NaN stays NaN.

    Parameters
    ----------
    df : pd.DataFrame
        Tidy table with 'sample' and the value column.
    reference_log2 : float, optional
        Target log2 median. Defaults to the median of the per-sample log2
        medians.
    value_col : str, optional
        Column to normalize (default: 'intensity').

    Returns
    -------
    tuple
        (normalized pd.Series aligned to df, per-sample log2 medians,
        reference_log2 used)

    Raises
    ------
    DegenerateSampleError
        If any sample has no non-zero value to take a median of.
    """
    medians = sample_medians_log2(df, value_col)

    degenerate = medians[~np.isfinite(medians)].index.tolist()
    if degenerate:
        raise DegenerateSampleError(degenerate)

    if reference_log2 is None:
        reference_log2 = float(np.median(medians.values))

    factors = np.exp2(reference_log2 - medians)
    normalized = df[value_col] * df['sample'].map(factors)

    return normalized, medians, reference_log2


def norm_kd(data, method=None):
    """
    Normalize intensities into the 'lfq' column.

    Normalization options:
    - 'median': Median normalization to a global log2 reference (default)
    - 'lfq': Passthrough of a pre-normalized quantity (data_columns.lfq),
      or of the raw intensity when no such column was loaded

    Parameters
    ----------
    data : dict
        Output from prep_kd() or drop_samples().
    method : str, optional
        Overrides normalization.method from the config.

    Returns
    -------
    dict
        Updated data dictionary with 'lfq' added to data['df'] and the
        normalization parameters in data['normalization'].

    Raises
    ------
    DegenerateSampleError
        When a sample cannot be scaled and normalization.drop_degenerate is
        not set.

    Example
    -------
    >>> data = prep_kd('config/experiment.yaml')
    >>> data = norm_kd(data, method='median')
    """

    print("\n" + "="*80)
    print("NORMALIZATION")
    print("="*80)

    params = get_params(data['config'], 'normalization')
    if method is None:
        method = params['method']

    df = data['df'].copy()
    print(f"\nMethod: {method}")
    print(f"Processing {df['protein_id'].nunique()} proteins across {df['sample'].nunique()} samples")

    info = {'method': method}

    if method == 'median':
        try:
            normalized, medians, reference = median_normalize(df, params['reference_log2'])
        except DegenerateSampleError as e:
            if not params['drop_degenerate']:
                raise
            print(f"\n  Warning: {e}")
            print(f"  Dropping degenerate samples (normalization.drop_degenerate is set)")
            data = drop_samples(data, e.samples)
            df = data['df'].copy()
            normalized, medians, reference = median_normalize(df, params['reference_log2'])

        df['lfq'] = normalized
        info.update({
            'reference_log2': reference,
            'sample_medians_log2': medians.to_dict(),
        })

        print(f"\n  > Median normalization applied")
        print(f"    Reference median: 2^{reference:.2f}")
        print(f"    Sample medians (log2): {medians.min():.2f} to {medians.max():.2f}")

    elif method == 'lfq':
        source = 'lfq_input' if 'lfq_input' in df.columns else 'intensity'
        df['lfq'] = df[source]
        info['source'] = source
        print(f"\n  > Passthrough of '{source}' values")

    else:
        raise ValueError(f"Unknown normalization method '{method}' (use 'median' or 'lfq')")

    data_updated = copy.copy(data)
    data_updated['df'] = df
    data_updated['normalization'] = info

    _autosave(data_updated, 'norm')

    print("\n" + "="*80)
    print("NORMALIZATION COMPLETE")
    print("="*80)
    print(f"\nNext step: resolve_missing() for censoring and imputation")
    print("="*80 + "\n")

    return data_updated
