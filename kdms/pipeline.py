"""
End-to-end driver for the Kd pipeline.
"""

import copy
import time

import pandas as pd

from .filtering import filter_kd
from .fitting import fit_kd
from .missing import resolve_missing
from .normalization import norm_kd
from .prep import prep_kd
from .response import response_kd
from .tpa import tpa_kd
from .utils import _autosave, _get_config, _save_table, get_params


def pipeline_counts(data):
    """Group counts from preparation through the high-confidence list."""
    rows = [
        ('groups', len(data['missing_counts'])),
        ('passed_missing_gate', int(data['missing_counts']['passed'].sum())),
        ('fitted', len(data['fits'])),
    ]
    rows += [(row.stage, row.n_out) for row in data['stage_counts'].itertuples(index=False)]
    return pd.DataFrame(rows, columns=['stage', 'n'])


def run_kd(config, quant=None, protein_info=None):
    """
    Run the full pipeline: prep, normalize, resolve missing values, derive
    responses, fit, estimate TPA concentrations and filter.

    run.timeout bounds the whole run from this call on. The fitting stage
    gets whatever remains after preparation and stops early when it runs
    out, keeping the groups it completed.

    Parameters
    ----------
    config : str or dict
        Path to YAML configuration file, or a loaded config dict.
    quant, protein_info : pd.DataFrame, optional
        Input tables; read from data_paths when not given.

    Returns
    -------
    dict
        Final data dictionary; see filter_kd() for the result keys. Adds
        'pipeline_counts' with the group count after every stage.
    Example
    -------
    >>> data = run_kd('config/experiment.yaml')
    >>> data['high_confidence'][['gene_symbol', 'kd', 'cv']]
    """
    config = _get_config(config)
    timeout = get_params(config, 'run')['timeout']
    deadline = None if timeout is None else time.monotonic() + float(timeout)

    data = prep_kd(config, quant=quant, protein_info=protein_info)
    data = norm_kd(data)
    data = resolve_missing(data)
    data = response_kd(data)
    data = fit_kd(data, deadline=deadline)
    data = tpa_kd(data)
    data = filter_kd(data)

    counts = pipeline_counts(data)

    data_updated = copy.copy(data)
    data_updated['pipeline_counts'] = counts

    print("\n" + "="*80)
    print("PIPELINE SUMMARY")
    print("="*80 + "\n")
    for row in counts.itertuples(index=False):
        print(f"  {row.stage:22} {row.n:8d}")
    if data['fit_status']['timed_out']:
        print(f"\n  Warning: fitting timed out, results are partial")

    _save_table(data_updated, counts, 'pipeline_counts.csv')
    _autosave(data_updated, 'pipeline')

    print("\n" + "="*80 + "\n")

    return data_updated
