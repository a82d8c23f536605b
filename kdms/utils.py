"""
Utility functions for the Kd pipeline.

Internal helpers for configuration loading, parameter profiles, directory
management, and data serialization.
"""

import copy
import os
import pickle

import yaml


# Package defaults for every configurable section. Profile values override
# these, and explicit values in the user's config override both.
DEFAULTS = {
    'design': {
        'dilution_ratio': 3,
        'control_token': 'GST',
    },
    'normalization': {
        'method': 'median',
        'reference_log2': None,
        'drop_degenerate': False,
    },
    'missing_values': {
        'min_nonzero': 5,
        'max_censored': 3,
        'max_missing': 4,
        'max_combined': 5,
        'impute_scope': 'global',
    },
    'fitting': {
        'kd0': 100.0,
        'rmax0': 4e7,
        'max_iter': 200,
        'min_points': 5,
        'n_jobs': 1,
    },
    'tpa': {
        'strict': False,
    },
    'filtering': {
        'kd_min': 1.0,
        'kd_max': 1000.0,
        'final_gate': 'abundance',
        'abundance_factor': 10.0,
        'cv_max': 100.0,
        'keep_inconclusive': False,
        'hc_percentile': 5.0,
    },
    'run': {
        'timeout': None,
    },
}

# Named dataset variants.
#   tpa: 1 nM lower Kd bound, Kd must exceed 10x the TPA prey concentration
#   cv:  3 nM lower Kd bound, flat CV < 100% cutoff instead of the TPA gate
PROFILES = {
    'tpa': {
        'filtering': {'kd_min': 1.0, 'final_gate': 'abundance'},
    },
    'cv': {
        'filtering': {'kd_min': 3.0, 'final_gate': 'cv'},
    },
}

DEFAULT_COLUMNS = {
    'protein_id': 'protein_id',
    'sample': 'sample',
    'intensity': 'intensity',
    'lfq': None,
    'accession': 'accession',
    'gene_symbol': 'gene_symbol',
    'mw_kda': 'mw_kda',
}


def _load_config(config_path):
    """Load a YAML config file; an empty file gives an empty config."""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ValueError(f"Config file {config_path} must hold a YAML mapping, "
                         f"got {type(config).__name__}")
    return config


def _get_config(config):
    """Accept a config path or an already-loaded dict."""
    if isinstance(config, dict):
        return copy.deepcopy(config)
    return _load_config(config)


def get_params(config, section):
    """
    Resolve the parameters of one config section.

    Merges package defaults, the named profile (``config['profile']``) and
    the explicit values of ``config[section]``, in that order.

    Parameters
    ----------
    config : dict
        Loaded configuration.
    section : str
        Section name, e.g. 'fitting' or 'filtering'.

    Returns
    -------
    dict
        Resolved parameters.
    """
    params = dict(DEFAULTS.get(section, {}))

    profile = config.get('profile')
    if profile is not None:
        if profile not in PROFILES:
            raise ValueError(
                f"Unknown profile '{profile}'. Available: {', '.join(sorted(PROFILES))}"
            )
        params.update(PROFILES[profile].get(section, {}))

    params.update(config.get(section) or {})
    return params


def get_columns(config):
    """Column names of the input tables, with defaults filled in."""
    columns = dict(DEFAULT_COLUMNS)
    columns.update(config.get('data_columns') or {})
    return columns


def _create_output_dirs(base_dir):
    """Create organized output directory structure."""
    dirs = {
        'base': base_dir,
        'tables': f"{base_dir}/tables",
    }

    for dir_path in dirs.values():
        os.makedirs(dir_path, exist_ok=True)

    return dirs


def _output_dir(data):
    """Configured output directory, or None when results stay in memory."""
    return (data['config'].get('data_paths') or {}).get('output_dir')


def _autosave(data, name):
    """Checkpoint the data dict after a stage, if an output dir is set."""
    output_dir = _output_dir(data)
    if output_dir is None:
        return None
    os.makedirs(output_dir, exist_ok=True)
    return save_data(data, os.path.join(output_dir, f'data_after_{name}.pkl'))


def _save_table(data, df, filename):
    """Write a result table into <output_dir>/tables, if an output dir is set."""
    output_dir = _output_dir(data)
    if output_dir is None:
        return None

    tables_dir = os.path.join(output_dir, 'tables')
    os.makedirs(tables_dir, exist_ok=True)
    path = os.path.join(tables_dir, filename)
    df.to_csv(path, index=False)
    print(f"  > Saved: {filename} ({len(df)} rows)")
    return path


def save_data(data, filename=None):
    """
    Save analysis data to pickle file for sequential workflow.

    Parameters
    ----------
    data : dict
        Analysis data dictionary (output from prep_kd, fit_kd, etc.)
    filename : str, optional
        Custom filename. If None, uses default based on output_dir in config.

    Returns
    -------
    str
        Path where data was saved.

    Example
    -------
    >>> data = prep_kd('config/experiment.yaml')
    >>> save_data(data)  # Saves to results/data_checkpoint.pkl
    """
    if filename is None:
        output_dir = data['config']['data_paths']['output_dir']
        filename = os.path.join(output_dir, 'data_checkpoint.pkl')

    with open(filename, 'wb') as f:
        pickle.dump(data, f)

    size_mb = os.path.getsize(filename) / (1024 * 1024)

    print(f"\n  > Checkpoint saved: {filename} ({size_mb:.1f} MB)")

    return filename


# Keys each stage adds to the data dict, in pipeline order
STAGE_KEYS = [
    ('prep_kd', 'observations'),
    ('norm_kd', 'normalization'),
    ('resolve_missing', 'missing_counts'),
    ('response_kd', 'response'),
    ('fit_kd', 'fits'),
    ('tpa_kd', 'max_prey'),
    ('filter_kd', 'interactors'),
]


def completed_stages(data):
    """Names of the stage functions whose results are present in ``data``."""
    done = []
    for stage, key in STAGE_KEYS:
        if key == 'response':
            present = 'response' in getattr(data.get('df'), 'columns', ())
        else:
            present = key in data
        if present:
            done.append(stage)
    return done


def load_data(filepath):
    """
    Load analysis data from pickle file.

    Prints which stages the checkpoint already holds, the fitting status
    when fits are present, and the interactor counts after filtering.

    Parameters
    ----------
    filepath : str
        Path to saved pickle file.

    Returns
    -------
    dict
        Analysis data dictionary.

    Example
    -------
    >>> from kdms import load_data, fit_kd
    >>> data = load_data('results/data_after_response.pkl')
    >>> data = fit_kd(data)  # Continue from where you left off
    """
    if not os.path.exists(filepath):
        raise FileNotFoundError(f"Data file not found: {filepath}")

    print(f"\n{'='*80}")
    print(f"LOADING DATA")
    print(f"{'='*80}")

    with open(filepath, 'rb') as f:
        data = pickle.load(f)

    size_mb = os.path.getsize(filepath) / (1024 * 1024)

    print(f"Location: {filepath}")
    print(f"Size: {size_mb:.1f} MB")

    metadata = data.get('metadata')
    if metadata:
        print(f"\nDilution series:")
        print(f"  Proteins: {metadata.get('n_proteins')}")
        print(f"  Samples: {metadata.get('n_samples')}")
        for bait_id, levels in (metadata.get('levels_per_bait') or {}).items():
            print(f"  {bait_id}: {len(levels)} levels")
        if metadata.get('samples_dropped'):
            print(f"  Dropped: {', '.join(metadata['samples_dropped'])}")

    done = completed_stages(data)
    print(f"\nCompleted: {', '.join(done) if done else 'none'}")

    status = data.get('fit_status')
    if status:
        print(f"  Fitted {status['n_completed']}/{status['n_total']} groups "
              f"with {status['n_jobs']} worker(s)")
        if status['timed_out']:
            print(f"  Warning: fitting timed out, fits are partial")

    if 'interactors' in data:
        print(f"  Interactors: {len(data['interactors'])} "
              f"({len(data.get('high_confidence', []))} high confidence)")

    remaining = [stage for stage, _ in STAGE_KEYS if stage not in done]
    if remaining:
        print(f"\nNext step: {remaining[0]}()")

    print(f"{'='*80}\n")

    return data
