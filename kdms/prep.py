"""
Data preparation functions for the Kd pipeline.

Handles loading the quantitation and protein reference tables, sample-name
parsing into bait and dilution level, and building the tidy observation
table the downstream stages work on.
"""

import os
import re

import numpy as np
import pandas as pd

from .errors import DataShapeError
from .utils import _autosave, _create_output_dirs, _get_config, get_columns, get_params

_REPLICATE_PATTERN = re.compile(r'^(?P<bait>.+?)-Rep(?P<replicate>\d+)-(?P<level>[^-]+)$')
_SIMPLE_PATTERN = re.compile(r'^(?P<bait>.+)_(?P<level>[^_]+)$')


def parse_sample_name(name, dilution_ratio=3, control_token='GST'):
    """
    Split a sample identifier into bait identity and dilution level.

    Accepted forms are ``<bait>_<exponent>`` and ``<bait>-Rep<k>-<exponent>``.
    The control token in the exponent position marks the zero-bait control.

    Parameters
    ----------
    name : str
        Sample identifier, e.g. 'PTPN11_4', 'PTPN11-Rep2-3' or 'PTPN11_GST'.
    dilution_ratio : float, optional
        Base of the geometric dilution series (default: 3).
    control_token : str, optional
        Literal marking the zero-bait control (default: 'GST').

    Returns
    -------
    dict
        Keys 'bait', 'replicate', 'bait_id', 'exponent', 'concentration'.
        Concentration is ``dilution_ratio ** exponent`` nM, or 0 for the control.

    Example
    -------
    >>> parse_sample_name('PTPN11-Rep1-2')['concentration']
    9.0
    """
    name = str(name).strip()

    match = _REPLICATE_PATTERN.match(name) or _SIMPLE_PATTERN.match(name)
    if match is None:
        raise DataShapeError(
            f"Sample name '{name}' does not follow '<bait>_<exponent>' "
            f"or '<bait>-Rep<k>-<exponent>'"
        )

    parts = match.groupdict()
    bait = parts['bait']
    replicate = int(parts['replicate']) if parts.get('replicate') else None
    bait_id = f"{bait}-Rep{replicate}" if replicate is not None else bait
    level = parts['level']

    if level == control_token:
        exponent = np.nan
        concentration = 0.0
    else:
        try:
            exponent = int(level)
        except ValueError:
            raise DataShapeError(
                f"Sample name '{name}': level '{level}' is neither an integer "
                f"exponent nor the control token '{control_token}'"
            ) from None
        concentration = float(dilution_ratio) ** exponent

    return {
        'bait': bait,
        'replicate': replicate,
        'bait_id': bait_id,
        'exponent': exponent,
        'concentration': concentration,
    }


def _read_table(path):
    """Read a CSV, TSV or Excel table."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Input file not found: {path}")

    ext = os.path.splitext(path)[1].lower()
    if ext in ('.xlsx', '.xls'):
        return pd.read_excel(path)
    if ext in ('.tsv', '.txt'):
        return pd.read_csv(path, sep='\t')
    return pd.read_csv(path)


def _require_columns(df, required, table_name):
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise DataShapeError(
            f"{table_name} is missing required column(s): {', '.join(missing)}"
        )


def build_observations(quant, columns, dilution_ratio=3, control_token='GST'):
    """
    Build the tidy observation table from a quantitation table.

    Intensity columns are summed row-wise, duplicate (protein, sample) rows
    are summed, and the table is completed so every protein has one row per
    sample (absent readings become NaN).

    Parameters
    ----------
    quant : pd.DataFrame
        Long table with protein id, sample id and intensity column(s).
    columns : dict
        Column mapping as returned by ``get_columns``.
    dilution_ratio, control_token
        Passed to ``parse_sample_name``.

    Returns
    -------
    pd.DataFrame
        One row per (protein, sample) with parsed design columns.
    """
    protein_col = columns['protein_id']
    sample_col = columns['sample']
    intensity_cols = columns['intensity']
    if isinstance(intensity_cols, str):
        intensity_cols = [intensity_cols]
    lfq_col = columns.get('lfq')

    required = [protein_col, sample_col] + list(intensity_cols)
    if lfq_col:
        required.append(lfq_col)
    _require_columns(quant, required, 'Quantitation table')

    if quant[protein_col].isna().any() or quant[sample_col].isna().any():
        raise DataShapeError("Quantitation table has rows without protein or sample identifier")

    df = pd.DataFrame({
        'protein_id': quant[protein_col].astype(str),
        'sample': quant[sample_col].astype(str),
        'intensity': quant[intensity_cols].apply(pd.to_numeric, errors='coerce').sum(axis=1, min_count=1),
    })
    if lfq_col:
        df['lfq_input'] = pd.to_numeric(quant[lfq_col], errors='coerce')

    if (df['intensity'] < 0).any():
        raise DataShapeError("Quantitation table contains negative intensities")

    value_cols = [c for c in ('intensity', 'lfq_input') if c in df.columns]
    df = df.groupby(['protein_id', 'sample'])[value_cols].sum(min_count=1)

    # Complete the protein x sample grid so absent readings become explicit NaN
    full_index = pd.MultiIndex.from_product(
        [df.index.get_level_values('protein_id').unique(),
         df.index.get_level_values('sample').unique()],
        names=['protein_id', 'sample']
    )
    df = df.reindex(full_index).reset_index()

    design = pd.DataFrame([
        dict(sample=s, **parse_sample_name(s, dilution_ratio, control_token))
        for s in df['sample'].unique()
    ])

    df = df.merge(design, on='sample', how='left')
    df = df.sort_values(['protein_id', 'bait_id', 'concentration', 'sample']).reset_index(drop=True)

    ordered = ['protein_id', 'bait_id', 'bait', 'replicate', 'sample',
               'exponent', 'concentration'] + value_cols
    return df[ordered]


def build_protein_info(info, columns):
    """
    Normalize the protein reference table.

    Returns a DataFrame indexed by protein_id with 'accession', 'gene_symbol'
    and 'mw_kda'. Accession and gene symbol fall back to the protein id when
    their columns are absent; an absent molecular weight stays NaN.
    """
    protein_col = columns['protein_id']
    _require_columns(info, [protein_col], 'Protein reference table')

    out = pd.DataFrame({'protein_id': info[protein_col].astype(str)})
    for key in ('accession', 'gene_symbol'):
        col = columns.get(key)
        out[key] = info[col].astype(str) if col in info.columns else out['protein_id']

    mw_col = columns.get('mw_kda')
    if mw_col in info.columns:
        out['mw_kda'] = pd.to_numeric(info[mw_col], errors='coerce')
    else:
        out['mw_kda'] = np.nan

    out = out.drop_duplicates(subset='protein_id', keep='first')
    return out.set_index('protein_id')


def prep_kd(config, quant=None, protein_info=None):
    """
    Load and prepare dilution-series data for Kd estimation.

    This function:
    1. Loads the YAML configuration file
    2. Reads the quantitation table (or takes a DataFrame)
    3. Sums intensity columns and duplicate protein/sample rows
    4. Parses sample names into bait, replicate and concentration
    5. Reads the protein reference table (accession, gene, molecular weight)
    6. Creates output directory structure

    Parameters
    ----------
    config : str or dict
        Path to YAML configuration file, or a loaded config dict.
    quant : pd.DataFrame, optional
        Quantitation table. If None, read from data_paths.input_file.
    protein_info : pd.DataFrame, optional
        Protein reference table. If None, read from data_paths.protein_info
        when configured.

    Returns
    -------
    dict
        Dictionary containing:
        - 'df': tidy observation table, transformed by the later stages
        - 'observations': the same table, left untouched for TPA estimates
        - 'config': loaded configuration dictionary
        - 'protein_info': reference table indexed by protein_id
        - 'metadata': summary statistics about the data
        - 'output_dirs': paths to output directories (None without output_dir)

    Example
    -------
    >>> data = prep_kd('config/experiment.yaml')
    >>> print(data['metadata']['baits'])
    """

    print("\n" + "="*80)
    print("STEP 1: LOADING DATA AND CONFIGURATION")
    print("="*80)

    config = _get_config(config)
    columns = get_columns(config)
    design = get_params(config, 'design')
    data_paths = config.get('data_paths') or {}

    experiment = (config.get('experiment') or {}).get('name', 'unnamed')
    print(f"\n> Configuration loaded")
    print(f"  Experiment: {experiment}")
    print(f"  Profile: {config.get('profile') or 'default'}")

    # =========================================================================
    # 1. LOAD QUANTITATION TABLE
    # =========================================================================
    print(f"\n[1/3] Loading quantitation data...")

    if quant is None:
        if 'input_file' not in data_paths:
            raise DataShapeError("No quantitation table given and data_paths.input_file not set")
        quant = _read_table(data_paths['input_file'])

    print(f"  > Loaded {len(quant)} rows, {quant.shape[1]} columns")

    df = build_observations(quant, columns, design['dilution_ratio'], design['control_token'])

    n_proteins = df['protein_id'].nunique()
    n_samples = df['sample'].nunique()
    baits = sorted(df['bait_id'].unique())
    print(f"  > {n_proteins} proteins x {n_samples} samples")

    # =========================================================================
    # 2. DESIGN SUMMARY
    # =========================================================================
    print(f"\n[2/3] Dilution design...")

    levels = {}
    for bait_id, sub in df.groupby('bait_id'):
        levels[bait_id] = sorted(sub['concentration'].unique().tolist())
        n_control = int((sub['concentration'] == 0).any())
        print(f"  {bait_id}: {len(levels[bait_id])} levels "
              f"({n_control} control, max {max(levels[bait_id]):g} nM)")

    # =========================================================================
    # 3. PROTEIN REFERENCE TABLE
    # =========================================================================
    print(f"\n[3/3] Loading protein reference data...")

    if protein_info is None and data_paths.get('protein_info'):
        protein_info = _read_table(data_paths['protein_info'])

    if protein_info is None:
        print(f"  Warning: No protein reference table, TPA estimates will be undefined")
        info = pd.DataFrame(
            {'accession': sorted(df['protein_id'].unique()), 'mw_kda': np.nan},
            index=pd.Index(sorted(df['protein_id'].unique()), name='protein_id')
        )
        info['gene_symbol'] = info['accession']
        info = info[['accession', 'gene_symbol', 'mw_kda']]
    else:
        info = build_protein_info(protein_info, columns)
        known = df['protein_id'].drop_duplicates().isin(info.index).sum()
        print(f"  > {len(info)} reference entries, {known}/{n_proteins} quantified proteins matched")

    # =========================================================================
    # 4. OUTPUT DIRECTORIES AND METADATA
    # =========================================================================
    output_dirs = None
    if data_paths.get('output_dir'):
        output_dirs = _create_output_dirs(data_paths['output_dir'])
        print(f"\n> Output directories created at: {data_paths['output_dir']}")

    metadata = {
        'n_proteins': n_proteins,
        'n_samples': n_samples,
        'n_groups': n_proteins * len(baits),
        'baits': baits,
        'levels_per_bait': levels,
        'samples_dropped': [],
    }

    print("\n" + "="*80)
    print("DATA PREPARATION COMPLETE")
    print("="*80)
    print(f"\nProteins:                {n_proteins}")
    print(f"Samples:                 {n_samples}")
    print(f"Baits:                   {', '.join(baits)}")
    print(f"Protein x bait groups:   {metadata['n_groups']}")
    print("\n" + "="*80 + "\n")

    return_data = {
        'df': df,
        'observations': df,
        'config': config,
        'protein_info': info,
        'metadata': metadata,
        'output_dirs': output_dirs,
    }

    _autosave(return_data, 'prep')

    return return_data
