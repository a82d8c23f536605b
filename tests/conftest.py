"""Shared test fixtures for Kd pipeline tests."""

import numpy as np
import pandas as pd
import pytest
import yaml

from kdms.fitting import isotherm

# GST control plus 3^0 .. 3^7 nM
LEVELS = ['GST'] + list(range(8))
CONCENTRATIONS = [0.0] + [3.0 ** e for e in range(8)]

BINDER_KDS = {'P000': 20.0, 'P001': 40.0, 'P002': 60.0, 'P003': 100.0, 'P004': 200.0}


def series_frame(values, concentrations=None, protein_id='P1', bait_id='BAIT', value_col='lfq'):
    """One (protein, bait) dilution series as a tidy DataFrame."""
    if concentrations is None:
        concentrations = CONCENTRATIONS
    return pd.DataFrame({
        'protein_id': protein_id,
        'bait_id': bait_id,
        'sample': [f'{bait_id}_{i}' for i in range(len(values))],
        'concentration': concentrations,
        'intensity': values,
        value_col: values,
    })


@pytest.fixture
def quant_table():
    """Long quantitation table: 5 binders, 2 gappy proteins, 193 non-binders."""
    np.random.seed(42)

    n_proteins = 200
    rows = []
    for i in range(n_proteins):
        protein = f'P{str(i).zfill(3)}'
        base = np.random.lognormal(mean=16, sigma=0.5)

        for level, conc in zip(LEVELS, CONCENTRATIONS):
            noise = np.random.lognormal(mean=0, sigma=0.01)
            if protein in BINDER_KDS:
                # Low-abundance prey depleted by binding to the bait
                value = 1e5 * (1 - 0.8 * isotherm(conc, BINDER_KDS[protein], 1.0)) * noise
            elif protein == 'P005':
                value = 0.0
            elif protein == 'P006':
                value = base * noise if conc in (0.0, 1.0, 3.0) else 0.0
            elif protein == 'P007':
                # Below detection at 3 nM, signal again above
                value = 0.0 if conc == 3.0 else base * noise
            else:
                value = base * np.random.lognormal(mean=0, sigma=0.05)

            rows.append({'Protein': protein, 'Sample': f'PTPN11_{level}', 'Intensity': value})

    return pd.DataFrame(rows)


@pytest.fixture
def protein_table():
    """Reference table; P199 has no molecular weight."""
    np.random.seed(7)
    proteins = [f'P{str(i).zfill(3)}' for i in range(200)]
    mw = np.random.uniform(20, 150, len(proteins))
    mw[-1] = np.nan
    return pd.DataFrame({
        'Protein': proteins,
        'Accession': [f'Q{str(i).zfill(5)}' for i in range(200)],
        'Gene': [f'GENE{i}' for i in range(200)],
        'MW_kDa': mw,
    })


@pytest.fixture
def sample_config(tmp_path, quant_table, protein_table):
    """Write the tables and a matching YAML config into tmp_path."""
    quant_path = str(tmp_path / 'quant.csv')
    info_path = str(tmp_path / 'proteins.csv')
    quant_table.to_csv(quant_path, index=False)
    protein_table.to_csv(info_path, index=False)

    config = {
        'experiment': {
            'name': 'Test_Experiment',
            'description': 'Unit test dilution series',
        },
        'profile': 'cv',
        'data_paths': {
            'input_file': quant_path,
            'protein_info': info_path,
            'output_dir': str(tmp_path / 'results'),
        },
        'data_columns': {
            'protein_id': 'Protein',
            'sample': 'Sample',
            'intensity': 'Intensity',
            'accession': 'Accession',
            'gene_symbol': 'Gene',
            'mw_kda': 'MW_kDa',
        },
        'normalization': {
            'method': 'median',
        },
        'fitting': {
            'n_jobs': 1,
        },
    }

    config_path = str(tmp_path / 'test_config.yaml')
    with open(config_path, 'w') as f:
        yaml.dump(config, f)

    return config_path, tmp_path


@pytest.fixture
def prepped_data(sample_config):
    """Run prep_kd and return the result for downstream tests."""
    from kdms import prep_kd

    config_path, tmp_path = sample_config
    return prep_kd(config_path)
