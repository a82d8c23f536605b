"""Tests for kdms.prep module."""

import numpy as np
import pandas as pd
import pytest

from kdms import DataShapeError, parse_sample_name, prep_kd
from kdms.prep import build_observations, build_protein_info
from kdms.utils import get_columns


class TestParseSampleName:
    def test_simple_form(self):
        parsed = parse_sample_name('PTPN11_4')
        assert parsed['bait'] == 'PTPN11'
        assert parsed['bait_id'] == 'PTPN11'
        assert parsed['replicate'] is None
        assert parsed['exponent'] == 4
        assert parsed['concentration'] == 81.0

    def test_replicate_form(self):
        parsed = parse_sample_name('GRB2-Rep2-3')
        assert parsed['bait'] == 'GRB2'
        assert parsed['replicate'] == 2
        assert parsed['bait_id'] == 'GRB2-Rep2'
        assert parsed['concentration'] == 27.0

    def test_control_token_is_zero_concentration(self):
        assert parse_sample_name('PTPN11_GST')['concentration'] == 0.0
        assert parse_sample_name('PTPN11-Rep1-GST')['concentration'] == 0.0
        assert np.isnan(parse_sample_name('PTPN11_GST')['exponent'])

    def test_bait_with_underscore(self):
        parsed = parse_sample_name('SH2_DOMAIN_2')
        assert parsed['bait'] == 'SH2_DOMAIN'
        assert parsed['concentration'] == 9.0

    def test_custom_ratio(self):
        assert parse_sample_name('B_3', dilution_ratio=2)['concentration'] == 8.0

    @pytest.mark.parametrize('name', ['PTPN11', 'PTPN11_high', 'PTPN11-Rep1-x'])
    def test_unparseable_names_raise(self, name):
        with pytest.raises(DataShapeError):
            parse_sample_name(name)


class TestBuildObservations:
    def test_sums_intensity_columns_and_duplicates(self):
        quant = pd.DataFrame({
            'prot': ['A', 'A', 'B'],
            'run': ['X_0', 'X_0', 'X_0'],
            'i1': [1.0, 2.0, 5.0],
            'i2': [10.0, np.nan, 0.0],
        })
        columns = get_columns({'data_columns': {'protein_id': 'prot', 'sample': 'run',
                                                'intensity': ['i1', 'i2']}})
        df = build_observations(quant, columns)

        values = df.set_index('protein_id')['intensity']
        assert values['A'] == 13.0
        assert values['B'] == 5.0

    def test_completes_protein_sample_grid(self):
        quant = pd.DataFrame({
            'protein_id': ['A', 'A', 'B'],
            'sample': ['X_0', 'X_1', 'X_0'],
            'intensity': [1.0, 2.0, 3.0],
        })
        df = build_observations(quant, get_columns({}))

        assert len(df) == 4
        missing = df[(df['protein_id'] == 'B') & (df['sample'] == 'X_1')]
        assert missing['intensity'].isna().all()

    def test_missing_columns_raise(self):
        quant = pd.DataFrame({'protein_id': ['A'], 'sample': ['X_0']})
        with pytest.raises(DataShapeError, match='intensity'):
            build_observations(quant, get_columns({}))

    def test_negative_intensity_raises(self):
        quant = pd.DataFrame({'protein_id': ['A'], 'sample': ['X_0'], 'intensity': [-1.0]})
        with pytest.raises(DataShapeError):
            build_observations(quant, get_columns({}))


class TestBuildProteinInfo:
    def test_falls_back_to_protein_id(self):
        info = build_protein_info(pd.DataFrame({'protein_id': ['A', 'B']}), get_columns({}))

        assert list(info.index) == ['A', 'B']
        assert info.loc['A', 'accession'] == 'A'
        assert info['mw_kda'].isna().all()


class TestPrepKd:
    def test_returns_required_keys(self, prepped_data):
        for key in ('df', 'observations', 'config', 'protein_info', 'metadata', 'output_dirs'):
            assert key in prepped_data

    def test_design_parsed(self, prepped_data):
        df = prepped_data['df']
        assert set(df['bait_id']) == {'PTPN11'}
        assert sorted(df['concentration'].unique()) == [0.0] + [3.0 ** e for e in range(8)]

    def test_metadata_counts_are_consistent(self, prepped_data):
        metadata = prepped_data['metadata']
        df = prepped_data['df']

        assert metadata['n_proteins'] == df['protein_id'].nunique() == 200
        assert metadata['n_samples'] == 9
        assert metadata['n_groups'] == 200
        assert len(df) == 200 * 9

    def test_protein_info_mapped(self, prepped_data):
        info = prepped_data['protein_info']
        assert info.loc['P001', 'gene_symbol'] == 'GENE1'
        assert np.isnan(info.loc['P199', 'mw_kda'])

    def test_accepts_dataframes(self, quant_table):
        config = {'data_columns': {'protein_id': 'Protein', 'sample': 'Sample',
                                   'intensity': 'Intensity'}}
        data = prep_kd(config, quant=quant_table)

        assert data['output_dirs'] is None
        assert data['protein_info']['mw_kda'].isna().all()

    def test_missing_input_file_raises(self, tmp_path):
        config = {'data_paths': {'input_file': str(tmp_path / 'nope.csv')}}
        with pytest.raises(FileNotFoundError):
            prep_kd(config)
