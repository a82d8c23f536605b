"""Tests for kdms.qc module."""

import os

import pytest

from kdms import drop_samples, qc_kd
from kdms.qc import sample_summary


class TestSampleSummary:
    def test_one_row_per_sample(self, prepped_data):
        summary = sample_summary(prepped_data['df'])

        assert len(summary) == 9
        assert list(summary['concentration']) == sorted(summary['concentration'])
        assert (summary['n_proteins'] == 200).all()

    def test_missing_percentage(self, prepped_data):
        summary = sample_summary(prepped_data['df']).set_index('sample')

        # P005 is never detected, P006 only up to 3 nM
        assert summary.loc['PTPN11_GST', 'n_detected'] == 199
        assert summary.loc['PTPN11_7', 'n_detected'] == 198
        assert summary.loc['PTPN11_7', 'pct_missing'] == pytest.approx(1.0)


class TestQcKd:
    def test_writes_summary_table(self, prepped_data):
        summary = qc_kd(prepped_data)

        path = os.path.join(prepped_data['config']['data_paths']['output_dir'],
                            'tables', 'qc_sample_summary.csv')
        assert os.path.exists(path)
        assert len(summary) == prepped_data['metadata']['n_samples']


class TestDropSamples:
    def test_drop_by_name(self, prepped_data):
        data = drop_samples(prepped_data, ['PTPN11_7'])

        assert 'PTPN11_7' not in set(data['df']['sample'])
        assert 'PTPN11_7' not in set(data['observations']['sample'])
        assert data['metadata']['n_samples'] == 8
        assert data['metadata']['samples_dropped'] == ['PTPN11_7']
        assert 2187.0 not in data['metadata']['levels_per_bait']['PTPN11']

    def test_drop_by_level(self, prepped_data):
        data = drop_samples(prepped_data, {'PTPN11': [6, 'GST']})

        remaining = set(data['df']['sample'])
        assert 'PTPN11_6' not in remaining
        assert 'PTPN11_GST' not in remaining
        assert data['metadata']['n_samples'] == 7

    def test_drop_by_level_given_as_string(self, prepped_data):
        data = drop_samples(prepped_data, {'PTPN11': ['7', 'GST']})

        remaining = set(data['df']['sample'])
        assert 'PTPN11_7' not in remaining
        assert 'PTPN11_GST' not in remaining
        assert data['metadata']['samples_dropped'] == ['PTPN11_7', 'PTPN11_GST']

    def test_non_integer_level_raises(self, prepped_data):
        with pytest.raises(ValueError, match='neither an integer'):
            drop_samples(prepped_data, {'PTPN11': ['high']})

    def test_does_not_mutate_input(self, prepped_data):
        n_rows = len(prepped_data['df'])

        drop_samples(prepped_data, ['PTPN11_7'])

        assert len(prepped_data['df']) == n_rows
        assert prepped_data['metadata']['n_samples'] == 9
        assert prepped_data['metadata']['samples_dropped'] == []

    def test_unknown_samples_ignored(self, prepped_data):
        data = drop_samples(prepped_data, ['NOPE_1'])
        assert data is prepped_data

    def test_invalid_type_raises(self, prepped_data):
        with pytest.raises(ValueError):
            drop_samples(prepped_data, 'PTPN11_7')
