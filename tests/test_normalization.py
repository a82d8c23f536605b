"""Tests for kdms.normalization module."""

import numpy as np
import pandas as pd
import pytest

from kdms import DegenerateSampleError, median_normalize, norm_kd


def _two_sample_frame():
    return pd.DataFrame({
        'protein_id': ['A', 'B', 'C', 'D'] * 2,
        'sample': ['S_0'] * 4 + ['S_1'] * 4,
        'intensity': [1.0, 2.0, 4.0, 0.0, 10.0, 20.0, 40.0, np.nan],
    })


class TestMedianNormalize:
    def test_sample_medians_equal_reference(self):
        df = _two_sample_frame()
        normalized, medians, reference = median_normalize(df)

        df['norm'] = normalized
        for _, sub in df.groupby('sample'):
            values = sub['norm'][sub['norm'] > 0]
            assert np.isclose(values.median(), 2 ** reference)

    def test_default_reference_is_median_of_sample_medians(self):
        _, medians, reference = median_normalize(_two_sample_frame())
        assert np.isclose(reference, np.median([np.log2(2.0), np.log2(20.0)]))

    def test_explicit_reference(self):
        df = _two_sample_frame()
        normalized, _, reference = median_normalize(df, reference_log2=3.0)

        assert reference == 3.0
        assert np.isclose(normalized[df['sample'] == 'S_1'].median(), 8.0)

    def test_zero_and_nan_preserved(self):
        df = _two_sample_frame()
        normalized, _, _ = median_normalize(df)

        assert normalized.iloc[3] == 0.0
        assert np.isnan(normalized.iloc[7])
        assert (normalized.dropna() >= 0).all()

    def test_degenerate_sample_raises(self):
        df = _two_sample_frame()
        df.loc[df['sample'] == 'S_1', 'intensity'] = 0.0

        with pytest.raises(DegenerateSampleError) as excinfo:
            median_normalize(df)
        assert excinfo.value.samples == ['S_1']


class TestNormKd:
    def test_sample_medians_match_reference(self, prepped_data):
        result = norm_kd(prepped_data, method='median')

        df = result['df']
        target = 2 ** result['normalization']['reference_log2']
        medians = df[df['lfq'] > 0].groupby('sample')['lfq'].median()
        np.testing.assert_allclose(medians.values, target, rtol=1e-9)

    def test_lfq_passthrough(self, prepped_data):
        result = norm_kd(prepped_data, method='lfq')

        df = result['df']
        np.testing.assert_array_equal(df['lfq'].values, df['intensity'].values)
        assert result['normalization']['source'] == 'intensity'

    def test_unknown_method_raises(self, prepped_data):
        with pytest.raises(ValueError):
            norm_kd(prepped_data, method='quantile')

    def test_degenerate_sample_halts(self, prepped_data):
        data = dict(prepped_data)
        df = data['df'].copy()
        df.loc[df['sample'] == 'PTPN11_7', 'intensity'] = 0.0
        data['df'] = df

        with pytest.raises(DegenerateSampleError):
            norm_kd(data, method='median')

    def test_degenerate_sample_dropped_when_configured(self, prepped_data):
        data = dict(prepped_data)
        df = data['df'].copy()
        df.loc[df['sample'] == 'PTPN11_7', 'intensity'] = 0.0
        data['df'] = df
        data['config'] = dict(data['config'], normalization={'method': 'median',
                                                             'drop_degenerate': True})

        result = norm_kd(data)

        assert 'PTPN11_7' not in set(result['df']['sample'])
        assert 'PTPN11_7' in result['metadata']['samples_dropped']

    def test_normalization_metadata_stored(self, prepped_data):
        result = norm_kd(prepped_data)

        assert result['normalization']['method'] == 'median'
        assert len(result['normalization']['sample_medians_log2']) == 9

    def test_does_not_mutate_input(self, prepped_data):
        columns = list(prepped_data['df'].columns)

        norm_kd(prepped_data)

        assert list(prepped_data['df'].columns) == columns
        assert 'normalization' not in prepped_data
