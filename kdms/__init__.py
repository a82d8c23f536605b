"""
Kd estimation from mass spectrometry dilution series
=====================================================

Estimates protein-protein binding affinities from label-free intensities
measured across a dilution series of a bait protein.

Main Functions
--------------
prep_kd()          - Load the quantitation and protein reference tables
qc_kd()            - Per-sample detection summary
drop_samples()     - Remove problematic samples
norm_kd()          - Median normalization (or LFQ passthrough)
resolve_missing()  - Censoring, imputation and group acceptance gate
response_kd()      - Derive binding responses from unbound signal
fit_kd()           - Fit the single-site isotherm per protein and bait
tpa_kd()           - Total Protein Approach concentration estimates
filter_kd()        - Select ranked and high-confidence interactors
run_kd()           - Run every step above in order
save_data()        - Save analysis data for later
load_data()        - Load saved analysis data

Example Workflow
----------------
>>> from kdms import prep_kd, norm_kd, resolve_missing, response_kd
>>> from kdms import fit_kd, tpa_kd, filter_kd
>>>
>>> data = prep_kd('config/experiment.yaml')
>>> data = norm_kd(data)
>>> data = resolve_missing(data)
>>> data = response_kd(data)
>>> data = fit_kd(data)
>>> data = tpa_kd(data)
>>> data = filter_kd(data)
"""

from .errors import (
    DataShapeError,
    DegenerateSampleError,
    InsufficientDataError,
    MissingReferenceDataError,
    NonConvergenceError,
)
from .prep import prep_kd, parse_sample_name
from .qc import qc_kd, drop_samples
from .normalization import norm_kd, median_normalize
from .missing import resolve_missing
from .response import response_kd, compute_response
from .fitting import fit_kd, fit_group, isotherm, FitResult
from .tpa import tpa_kd
from .filtering import filter_kd, run_filters
from .pipeline import run_kd
from .utils import save_data, load_data


__version__ = "0.1.0"

__all__ = [
    'prep_kd',
    'parse_sample_name',
    'qc_kd',
    'drop_samples',
    'norm_kd',
    'median_normalize',
    'resolve_missing',
    'response_kd',
    'compute_response',
    'fit_kd',
    'fit_group',
    'isotherm',
    'FitResult',
    'tpa_kd',
    'filter_kd',
    'run_filters',
    'run_kd',
    'save_data',
    'load_data',
    'DataShapeError',
    'DegenerateSampleError',
    'InsufficientDataError',
    'MissingReferenceDataError',
    'NonConvergenceError',
]
