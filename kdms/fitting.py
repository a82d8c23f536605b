"""
Isotherm fitting for the Kd pipeline.

Fits the single-site binding isotherm ``R = Rmax * c / (Kd + c)`` to every
(protein, bait) dilution series by nonlinear least squares. Most prey
proteins do not bind, so a fit that fails to converge is an ordinary result
(``converged=False``) rather than an error.
"""

import copy
import multiprocessing as mp
import os
import time
import warnings
from dataclasses import asdict, dataclass

import numpy as np
import pandas as pd
from scipy.optimize import OptimizeWarning, curve_fit

from .errors import InsufficientDataError, NonConvergenceError
from .utils import _autosave, _save_table, get_params

GROUP_KEYS = ['protein_id', 'bait_id']

FIT_COLUMNS = [
    'protein_id', 'bait_id', 'kd', 'kd_stderr', 'rmax', 'rmax_stderr',
    'cv', 'converged', 'n_points', 'n_iter', 'message',
]


def isotherm(c, kd, rmax):
    """Single-site binding isotherm."""
    return rmax * c / (kd + c)


def _isotherm_jac(c, kd, rmax):
    denom = kd + c
    return np.column_stack([-rmax * c / denom ** 2, c / denom])


@dataclass(frozen=True)
class FitResult:
    """Outcome of one group's fit. Estimates are NaN when the solver failed."""

    protein_id: object
    bait_id: object
    kd: float
    kd_stderr: float
    rmax: float
    rmax_stderr: float
    converged: bool
    n_points: int
    n_iter: int
    message: str = ''

    @property
    def cv(self):
        """Coefficient of variation of Kd in percent."""
        if not (np.isfinite(self.kd) and np.isfinite(self.kd_stderr)) or self.kd == 0:
            return np.nan
        return self.kd_stderr / self.kd * 100

    def to_dict(self):
        row = asdict(self)
        row['cv'] = self.cv
        return row


def _solve(conc, response, kd0, rmax0, max_iter):
    """Run Levenberg-Marquardt. Raises NonConvergenceError on solver failure."""
    with warnings.catch_warnings():
        warnings.simplefilter('ignore', OptimizeWarning)
        warnings.simplefilter('ignore', RuntimeWarning)
        try:
            popt, pcov, info, _, _ = curve_fit(
                isotherm, conc, response,
                p0=[kd0, rmax0],
                jac=_isotherm_jac,
                method='lm',
                maxfev=max_iter,
                full_output=True,
            )
        except (RuntimeError, ValueError) as e:
            raise NonConvergenceError(str(e)) from e

    return popt, pcov, int(info['nfev'])


def fit_group(conc, response, protein_id=None, bait_id=None,
              kd0=100.0, rmax0=4e7, max_iter=200, min_points=5):
    """
    Fit one dilution series.

    Parameters
    ----------
    conc : array-like
        Bait concentrations (nM).
    response : array-like
        Responses; points where either value is NaN are ignored.
    protein_id, bait_id : optional
        Group key carried into the result.
    kd0, rmax0 : float, optional
        Initial guesses shared by all groups (default: 100 nM, 4e7).
    max_iter : int, optional
        Solver evaluation budget (default: 200).
    min_points : int, optional
        Minimum number of valid points (default: 5).

    Returns
    -------
    FitResult
        Always returned for a fittable group. ``converged`` is False when the
        solver fails, the response is flat, or the covariance matrix (and so
        the standard errors) cannot be estimated.

    Raises
    ------
    InsufficientDataError
        Fewer than ``min_points`` valid points or fewer than two distinct
        concentrations.

    Example
    -------
    >>> c = np.array([0, 1, 3, 9, 27, 81, 243, 729, 2187])
    >>> result = fit_group(c, isotherm(c, 50, 4e7))
    >>> round(result.kd, 3), result.converged
    (50.0, True)
    """
    conc = np.asarray(conc, dtype=float)
    response = np.asarray(response, dtype=float)
    valid = np.isfinite(conc) & np.isfinite(response)
    conc, response = conc[valid], response[valid]

    n_points = len(conc)
    min_points = max(int(min_points), 2)
    if n_points < min_points:
        raise InsufficientDataError(f"{n_points} valid points < {min_points}")
    if len(np.unique(conc)) < 2:
        raise InsufficientDataError("fewer than 2 distinct concentrations")

    def failed(message, n_iter=0):
        return FitResult(protein_id, bait_id, np.nan, np.nan, np.nan, np.nan,
                         False, n_points, n_iter, message)

    if np.ptp(response) == 0:
        return failed('flat response')

    try:
        popt, pcov, n_iter = _solve(conc, response, kd0, rmax0, max_iter)
    except NonConvergenceError as e:
        return failed(str(e), n_iter=max_iter)

    with np.errstate(invalid='ignore'):
        stderr = np.sqrt(np.diag(pcov))

    kd, rmax = popt
    converged = bool(np.all(np.isfinite(popt)) and np.all(np.isfinite(stderr)))
    message = 'ok' if converged else 'covariance could not be estimated'

    return FitResult(protein_id, bait_id, float(kd), float(stderr[0]),
                     float(rmax), float(stderr[1]), converged, n_points,
                     n_iter, message)


def _fit_task(task):
    """Worker entry point. Returns ('fit', FitResult) or ('excluded', key, reason)."""
    protein_id, bait_id, conc, response, fit_params = task
    try:
        return 'fit', fit_group(conc, response, protein_id, bait_id, **fit_params)
    except InsufficientDataError as e:
        return 'excluded', (protein_id, bait_id), str(e)


def _resolve_n_jobs(n_jobs):
    cores = os.cpu_count() or 1
    if n_jobs is None or n_jobs == 0:
        return 1
    if n_jobs < 0:
        return cores
    return min(int(n_jobs), cores)


def _build_tasks(df, fit_params):
    tasks = []
    valid = df.dropna(subset=['response'])
    for (protein_id, bait_id), sub in valid.groupby(GROUP_KEYS, sort=True):
        tasks.append((protein_id, bait_id,
                      sub['concentration'].to_numpy(dtype=float),
                      sub['response'].to_numpy(dtype=float),
                      fit_params))
    return tasks


def fit_all(df, kd0=100.0, rmax0=4e7, max_iter=200, min_points=5,
            n_jobs=1, timeout=None):
    """
    Fit every (protein, bait) group of a response table.

    Parameters
    ----------
    df : pd.DataFrame
        Tidy table with 'protein_id', 'bait_id', 'concentration', 'response'.
    kd0, rmax0, max_iter, min_points
        Passed to ``fit_group``.
    n_jobs : int, optional
        Worker processes; 1 runs serially, -1 uses all cores (default: 1).
    timeout : float, optional
        Wall-clock limit in seconds for the whole stage. Groups finished
        before the limit are kept; the rest are abandoned.

    Returns
    -------
    tuple
        (fits DataFrame, excluded DataFrame, status dict with 'n_total',
        'n_completed', 'timed_out', 'n_jobs', 'elapsed_s')
    """
    fit_params = {'kd0': kd0, 'rmax0': rmax0, 'max_iter': max_iter, 'min_points': min_points}
    tasks = _build_tasks(df, fit_params)
    n_jobs = _resolve_n_jobs(n_jobs)

    start = time.monotonic()
    deadline = None if timeout is None else start + float(timeout)
    outcomes = []
    timed_out = False

    if n_jobs == 1 or len(tasks) <= 1:
        for task in tasks:
            if deadline is not None and time.monotonic() >= deadline:
                timed_out = True
                break
            outcomes.append(_fit_task(task))
    else:
        chunksize = max(1, len(tasks) // (n_jobs * 4))
        with mp.Pool(processes=n_jobs) as pool:
            iterator = pool.imap_unordered(_fit_task, tasks, chunksize=chunksize)
            while True:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    timed_out = True
                    break
                try:
                    outcomes.append(iterator.next(timeout=remaining))
                except StopIteration:
                    break
                except mp.TimeoutError:
                    timed_out = True
                    break
        # leaving the with-block terminates any workers still running

    fits = [outcome[1] for outcome in outcomes if outcome[0] == 'fit']
    excluded = [
        {'protein_id': o[1][0], 'bait_id': o[1][1], 'stage': 'fitting', 'reason': o[2]}
        for o in outcomes if o[0] == 'excluded'
    ]

    fits_df = pd.DataFrame([f.to_dict() for f in fits], columns=FIT_COLUMNS)
    fits_df = fits_df.sort_values(GROUP_KEYS).reset_index(drop=True)
    fits_df['converged'] = fits_df['converged'].astype(bool)
    excluded_df = pd.DataFrame(excluded, columns=['protein_id', 'bait_id', 'stage', 'reason'])

    status = {
        'n_total': len(tasks),
        'n_completed': len(outcomes),
        'timed_out': timed_out,
        'n_jobs': n_jobs,
        'elapsed_s': time.monotonic() - start,
    }
    return fits_df, excluded_df, status


def fit_kd(data, deadline=None):
    """
    Fit the binding isotherm to every gated (protein, bait) group.

    Fitting options (fitting section):
    - kd0, rmax0: initial guesses (default 100 nM, 4e7)
    - max_iter: solver evaluation budget (default 200)
    - min_points: minimum valid points per group (default 5)
    - n_jobs: worker processes, -1 for all cores (default 1)
    and run.timeout, the wall-clock limit in seconds (default: none).

    Parameters
    ----------
    data : dict
        Output from response_kd().
    deadline : float, optional
        Absolute ``time.monotonic()`` deadline shared with earlier stages,
        as set by run_kd(). Overrides run.timeout; a deadline already
        passed fits nothing.

    Returns
    -------
    dict
        Updated data dictionary with:
        - 'fits': one row per fitted group (kd, kd_stderr, rmax, rmax_stderr,
          cv, converged, n_points, n_iter, message)
        - 'excluded_groups': extended with groups the fitter refused
        - 'fit_status': completion and timing summary

    Example
    -------
    >>> data = response_kd(data)
    >>> data = fit_kd(data)
    >>> data['fits'].query('converged').head()
    """

    print("\n" + "="*80)
    print("ISOTHERM FITTING")
    print("="*80)

    params = get_params(data['config'], 'fitting')
    timeout = get_params(data['config'], 'run')['timeout']
    if deadline is not None:
        timeout = max(0.0, deadline - time.monotonic())

    print(f"\nModel: response = Rmax * c / (Kd + c)")
    print(f"Initial guesses: Kd0 = {params['kd0']:g} nM, Rmax0 = {params['rmax0']:g}")
    print(f"Max iterations: {params['max_iter']}")
    print(f"Workers: {_resolve_n_jobs(params['n_jobs'])}")
    if timeout is not None:
        print(f"Timeout: {timeout:.1f} s")

    fits, excluded, status = fit_all(
        data['df'],
        kd0=params['kd0'], rmax0=params['rmax0'],
        max_iter=params['max_iter'], min_points=params['min_points'],
        n_jobs=params['n_jobs'], timeout=timeout,
    )

    n_converged = int(fits['converged'].sum())
    print(f"\n  > Fitted {len(fits)}/{status['n_total']} groups in {status['elapsed_s']:.1f} s")
    print(f"    Converged: {n_converged}")
    print(f"    Not converged: {len(fits) - n_converged}")
    if len(excluded):
        print(f"    Refused (insufficient data): {len(excluded)}")
    if status['timed_out']:
        print(f"\n  Warning: Timeout reached, {status['n_total'] - status['n_completed']} "
              f"groups were not fitted. Continuing with partial results.")

    previous = data.get('excluded_groups')
    if previous is not None and len(previous):
        excluded = pd.concat([previous, excluded], ignore_index=True)

    data_updated = copy.copy(data)
    data_updated['fits'] = fits
    data_updated['excluded_groups'] = excluded
    data_updated['fit_status'] = status
    data_updated['fit_params'] = params

    _save_table(data_updated, fits, 'fits.csv')
    _save_table(data_updated, excluded, 'excluded_groups.csv')
    _autosave(data_updated, 'fit')

    print("\n" + "="*80)
    print("FITTING COMPLETE")
    print("="*80)
    print(f"\nNext step: tpa_kd() and filter_kd()")
    print("="*80 + "\n")

    return data_updated
