"""
Command line entry point: ``python -m kdms config.yaml``.
"""

import argparse

from .pipeline import run_kd
from .utils import PROFILES, _load_config


def main(argv=None):
    p = argparse.ArgumentParser(
        prog='kdms',
        description="Estimate binding affinities from a bait dilution series.",
    )
    p.add_argument("config", help="Path to YAML configuration file.")
    p.add_argument("--profile", choices=sorted(PROFILES), help="Dataset profile to apply.")
    p.add_argument("--n-jobs", type=int, help="Worker processes for fitting (-1 = all cores).")
    p.add_argument("--timeout", type=float, help="Wall-clock limit for fitting, in seconds.")
    p.add_argument("-o", "--output-dir", help="Output directory (overrides data_paths.output_dir).")
    args = p.parse_args(argv)

    config = _load_config(args.config)
    if args.profile:
        config['profile'] = args.profile
    if args.n_jobs is not None:
        config.setdefault('fitting', {})['n_jobs'] = args.n_jobs
    if args.timeout is not None:
        config.setdefault('run', {})['timeout'] = args.timeout
    if args.output_dir:
        config.setdefault('data_paths', {})['output_dir'] = args.output_dir

    data = run_kd(config)
    print(f"Found {len(data['interactors'])} interactors "
          f"({len(data['high_confidence'])} high confidence)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
