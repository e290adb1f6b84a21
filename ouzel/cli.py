"""
Command-line interface for the lecture scripts.
"""

import argparse
import logging
from pathlib import Path

import matplotlib

from . import config


def main(argv=None):
    parser = argparse.ArgumentParser(description="Species distribution model of the ring ouzel, step by step")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    layers = subparsers.add_parser("layers", help="Download predictors and occurrences, write the data files")
    layers.add_argument("--output-dir", "-o", type=Path, default=config.OUTPUT_DIR, help="Output directory")
    layers.add_argument("--country", default=config.COUNTRY, help="ISO code of the study country")
    layers.add_argument("--species", default=config.SPECIES_NAME, help="Scientific name of the species")
    layers.add_argument("--buffer", type=float, default=config.BUFFER_KM,
                        help="Minimum distance (km) between pseudo-absences and presences")
    layers.add_argument("--seed", "-s", type=int, default=config.SEED, help="Random seed")

    lecture = subparsers.add_parser("lecture", help="Build, validate and explain the model, write figures and tables")
    lecture.add_argument("--output-dir", "-o", type=Path, default=config.OUTPUT_DIR, help="Output directory")
    lecture.add_argument("--layers", type=Path, default=None, help="Stack written by the layers command")
    lecture.add_argument("--presences", type=Path, default=None, help="presences.csv written by the layers command")
    lecture.add_argument("--country", default=config.COUNTRY, help="ISO code of the study country")
    lecture.add_argument("--species", default=config.SPECIES_NAME, help="Scientific name of the species")
    lecture.add_argument("--buffer", type=float, default=config.LECTURE_BUFFER_KM,
                         help="Minimum distance (km) between pseudo-absences and presences")
    lecture.add_argument("--folds", "-k", type=int, default=config.N_FOLDS, help="Number of folds")
    lecture.add_argument("--bags", type=int, default=config.N_BAGS, help="Number of trees in the ensemble")
    lecture.add_argument("--no-landcover", action="store_true", help="Skip the land-cover tree and ensemble")
    lecture.add_argument("--seed", "-s", type=int, default=config.SEED, help="Random seed")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    matplotlib.use("Agg")

    from .pipeline import prepare_data, run_lecture

    if args.command == "layers":
        paths = prepare_data(
            output_dir=args.output_dir,
            country=args.country,
            species_name=args.species,
            buffer_km=args.buffer,
            seed=args.seed,
        )
        print(f"\nWrote {len(paths)} files to {args.output_dir}/")
    else:
        results = run_lecture(
            output_dir=args.output_dir,
            layers_path=args.layers,
            presences_path=args.presences,
            country=args.country,
            species_name=args.species,
            buffer_km=args.buffer,
            seed=args.seed,
            n_folds=args.folds,
            n_bags=args.bags,
            landcover=not args.no_landcover,
        )
        print(f"\nSelected variables: {', '.join(results['variables'])}")
        print(f"Threshold: {results['threshold']:.3f}")
        print(f"Validation MCC: {results['tuned_cv_mcc']:.3f}")


if __name__ == "__main__":
    main()
