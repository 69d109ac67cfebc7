"""
ms2uvfits Command Line Interface.

Commands:
    ms2uvfits convert <ms> -o <base>   Convert one MS
    ms2uvfits run <jobs.yaml>          Run conversions from a job file
"""

import argparse
import sys
import os

from ms2uvfits.errors import ConversionError

EXIT_CONVERSION_ERROR = 2


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="ms2uvfits",
        description="ms2uvfits - MeasurementSet to random-groups uvfits converter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # One file per spectral window: out/obs_band01.uvfits, ...
    ms2uvfits convert mydata.ms -o out/obs

    # Undo phase tracking, convert CORRECTED_DATA
    ms2uvfits convert mydata.ms -o out/obs -c CORRECTED_DATA -u

    # Batch conversions
    ms2uvfits run jobs.yaml

Job files use pipe-delimited tables in YAML.
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # =========================================================================
    # CONVERT command
    # =========================================================================
    convert_parser = subparsers.add_parser("convert", help="Convert one MS")
    convert_parser.add_argument("ms", help="MeasurementSet path")
    convert_parser.add_argument(
        "-o", "--output", required=True,
        help="Output base name; files are <base>_bandNN.uvfits"
    )
    convert_parser.add_argument(
        "-c", "--column", default="DATA",
        help="Visibility column (default: DATA)"
    )
    convert_parser.add_argument(
        "-u", "--undo-phase-tracking", action="store_true",
        help="Rotate visibilities to zero delay"
    )
    convert_parser.add_argument(
        "--reset-weights", action="store_true",
        help="Set every weight to 1"
    )
    convert_parser.add_argument(
        "--batch-rows", type=int, default=10000,
        help="Rows read per batch (default: 10000)"
    )
    convert_parser.add_argument(
        "--keep-partial", action="store_true",
        help="On failure keep files with the rows written so far"
    )
    convert_parser.add_argument(
        "--no-recompute-uvw", action="store_true",
        help="Use the UVW column as stored"
    )
    convert_parser.add_argument("--field", type=int, default=0, help="FIELD id (default: 0)")
    convert_parser.add_argument("-v", "--verbose", action="store_true")

    # =========================================================================
    # RUN command - job file
    # =========================================================================
    run_parser = subparsers.add_parser("run", help="Run conversions from a job file")
    run_parser.add_argument("config", help="YAML job file")
    run_parser.add_argument("-v", "--verbose", action="store_true")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "convert":
        _run_convert(args)
    elif args.command == "run":
        _run_jobs(args)


def _progress(verbose: bool):
    """Observer printing progress when verbose."""
    if not verbose:
        return None

    def observer(done: int, total: int):
        pct = 100.0 * done / total if total else 100.0
        print(f"[MS2UVFITS] {done}/{total} rows ({pct:.1f}%)")

    return observer


def _fail(e: BaseException):
    if isinstance(e, ConversionError):
        print(f"ERROR [{e.kind}]: {e.message}{_location(e)}", file=sys.stderr)
        sys.exit(EXIT_CONVERSION_ERROR)
    print(f"ERROR: {e}", file=sys.stderr)
    sys.exit(1)


def _location(e: ConversionError) -> str:
    where = []
    if e.row is not None:
        where.append(f"row {e.row}")
    if e.offset is not None:
        where.append(f"byte offset {e.offset}")
    return f" ({', '.join(where)})" if where else ""


def _run_convert(args):
    """Convert a single MS."""
    from ms2uvfits.pipeline.config_parser import ConversionConfig
    from ms2uvfits.pipeline.runner import convert_ms

    try:
        config = ConversionConfig(
            ms_path=args.ms,
            output_base=args.output,
            data_column=args.column,
            undo_phase_tracking=args.undo_phase_tracking,
            reset_weights=args.reset_weights,
            batch_rows=args.batch_rows,
            recompute_uvw=not args.no_recompute_uvw,
            keep_partial=args.keep_partial,
            field_id=args.field,
            verbose=args.verbose,
        )
        result = convert_ms(config, observer=_progress(args.verbose))
    except KeyboardInterrupt:
        print("ERROR: interrupted", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        _fail(e)

    for path in result.paths:
        print(path)


def _run_jobs(args):
    """Run conversions from a job file."""
    from ms2uvfits.pipeline.runner import run_jobs

    if not os.path.exists(args.config):
        print(f"ERROR: Config file not found: {args.config}", file=sys.stderr)
        sys.exit(1)

    try:
        results = run_jobs(
            args.config,
            observer=_progress(args.verbose),
            verbose=args.verbose,
        )
    except KeyboardInterrupt:
        print("ERROR: interrupted", file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        _fail(e)

    for result in results:
        for path in result.paths:
            print(path)


if __name__ == "__main__":
    main()
