#!/usr/bin/env python3
"""
Trip Analytics Privacy Core - Main Entry Point
==============================================
Command-line interface for anonymizing trips and disclosing aggregate products.

Usage:
    python main.py --config configs/default.ini anonymize
    python main.py --config configs/default.ini od-matrix --start-date 2024-01-01 --end-date 2024-01-31
    python main.py --config configs/default.ini heatmap --aggregation-level grid_500m --format geojson
"""

import argparse
import logging
import logging.handlers
import sys
import os
from datetime import date, datetime, timedelta
from typing import List, Optional

from core.config import Config
from core.errors import DataAccessError, JobCancelledError, JobConflictError


COMMANDS = ('anonymize', 'od-matrix', 'heatmap', 'trip-chains', 'mode-share')
DEFAULT_RANGE_DAYS = 30


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    log_dir: str = "logs"
) -> logging.Logger:
    """
    Set up logging with console and optional file output.

    Handlers are installed on the root logger, so every module logger
    (`logging.getLogger(__name__)` across core, engine, store, ...) reaches them.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file name. If None, auto-generated.
        log_dir: Directory for log files

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger()
    logger.setLevel(getattr(logging, log_level.upper()))

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_format = logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%H:%M:%S'
    )
    console_handler.setFormatter(console_format)
    logger.addHandler(console_handler)

    # File handler (rotating)
    if log_file or log_dir:
        os.makedirs(log_dir, exist_ok=True)
        if log_file is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            log_file = f"trip_analytics_{timestamp}.log"

        log_path = os.path.join(log_dir, log_file)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_format = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'
        )
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)
        logger.info(f"Logging to file: {log_path}")

    return logger


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected YYYY-MM-DD, got {value!r}")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Trip Analytics Privacy Core - anonymize trips and disclose aggregates",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Anonymize all eligible trips
    TRIP_ANALYTICS_PEPPER=... python main.py --config configs/default.ini anonymize

    # OD matrix for January as CSV
    python main.py --config configs/default.ini od-matrix \\
        --start-date 2024-01-01 --end-date 2024-01-31 --format csv

    # Trip chains with a stricter frequency floor
    python main.py --config configs/default.ini trip-chains --min-frequency 10
        """
    )

    # Required arguments
    parser.add_argument(
        "--config", "-c",
        required=True,
        help="Path to configuration INI file"
    )
    parser.add_argument(
        "command",
        choices=COMMANDS,
        help="Operation to run"
    )

    # Optional overrides
    parser.add_argument("--trips", type=str, default=None, help="Override raw trips path")
    parser.add_argument("--store", type=str, default=None, help="Override anonymized store path")
    parser.add_argument("--output", "-o", type=str, default=None, help="Override output path")
    parser.add_argument("--epsilon", type=float, default=None, help="Override noise epsilon")
    parser.add_argument("--k", type=int, default=None, help="Override k-anonymity threshold")

    # Query parameters
    parser.add_argument("--start-date", type=_iso_date, default=None,
                        help=f"First trip date (default: {DEFAULT_RANGE_DAYS} days ago)")
    parser.add_argument("--end-date", type=_iso_date, default=None, help="Last trip date (default: today)")
    parser.add_argument("--zones", type=str, default=None, help="Semicolon-separated zone ids, e.g. \"47.6000,-122.3400;47.6100,-122.3300\"")
    parser.add_argument("--travel-modes", type=str, default=None, help="Comma-separated travel modes")
    parser.add_argument("--time-bins", type=str, default=None, help="Comma-separated HH:MM start buckets")
    parser.add_argument("--min-frequency", type=int, default=None, help="Trip chains: minimum frequency")
    parser.add_argument("--max-pattern-length", type=int, default=None, help="Trip chains: maximum hops")
    parser.add_argument("--aggregation-level", type=str, default="zone",
                        help="Heatmap: 'zone' or 'grid_<meters>m' (default: zone)")
    parser.add_argument("--by-time-bucket", action="store_true", help="OD matrix: split pairs by time bucket")
    parser.add_argument("--format", choices=["json", "csv", "geojson"], default="json",
                        help="Export format (default: json)")

    # Logging options
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)"
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default="logs",
        help="Directory for log files (default: logs/)"
    )

    # Execution options
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration and exit without running"
    )

    return parser.parse_args(argv)


def apply_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Apply command-line overrides to configuration."""
    if args.trips is not None:
        config.data.trips_path = args.trips

    if args.store is not None:
        config.data.store_path = args.store

    if args.output is not None:
        config.data.output_path = args.output

    if args.epsilon is not None:
        config.privacy.epsilon = args.epsilon

    if args.k is not None:
        config.privacy.k_anonymity_threshold = args.k

    return config


def build_filters(args: argparse.Namespace):
    """Typed query filters from the CLI arguments, defaulting to the last 30 days."""
    from schema.filters import QueryFilters

    end_date = args.end_date or date.today()
    start_date = args.start_date or end_date - timedelta(days=DEFAULT_RANGE_DAYS)
    return QueryFilters.from_params({
        'start_date': start_date,
        'end_date': end_date,
        'zones': args.zones,
        'travel_modes': args.travel_modes,
        'time_bins': args.time_bins,
        'min_frequency': args.min_frequency,
        'max_pattern_length': args.max_pattern_length,
        'aggregation_level': args.aggregation_level,
    })


def print_config_summary(config: Config, logger: logging.Logger):
    """Print configuration summary."""
    logger.info("=" * 60)
    logger.info("Configuration Summary")
    logger.info("=" * 60)
    logger.info(f"k-anonymity threshold:    {config.privacy.k_anonymity_threshold}")
    logger.info(f"Chain k threshold:        {config.privacy.chain_k_threshold}")
    logger.info(f"Epsilon:                  {config.privacy.epsilon}")
    logger.info(f"Grid size (deg):          {config.bucketing.grid_size_degrees}")
    logger.info(f"Time bin (min):           {config.bucketing.time_bin_minutes}")
    logger.info(f"Chain gap (min):          {config.chains.gap_minutes}")
    logger.info(f"Trips Path:               {config.data.trips_path}")
    logger.info(f"Store Path:               {config.data.store_path}")
    logger.info(f"Output Path:              {config.data.output_path}")
    logger.info("=" * 60)


def run_anonymize(config: Config, logger: logging.Logger) -> int:
    """Run one anonymization job."""
    from core.pipeline import AnonymizationJobRunner, AnonymizationOrchestrator
    from core.pseudonymizer import Pseudonymizer
    from reader.trip_source import DataFrameTripSource
    from store.anonymized_store import FileAnonymizedStore
    from store.job_store import InMemoryJobStore

    orchestrator = AnonymizationOrchestrator(
        config=config,
        trip_source=DataFrameTripSource.from_file(config.data.trips_path),
        store=FileAnonymizedStore(config.data.store_path),
        pseudonymizer=Pseudonymizer.from_env(config.privacy.pepper_env_var),
    )
    runner = AnonymizationJobRunner(orchestrator, InMemoryJobStore())

    job_id, result = runner.run()

    logger.info("=" * 60)
    logger.info("Anonymization Complete")
    logger.info("=" * 60)
    logger.info(f"Job:                      {job_id}")
    logger.info(f"Processed:                {result.processed_count:,}")
    logger.info(f"Suppressed users:         {result.suppressed_user_count:,}")
    logger.info(f"Errors:                   {result.error_count:,}")
    logger.info("=" * 60)
    return 0


def run_disclosure(command: str, config: Config, args: argparse.Namespace, logger: logging.Logger) -> int:
    """Build, noise and export one aggregate product."""
    from engine.disclosure import NoiseInjector
    from engine.heatmap import HeatmapBuilder
    from engine.mode_share import ModeShareBuilder
    from engine.od_matrix import ODMatrixBuilder
    from engine.trip_chains import TripChainMiner
    from store.anonymized_store import FileAnonymizedStore
    from writer.export_writer import ExportWriter

    filters = build_filters(args)
    start, end = filters.start_date, filters.end_date
    store = FileAnonymizedStore(config.data.store_path)
    injector = NoiseInjector(config.privacy)
    writer = ExportWriter(config)
    extra = None

    if command == 'od-matrix':
        builder = ODMatrixBuilder(store, config)
        entries = injector.disclose_od(builder.build(start, end, filters, by_time_bucket=args.by_time_bucket))
        summary = builder.summarize(entries)
        product = 'od_matrix'
    elif command == 'heatmap':
        builder = HeatmapBuilder(store, config)
        entries = injector.disclose_heatmap(builder.build(start, end, filters))
        summary = builder.summarize(entries)
        product = 'heatmap'
    elif command == 'trip-chains':
        miner = TripChainMiner(store, config)
        patterns = miner.build(start, end, filters.min_frequency, filters.max_pattern_length, filters)
        entries = injector.disclose_chains(patterns)
        summary = miner.summarize(entries)
        extra = {"transition_matrix": miner.transition_matrix(entries).to_dict()}
        product = 'trip_chains'
    else:
        entries = injector.disclose_mode_share(ModeShareBuilder(store, config).build(start, end, filters))
        summary = {"total_trips": sum(e.count for e in entries), "modes": len(entries)}
        product = 'mode_share'

    path = writer.write(product, entries, start, end, fmt=args.format, summary=summary, extra=extra)
    logger.info(f"Disclosed {len(entries):,} {product} entries to {path}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point.

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    # Parse arguments
    args = parse_args(argv)

    # Set up logging
    logger = setup_logging(
        log_level=args.log_level,
        log_dir=args.log_dir
    )

    try:
        # Load configuration
        logger.info(f"Loading configuration from: {args.config}")
        config = Config.from_ini(args.config)

        # Apply command-line overrides
        config = apply_overrides(config, args)

        # Validate configuration
        logger.info("Validating configuration...")
        config.validate(require_data=args.command == 'anonymize')
        if not config.data.store_path:
            raise ValueError("store_path must be specified")

        # Print summary
        print_config_summary(config, logger)

        # Dry run check
        if args.dry_run:
            logger.info("Dry run mode - exiting without processing")
            return 0

        if args.command == 'anonymize':
            return run_anonymize(config, logger)
        return run_disclosure(args.command, config, args, logger)

    except FileNotFoundError as e:
        logger.error(f"File not found: {e}")
        return 1
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except (JobConflictError, JobCancelledError) as e:
        logger.error(str(e))
        return 1
    except DataAccessError as e:
        logger.error(f"Data access failed: {e}")
        return 2
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
