from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from catalog_crawler.config import CrawlConfig
from catalog_crawler.errors import CrawlerError, RetriesExhausted, SchemaDriftError, TransportError
from catalog_crawler.log_setup import setup_logging
from catalog_crawler.runner import CrawlRunner, CrawlSummary

logger = logging.getLogger("catalog_crawler")

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_SCHEMA_DRIFT = 2
EXIT_TRANSPORT = 3
EXIT_SINK = 4
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Crawl the component catalog through isolated sessions")
    parser.add_argument("--config", help="JSON config file (defaults come from CRAWLER_* env vars)")
    parser.add_argument("--host", help="Search index host, e.g. http://127.0.0.1:7700")
    parser.add_argument("--import", dest="import_path", help="Import existing batch files into the index and exit")
    parser.add_argument("--category", type=int, help="Crawl a single sub-category id, skipping the tree fetch")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--workers", type=int, help="Number of isolated sessions to start")
    parser.add_argument("--output-dir", help="Directory for per-sub-category JSON files")
    parser.add_argument("--datasheets", help="Path of the sorted datasheet URL list")
    parser.add_argument("--proxy", action="append", default=[], help="Proxy URL; repeat to build a pool (replaces Tor)")
    parser.add_argument("--tor-port-base", type=int, help="First SOCKS port for the per-worker tor instances")
    parser.add_argument("--no-launch-tor", action="store_true", help="Attach to already running tor instances")
    parser.add_argument("--page-attempts", type=int, help="Attempts per page before a sub-category is abandoned")
    return parser


def config_from_args(args: argparse.Namespace) -> CrawlConfig:
    cfg = CrawlConfig.from_file(args.config) if args.config else CrawlConfig.from_env()
    if args.host:
        cfg.index_host = args.host
    if args.workers is not None:
        cfg.workers = args.workers
    if args.output_dir:
        cfg.output_dir = args.output_dir
    if args.datasheets:
        cfg.datasheet_path = args.datasheets
    if args.proxy:
        cfg.proxies = list(args.proxy)
    if args.tor_port_base is not None:
        cfg.tor_port_base = args.tor_port_base
    if args.no_launch_tor:
        cfg.launch_tor = False
    if args.page_attempts is not None:
        cfg.page_attempts = args.page_attempts
    cfg.validate()
    return cfg


def exit_code_for(summary: CrawlSummary) -> int:
    report = summary.report
    if report.stopped:
        return EXIT_INTERRUPTED
    if report.worker_failures:
        for worker, reason in report.worker_failures.items():
            logger.error("TransportFatal: %s: %s", worker, reason)
        if report.unprocessed:
            logger.error("%d sub-categories were left unprocessed", len(report.unprocessed))
        return EXIT_TRANSPORT
    if report.sink_failures:
        logger.error("SinkFailure: %d batches were rejected", len(report.sink_failures))
        return EXIT_SINK
    return EXIT_OK


def run_cli(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(verbose=args.verbose)

    try:
        cfg = config_from_args(args)
    except (OSError, ValueError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_USAGE

    runner = CrawlRunner(cfg)
    try:
        if args.import_path:
            runner.run_import(args.import_path)
            return EXIT_OK
        summary = runner.run(category_id=args.category)
    except SchemaDriftError as exc:
        logger.error("%s: %s", exc.kind, exc)
        return EXIT_SCHEMA_DRIFT
    except (TransportError, RetriesExhausted) as exc:
        logger.error("%s: %s", exc.kind, exc)
        return EXIT_TRANSPORT
    except CrawlerError as exc:
        logger.error("%s: %s", exc.kind, exc)
        return EXIT_SINK if exc.kind == "SinkFailure" else EXIT_USAGE
    except ValueError as exc:
        logger.error("%s", exc)
        return EXIT_USAGE

    report = summary.report
    logger.info(
        "Scraping finished: %d completed (%d empty), %d aborted, %d unprocessed, %d datasheets, stats=%s",
        len(report.completed),
        len(report.empty),
        len(report.aborted),
        len(report.unprocessed),
        summary.datasheets,
        runner.stats.as_dict(),
    )
    for sub_id, reason in sorted(report.aborted.items()):
        logger.warning("SubcategoryFatal: %d: %s", sub_id, reason)
    return exit_code_for(summary)


def main() -> int:
    return run_cli(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(main())
