#!/usr/bin/env python3
"""
linkgauge CLI -- latency, download and upload against one endpoint pair.

Usage::

    python linkgauge.py                          # rich dashboard
    python linkgauge.py --simple                 # plain text
    python linkgauge.py --json                   # JSON to stdout
    python linkgauge.py --config my.json         # load option overrides
    python linkgauge.py --download-duration 8000 --connections 8
"""
from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from typing import Optional

from meter.config import SpeedTestConfig, load_config
from meter.errors import ConfigError, SpeedTestError, TestCancelledError
from meter.runner import RunObserver, RunResult, SpeedTestRunner
from ui.dashboard import (
    LiveGauge,
    console,
    print_endpoints,
    print_failure,
    print_final_results,
    print_header,
    print_latency_details,
    print_speed_result,
)
from ui.logging_setup import configure_logging
from ui.output import create_failure_json, create_result_json, format_text_result, save_json


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def build_config(args: argparse.Namespace) -> SpeedTestConfig:
    """Defaults, then the config file, then command-line flags.  Validated."""
    config = load_config(args.config).with_overrides(
        ping_sample_count=args.ping_count,
        ping_target=args.ping_target,
        download_target=args.download_target,
        download_duration_ms=args.download_duration,
        download_parallelism=args.connections,
        upload_target=args.upload_target,
        upload_payload_bytes=args.upload_payload,
        upload_duration_cap_ms=args.upload_duration,
        upload_parallelism=args.upload_connections,
        upload_reject_retries=args.upload_retries,
    )
    return config.validate()


# ---------------------------------------------------------------------------
# Core test runner
# ---------------------------------------------------------------------------

async def run_once(
    config: SpeedTestConfig,
    *,
    json_output: bool = False,
    output_file: Optional[str] = None,
    simple: bool = False,
) -> Optional[RunResult]:
    """Execute one run and render it.  Returns ``None`` if the run failed."""
    show_ui = not json_output and not simple

    if show_ui:
        print_header()
        print_endpoints(config)

    observer: RunObserver = LiveGauge() if show_ui else RunObserver()
    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGTERM, cancel.set)
    except (NotImplementedError, RuntimeError):
        pass  # not supported on this platform

    try:
        result = await SpeedTestRunner(config, observer).run(cancel)
    except TestCancelledError:
        raise
    except SpeedTestError as exc:
        if json_output:
            print(json.dumps(create_failure_json(exc), indent=2))
        elif show_ui:
            print_failure(exc)
        else:
            print(f"Test failed: {exc}", file=sys.stderr)
        return None

    if show_ui:
        print_latency_details(result.latency)
        print_speed_result(result.download, "Download Results", "green")
        print_speed_result(result.upload, "Upload Results", "blue")
        print_final_results(result)
    elif simple:
        print(format_text_result(result))

    result_json = create_result_json(result)
    if json_output:
        print(json.dumps(result_json, indent=2))

    if output_file:
        try:
            save_json(result_json, output_file)
        except OSError as exc:
            console.print(f"[red]{exc}[/red]")
        else:
            if not json_output:
                console.print(f"\n[green]Results saved to:[/green] {output_file}")

    return result


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="linkgauge -- measure latency, download and upload throughput",
    )
    # Output modes
    parser.add_argument("--json", "-j", action="store_true", help="Output results as JSON")
    parser.add_argument("--output", "-o", type=str, metavar="FILE", help="Save results to JSON file")
    parser.add_argument("--simple", "-s", action="store_true", help="Simple output mode (no dashboard)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug details")
    parser.add_argument("--config", type=str, metavar="FILE", help="JSON file with option overrides")

    # Endpoints
    parser.add_argument("--ping-target", metavar="URL", help="Latency endpoint (http(s) or ws(s))")
    parser.add_argument("--download-target", metavar="URL", help="Resource fetched repeatedly")
    parser.add_argument("--upload-target", metavar="URL", help="Endpoint accepting POST bodies")

    # Test parameters (None means: keep the configured value)
    parser.add_argument("--ping-count", type=int, metavar="N", help="Number of ping samples (default: 5)")
    parser.add_argument("--download-duration", type=float, metavar="MS", help="Download window in ms (default: 4000)")
    parser.add_argument("--upload-duration", type=float, metavar="MS", help="Upload window cap in ms (default: 4000)")
    parser.add_argument("--connections", type=int, metavar="N", help="Concurrent download streams (default: 4)")
    parser.add_argument("--upload-connections", type=int, metavar="N", help="Concurrent upload streams (default: 4)")
    parser.add_argument("--upload-payload", type=int, metavar="BYTES", help="Upload payload size (default: 2 MiB)")
    parser.add_argument("--upload-retries", type=int, metavar="N", help="Retries on upload rejection before simulating (default: 0)")
    return parser


def main(argv: Optional[list] = None) -> int:
    args = make_parser().parse_args(argv)
    configure_logging(verbose=args.verbose)

    try:
        config = build_config(args)
    except ConfigError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        return 1

    try:
        result = asyncio.run(
            run_once(config, json_output=args.json, output_file=args.output, simple=args.simple)
        )
    except (KeyboardInterrupt, TestCancelledError):
        console.print("\n[yellow]Test cancelled[/yellow]")
        return 1

    return 0 if result is not None else 1


if __name__ == "__main__":
    sys.exit(main())
