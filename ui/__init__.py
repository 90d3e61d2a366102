"""UI layer -- Rich dashboard, output formatters and logging setup."""

from .dashboard import (
    LiveGauge,
    console,
    create_histogram,
    gauge_fraction,
    print_endpoints,
    print_failure,
    print_final_results,
    print_header,
    print_latency_details,
    print_speed_result,
)
from .logging_setup import configure_logging
from .output import create_failure_json, create_result_json, format_text_result, save_json

__all__ = [
    "LiveGauge",
    "configure_logging",
    "console",
    "create_failure_json",
    "create_histogram",
    "create_result_json",
    "format_text_result",
    "gauge_fraction",
    "print_endpoints",
    "print_failure",
    "print_final_results",
    "print_header",
    "print_latency_details",
    "print_speed_result",
    "save_json",
]
