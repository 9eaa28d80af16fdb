"""Serialize performance reports to JSON or CSV.

Both functions take the plain-dict form of a report (``PerformanceReport.to_dict()``
or a previously exported JSON file loaded back with ``json.loads``).
"""

from __future__ import annotations

import csv
import io
import json
from typing import Any


def report_to_json(report: dict[str, Any]) -> str:
    return json.dumps(report, indent=2, default=str)


def _fmt(value: Any) -> str:
    # Keep integral floats short: 120.0 -> 120
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def report_to_csv(report: dict[str, Any]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")

    writer.writerow(["API Performance"])
    writer.writerow(["Endpoint", "Count", "Average", "Min", "Max", "P95", "P99"])
    for endpoint, stats in (report.get("api") or {}).items():
        writer.writerow(
            [
                endpoint,
                stats.get("count", 0),
                f"{float(stats.get('average', 0.0)):.2f}",
                _fmt(stats.get("min", 0)),
                _fmt(stats.get("max", 0)),
                _fmt(stats.get("p95", 0)),
                _fmt(stats.get("p99", 0)),
            ]
        )
    writer.writerow([])

    memory = report.get("memory") or {}
    writer.writerow(["Memory Usage"])
    writer.writerow(["Metric", "Value"])
    writer.writerow(["Current", memory.get("current", 0)])
    writer.writerow(["Peak", memory.get("peak", 0)])
    writer.writerow(["Average", f"{float(memory.get('average', 0.0)):.2f}"])
    writer.writerow(["Trend", memory.get("trend", "stable")])

    vitals = report.get("web_vitals") or {}
    if vitals:
        writer.writerow([])
        writer.writerow(["Web Vitals"])
        writer.writerow(["Metric", "Value", "Rating"])
        for name, vital in vitals.items():
            writer.writerow([name.upper(), _fmt(vital.get("value")), vital.get("rating")])

    bottlenecks = report.get("bottlenecks") or []
    if bottlenecks:
        writer.writerow([])
        writer.writerow(["Bottlenecks"])
        writer.writerow(["Kind", "Subject", "Duration", "Threshold", "Severity"])
        for item in bottlenecks:
            writer.writerow(
                [
                    item.get("kind"),
                    item.get("subject"),
                    _fmt(item.get("duration_ms")),
                    _fmt(item.get("threshold_ms")),
                    item.get("severity"),
                ]
            )

    return buffer.getvalue().rstrip("\n")
