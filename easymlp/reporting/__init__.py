"""Reporting helpers: progress sinks, run artifacts, summaries and plots."""

from .artifacts import git_sha, write_json, write_manifest
from .metrics import ConsoleProgress, CsvSink, JsonlSink
from .plots import PlotAdapter
from .summary import compute_auc, write_summary

__all__ = [
    "ConsoleProgress",
    "CsvSink",
    "JsonlSink",
    "PlotAdapter",
    "compute_auc",
    "git_sha",
    "write_json",
    "write_manifest",
    "write_summary",
]
