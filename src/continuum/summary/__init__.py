"""Background conversation summaries."""

from continuum.summary.generator import SummaryGenerator, parse_summary_json
from continuum.summary.worker import SummaryWorker

__all__ = ["SummaryGenerator", "SummaryWorker", "parse_summary_json"]
