from .evaluator import Evaluator, evaluate_report, format_value
from .nodes import ReportDefinition
from .parser import parse_report, parse_report_file
from .result import Provenance, ReportLine, ReportResult

__all__ = [
    "Evaluator",
    "Provenance",
    "ReportDefinition",
    "ReportLine",
    "ReportResult",
    "evaluate_report",
    "format_value",
    "parse_report",
    "parse_report_file",
]
