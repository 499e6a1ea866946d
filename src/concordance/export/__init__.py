"""Report export: the sole hand-off to downstream renderers."""

from concordance.export.json_export import (
    export_report_json,
    report_to_dict,
    write_report,
)

__all__ = [
    "export_report_json",
    "report_to_dict",
    "write_report",
]
