"""
Plain-text export of query results.

The report format is a fixed contract shared with the clipboard export:

    Zone: <name>
      <key>: <value>
    <blank line>

and a single fixed line when nothing matched.
"""

from typing import Iterable

from core.models import QueryResult

NOT_FOUND_MESSAGE = "Address not found in any defined zones."


def format_results(results: Iterable[QueryResult], sort_keys: bool = False) -> str:
    """
    Serialize results to the flat text report.

    Args:
        results: Matches in zone-list order
        sort_keys: Emit attributes in sorted key order instead of mapping order

    Returns:
        The report text
    """
    results = list(results)
    if not results:
        return NOT_FOUND_MESSAGE

    lines = []
    for result in results:
        lines.append(f"Zone: {result.zone_name}\n")
        items = result.attributes.items()
        if sort_keys:
            items = sorted(items)
        for key, value in items:
            lines.append(f"  {key}: {value}\n")
        lines.append("\n")
    return "".join(lines)
