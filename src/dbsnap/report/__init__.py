"""Change-set report renderers: text, JSON and HTML.

Usage:
    from dbsnap.report import render

    print(render(changes, "text"))
"""

from collections.abc import Callable

from dbsnap.report.formatters import format_json, format_text, sorted_change_set
from dbsnap.report.html import format_html
from dbsnap.schema.models import ChangeSet

RENDERERS: dict[str, Callable[[ChangeSet], str]] = {
    "text": format_text,
    "json": format_json,
    "html": format_html,
}


def render(change_set: ChangeSet, fmt: str = "text") -> str:
    """Render *change_set* in format *fmt* (``text``, ``json`` or ``html``).

    Raises:
        ValueError: If *fmt* is not a known format.
    """
    try:
        renderer = RENDERERS[fmt]
    except KeyError:
        raise ValueError(
            f"Unknown report format '{fmt}'. Choose from: {', '.join(RENDERERS)}"
        ) from None
    return renderer(change_set)


__all__ = [
    "format_text",
    "format_json",
    "format_html",
    "render",
    "sorted_change_set",
    "RENDERERS",
]
