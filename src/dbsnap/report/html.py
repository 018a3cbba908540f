"""Standalone HTML rendering of a change set.

The page is rendered from ``templates/change_report.html.j2`` with
autoescaping on, so table and column names are always HTML-escaped.
"""

from pathlib import Path

from jinja2 import Environment, FileSystemLoader

from dbsnap.report.formatters import sorted_change_set
from dbsnap.schema.models import ChangeSet

TEMPLATES_DIR = Path(__file__).parent / "templates"
TEMPLATE_NAME = "change_report.html.j2"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=True,
    trim_blocks=True,
    lstrip_blocks=True,
)


def format_html(change_set: ChangeSet) -> str:
    """Render *change_set* as a complete HTML document."""
    template = _env.get_template(TEMPLATE_NAME)
    return template.render(cs=sorted_change_set(change_set))
