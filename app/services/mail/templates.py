"""
Email template registry.

Templates are Jinja2 files under app/templates with HTML autoescaping. Layouts
extend base.html. They are loaded once at startup; a missing template fails
startup instead of the first send. Message bodies go through the `markdown`
filter, which escapes raw HTML before rendering.
"""

from pathlib import Path

import mistune
from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateNotFound, select_autoescape
from jinja2.exceptions import UndefinedError
from markupsafe import Markup

TEMPLATE_DIR = Path(__file__).resolve().parent.parent.parent / "templates"

REQUIRED_TEMPLATES = (
    "base.html",
    "thread.html",
    "message.html",
    "event.html",
    "cancellation.html",
    "digest.html",
    "digest_item.html",
    "admin.html",
)

_markdown = mistune.create_markdown(escape=True, hard_wrap=True, plugins=["strikethrough", "url"])


class TemplateError(RuntimeError):
    """Raised when a template is missing or rendered with missing values."""


def render_markdown(text: str) -> str:
    return _markdown(text or "")


def markdown_filter(text: str) -> Markup:
    return Markup(render_markdown(text))


class TemplateRenderer:
    def __init__(self, directory: Path = TEMPLATE_DIR):
        self.env = Environment(
            loader=FileSystemLoader(str(directory)),
            autoescape=select_autoescape(["html"]),
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["markdown"] = markdown_filter
        self._templates = {}
        for name in REQUIRED_TEMPLATES:
            try:
                self._templates[name] = self.env.get_template(name)
            except TemplateNotFound as e:
                raise TemplateError(f"Email template '{name}' not found in {directory}") from e

    def render(self, name: str, /, **values) -> str:
        template = self._templates.get(name)
        if template is None:
            raise TemplateError(f"Unknown email template '{name}'")
        try:
            return template.render(**values)
        except UndefinedError as e:
            raise TemplateError(f"Template '{name}' is missing a value: {e}") from e

    def render_page(self, layout: str, preview: str, /, **values) -> str:
        """Render a layout that extends base.html."""
        return self.render(layout, preview=preview, **values)
