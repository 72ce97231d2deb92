"""Render OD request emails from subjects and students."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from models import Mode, Student, Subject


EMAIL_SUBJECT = "OD Form Submission"
DEFAULT_SIGNATURE = "ACConduty"

TEXT_TEMPLATE = "body.txt.j2"
HTML_TEMPLATE = "body.html.j2"


class EmailTemplateError(RuntimeError):
    """Raised when an email template cannot be loaded."""


def _autoescape(name: Optional[str]) -> bool:
    return bool(name) and name.endswith(".html.j2")


def default_template_dir() -> Path:
    return Path(__file__).resolve().parent.parent / "templates" / "email"


class EmailComposer:
    """Deterministic plain-text and HTML renderer for OD emails."""

    def __init__(
        self,
        template_dir: Optional[Path] = None,
        *,
        signature: str = DEFAULT_SIGNATURE,
    ) -> None:
        email_dir = template_dir or default_template_dir()
        if not email_dir.exists():
            raise EmailTemplateError(f"Email template directory not found: {email_dir}")
        self.signature = signature
        self._env = Environment(
            loader=FileSystemLoader(str(email_dir)),
            autoescape=_autoescape,
            undefined=StrictUndefined,
            trim_blocks=True,
            lstrip_blocks=True,
            keep_trailing_newline=True,
        )
        self._text_template = self._load_template(TEXT_TEMPLATE)
        self._html_template = self._load_template(HTML_TEMPLATE)

    def compose(
        self,
        subjects: Sequence[Subject],
        students: Sequence[Student],
        *,
        mode: Mode,
        timetable_url: Optional[str] = None,
        html: bool = False,
    ) -> str:
        context = self._context(subjects, students, mode, timetable_url)
        template = self._html_template if html else self._text_template
        return template.render(context).rstrip("\n")

    def compose_text(
        self,
        subjects: Sequence[Subject],
        students: Sequence[Student],
        *,
        mode: Mode,
        timetable_url: Optional[str] = None,
    ) -> str:
        return self.compose(subjects, students, mode=mode, timetable_url=timetable_url)

    def compose_html(
        self,
        subjects: Sequence[Subject],
        students: Sequence[Student],
        *,
        mode: Mode,
        timetable_url: Optional[str] = None,
    ) -> str:
        return self.compose(
            subjects, students, mode=mode, timetable_url=timetable_url, html=True
        )

    def _context(
        self,
        subjects: Sequence[Subject],
        students: Sequence[Student],
        mode: Mode,
        timetable_url: Optional[str],
    ) -> Dict[str, Any]:
        return {
            "mode_label": "Bulk" if mode == "multiple" else "Single",
            "subjects": list(subjects),
            "students": list(students),
            "timetable_url": timetable_url or None,
            "signature": self.signature,
        }

    def _load_template(self, name: str):
        try:
            return self._env.get_template(name)
        except TemplateError as exc:
            raise EmailTemplateError(f"Failed to load template '{name}': {exc}") from exc
