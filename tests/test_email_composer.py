from __future__ import annotations

from models import Student, Subject
from services.email_composer import EmailComposer


def test_plain_text_layout(composer: EmailComposer, subjects, students) -> None:
    text = composer.compose_text(
        subjects, students, mode="single", timetable_url="https://files.example/tt.pdf"
    )
    assert text == (
        "OD Request (Single)\n"
        "\n"
        "Subjects:\n"
        "1. CS101 Algo\n"
        "   Faculty: Dr. Rao [F01] | Time: 09:00-10:00 | Date: 2024-03-01\n"
        "\n"
        "Students:\n"
        "1. Asha (E1) - BTech 5 A\n"
        "\n"
        "Timetable: https://files.example/tt.pdf\n"
        "\n"
        "Regards,\n"
        "ACConduty"
    )


def test_compose_is_deterministic(composer: EmailComposer, subjects, students) -> None:
    first = composer.compose(subjects, students, mode="multiple")
    second = composer.compose(subjects, students, mode="multiple")
    assert first == second
    assert first.startswith("OD Request (Bulk)")
    html_first = composer.compose(subjects, students, mode="multiple", html=True)
    assert html_first == composer.compose(subjects, students, mode="multiple", html=True)


def test_empty_sections_render_placeholder(composer: EmailComposer) -> None:
    text = composer.compose([], [], mode="single")
    assert text.count("(none)") == 2
    assert "1." not in text
    assert "Timetable:" not in text


def test_html_escapes_field_values(composer: EmailComposer) -> None:
    subject = Subject(subject_code="<script>", subject_name="A & B", faculty_name='"Q"', faculty_code="it's")
    student = Student(name="<script>alert(1)</script>", enrollment_no="E1")
    html = composer.compose_html([subject], [student], mode="single")
    assert "<script>" not in html
    assert "&lt;script&gt;" in html
    assert "A &amp; B" in html
    assert "&#39;" in html


def test_custom_signature(subjects, students) -> None:
    composer = EmailComposer(signature="Coding Club")
    assert composer.compose_text(subjects, students, mode="single").endswith("Regards,\nCoding Club")
