import pytest

from app.services.mail.templates import TemplateError, TemplateRenderer, render_markdown


def test_markdown_lists_and_emphasis():
    rendered = render_markdown("- one\n- two\n\nSunday at **11**")

    assert "<ul>" in rendered
    assert "<li>one</li>" in rendered
    assert "<strong>11</strong>" in rendered


def test_markdown_links_stop_before_quotes():
    rendered = render_markdown('Link: "https://example.com/x"')

    assert 'href="https://example.com/x"' in rendered


def test_markdown_escapes_raw_html():
    rendered = render_markdown("<script>alert(1)</script>")

    assert "<script>" not in rendered
    assert "&lt;script&gt;" in rendered


def test_pages_escape_values_and_extend_base():
    renderer = TemplateRenderer()

    page = renderer.render_page(
        "thread.html",
        "preview <b>text</b>",
        subject="Tom & Jerry <3",
        messages=[
            {"from_id": "a", "to_id": "b", "accent": "#333", "name": "<Ann>", "body": "*hi*"},
        ],
    )

    assert page.startswith("<!DOCTYPE html>")
    assert "Tom &amp; Jerry &lt;3" in page
    assert "preview &lt;b&gt;text&lt;/b&gt;" in page
    assert "&lt;Ann&gt;" in page
    assert "<em>hi</em>" in page


def test_missing_value_raises_template_error():
    with pytest.raises(TemplateError):
        TemplateRenderer().render_page("event.html", "preview", name="Picnic")


def test_missing_template_directory_fails_at_startup(tmp_path):
    with pytest.raises(TemplateError):
        TemplateRenderer(tmp_path)
