from datetime import datetime
from pathlib import Path

from gorgon.utils import (
    ensure_clean_dir,
    extract_date_from_name,
    extract_tags,
    first_paragraph,
    is_html,
    is_internal_path,
    is_markdown,
    slugify,
    strip_hashtags,
    titleize,
)


def test_slugify_drops_date_prefix():
    assert slugify("2024-01-15-Hello World") == "hello-world"
    assert slugify("About_Us") == "about-us"
    assert slugify("---") == "index"


def test_titleize():
    assert titleize("2024-01-15-hello-world.md") == "Hello World"
    assert titleize("getting_started.html") == "Getting Started"
    assert titleize("2024-01-15-.md") == "Untitled"


def test_extract_date_from_name():
    assert extract_date_from_name("2024-02-29-leap") == datetime(2024, 2, 29)
    assert extract_date_from_name("2023-02-30-bad") is None
    assert extract_date_from_name("post") is None


def test_extract_tags_ignores_urls_and_entities():
    text = 'Hello #world and #python, <a href="#anchor">x</a> &#123; #world again #ab'
    assert extract_tags(text) == ["world", "python"]


def test_strip_hashtags():
    assert strip_hashtags("Learning #python today") == "Learning python today"


def test_first_paragraph_strips_markup_and_placeholders():
    text = "\n\n# Title\n\nMore"
    assert first_paragraph(text) == "Title"
    text = '<x-card title="@{title}">Hello   @{yield}\nworld</x-card>'
    assert first_paragraph(text) == "Hello world"
    assert first_paragraph("x" * 300, limit=10) == "x" * 10
    assert first_paragraph("") == ""


def test_ensure_clean_dir(tmp_path):
    target = tmp_path / "out"
    (target / "nested").mkdir(parents=True)
    (target / "nested" / "old.html").write_text("old", encoding="utf-8")
    ensure_clean_dir(target)
    assert target.exists()
    assert list(target.iterdir()) == []


def test_path_predicates():
    assert is_internal_path(Path("_drafts/post.md"))
    assert is_internal_path(Path("blog/_wip.md"))
    assert not is_internal_path(Path("blog/post.md"))
    assert is_markdown(Path("a.MD"))
    assert is_html(Path("a.htm"))
    assert not is_html(Path("a.md"))
