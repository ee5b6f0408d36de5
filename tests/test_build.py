from pathlib import Path

import pytest

from gorgon.build import CONFIG_FILE, SiteBuilder, build_site, load_config
from gorgon.content import ChangeKind
from gorgon.diagnostics import DiagnosticStream
from gorgon.errors import ConfigError


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def _project(root: Path) -> Path:
    _write(root / CONFIG_FILE, "default_layout: layout\nworkers: 2\n")
    _write(root / "data" / "variables.yaml", "site_name: Demo\nbase_url: /\n")
    _write(root / "data" / "variables.prod.yaml", "base_url: https://demo.example\n")
    _write(
        root / "components" / "layout.html",
        '<html><head><title>@{title} | @{var("site_name")}</title></head>'
        "<body>@{yield}<x-footer/></body></html>",
    )
    _write(root / "components" / "footer.html", '<footer>@{var("base_url")}</footer>')
    _write(root / "content" / "index.md", "---\ntitle: Home\n---\nWelcome\n")
    _write(root / "content" / "about.html", "---\ntitle: About\n---\n<p>About us</p>")
    _write(root / "content" / "_draft.md", "Draft")
    return root


def test_load_config_defaults(tmp_path):
    config = load_config(tmp_path)
    assert config["content_dir"] == "content"
    assert config["components_dir"] == "components"
    assert config["port"] == 4000
    assert config["max_depth"] == 256
    assert config["default_layout"] is None


def test_load_config_overrides(tmp_path):
    _write(tmp_path / CONFIG_FILE, "port: 5000\nws_port: 5005\nmax_depth: 8\n")
    config = load_config(tmp_path)
    assert (config["port"], config["ws_port"], config["max_depth"]) == (5000, 5005, 8)


@pytest.mark.parametrize(
    "text, message",
    [
        ("port: nope\n", "'port' has an invalid value"),
        ("workers: true\n", "'workers' has an invalid value"),
        ("max_depth: 0\n", "'max_depth' must be at least 1"),
        ("workers: 0\n", "'workers' must be at least 1"),
        ("- a\n- b\n", "expected a mapping"),
        ("port: [\n", "invalid YAML"),
    ],
)
def test_load_config_errors(tmp_path, text, message):
    _write(tmp_path / CONFIG_FILE, text)
    with pytest.raises(ConfigError, match=message):
        load_config(tmp_path)


def test_build_site_writes_pages(tmp_path):
    root = _project(tmp_path)
    (root / "output" / "stale").mkdir(parents=True)
    result = build_site(root)
    assert result.ok
    assert result.written == ["/", "/about/"]
    index = (root / "output" / "index.html").read_text(encoding="utf-8")
    assert "<title>Home | Demo</title>" in index
    assert "<p>Welcome</p>" in index
    assert "<footer>/</footer>" in index
    about = (root / "output" / "about" / "index.html").read_text(encoding="utf-8")
    assert "<title>About | Demo</title>" in about
    assert not (root / "output" / "stale").exists()
    assert not (root / "output" / "draft").exists()


def test_build_site_release_uses_prod_variables(tmp_path):
    root = _project(tmp_path)
    build_site(root, release=True)
    index = (root / "output" / "index.html").read_text(encoding="utf-8")
    assert "<footer>https://demo.example</footer>" in index


def test_build_site_drafts_and_output_override(tmp_path):
    root = _project(tmp_path)
    target = tmp_path / "elsewhere"
    result = build_site(root, include_drafts=True, output_dir_override=target)
    assert result.output_dir == target
    assert (target / "draft" / "index.html").exists()
    assert not (root / "output").exists()


def test_build_site_requires_content_dir(tmp_path):
    with pytest.raises(FileNotFoundError):
        build_site(tmp_path)


def test_failed_page_does_not_stop_other_pages(tmp_path):
    root = _project(tmp_path)
    _write(root / "content" / "broken.html", "<x-footer>")
    result = build_site(root)
    assert not result.ok
    assert set(result.report.failures) == {"/broken/"}
    assert (root / "output" / "index.html").exists()
    assert not (root / "output" / "broken").exists()


def test_rebuild_writes_only_affected_routes(tmp_path):
    root = _project(tmp_path)
    site = SiteBuilder(root)
    site.build()
    about_file = root / "output" / "about" / "index.html"
    about_file.write_text("untouched", encoding="utf-8")

    footer = _write(root / "components" / "footer.html", "<footer>new</footer>")
    result = site.rebuild([site.change_for(footer, ChangeKind.MODIFIED)])
    assert sorted(result.written) == ["/", "/about/"]
    assert "<footer>new</footer>" in (root / "output" / "index.html").read_text(encoding="utf-8")

    about_file.write_text("untouched", encoding="utf-8")
    page = _write(root / "content" / "index.md", "---\ntitle: Home\n---\nChanged\n")
    result = site.rebuild([site.change_for(page, ChangeKind.MODIFIED)])
    assert result.written == ["/"]
    assert about_file.read_text(encoding="utf-8") == "untouched"


def test_rebuild_removes_deleted_routes(tmp_path):
    root = _project(tmp_path)
    site = SiteBuilder(root)
    site.build()
    about = root / "content" / "about.html"
    about.unlink()
    result = site.rebuild([site.change_for(about, ChangeKind.MODIFIED)])
    assert result.report.removed == {"/about/"}
    assert not (root / "output" / "about" / "index.html").exists()


def test_rebuild_reloads_variables(tmp_path):
    root = _project(tmp_path)
    site = SiteBuilder(root)
    site.build()
    variables = _write(root / "data" / "variables.yaml", "site_name: Renamed\nbase_url: /\n")
    result = site.rebuild([site.change_for(variables, ChangeKind.MODIFIED)])
    assert result.written == ["/", "/about/"]
    index = (root / "output" / "index.html").read_text(encoding="utf-8")
    assert "<title>Home | Renamed</title>" in index


def test_site_builder_shares_diagnostic_stream(tmp_path):
    root = _project(tmp_path)
    _write(root / "content" / "ghost.html", "<x-ghost/>")
    stream = DiagnosticStream()
    seen = []
    stream.subscribe(seen.append)
    SiteBuilder(root, diagnostics=stream).build()
    assert [(d.unit_id, d.target) for d in seen] == [("/ghost/", "ghost")]
