from pathlib import Path

import pytest

from gorgon.cache import UnitState
from gorgon.content import ChangeKind, FileChange, UnitBuilder
from gorgon.diagnostics import DiagnosticKind
from gorgon.engine import BuildEngine
from gorgon.errors import UnknownUnitError
from gorgon.renderer import Renderer
from gorgon.variables import Variables


def _added(path, text):
    return FileChange(Path(path), text, ChangeKind.ADDED)


def _modified(path, text):
    return FileChange(Path(path), text, ChangeKind.MODIFIED)


def _removed(path):
    return FileChange(Path(path), "", ChangeKind.REMOVED)


def _site(**kwargs):
    engine = BuildEngine(**kwargs)
    report = engine.build(
        [
            _added("components/footer.html", "<footer>F</footer>"),
            _added("content/index.html", "<x-footer/><x-footer/>"),
            _added("content/about.html", "<h1>About</h1>"),
        ]
    )
    return engine, report


def test_initial_build_renders_every_page():
    engine, report = _site()
    assert report.ok
    assert report.outputs == {
        "/": "<footer>F</footer><footer>F</footer>",
        "/about/": "<h1>About</h1>",
    }
    assert report.rendered == {"/", "/about/"}
    assert report.affected == {"footer", "/", "/about/"}
    assert engine.content_ids() == ["/", "/about/"]
    assert engine.component_ids() == ["footer"]
    assert engine.cache.state("/") is UnitState.VALID


def test_component_edit_rerenders_only_dependents():
    engine, _ = _site()
    report = engine.build([_modified("components/footer.html", "<footer>G</footer>")])
    assert report.affected == {"footer", "/"}
    assert report.rendered == {"/"}
    assert report.outputs["/"] == "<footer>G</footer><footer>G</footer>"
    assert "/about/" not in report.outputs
    assert engine.output_for("/about/") == "<h1>About</h1>"


def test_build_without_changes_renders_nothing():
    engine, _ = _site()
    report = engine.build()
    assert report.affected == set()
    assert report.outputs == {}


def test_full_build_reuses_unchanged_output():
    engine, _ = _site()
    report = engine.build(full=True)
    assert report.reused == {"/", "/about/"}
    assert report.rendered == set()
    assert report.outputs["/about/"] == "<h1>About</h1>"


def test_summary_lines():
    engine, _ = _site()
    report = engine.build([_added("content/broken.html", "<x-footer>")])
    lines = report.summary()
    assert lines[0] == f"Generation {report.generation}: 0 rendered, 0 reused, 1 failed, 0 degraded"
    assert lines[1].startswith("FAILED /broken/: unterminated <x-footer>")


def test_failed_page_keeps_last_good_output():
    engine, _ = _site()
    report = engine.build([_modified("content/index.html", "<x-footer")])
    assert not report.ok
    assert "/" in report.failures
    assert report.failures["/"].source_path == Path("content/index.html")
    assert "/" not in report.outputs
    assert engine.output_for("/") == "<footer>F</footer><footer>F</footer>"
    assert engine.cache.state("/") is UnitState.INVALID

    fixed = engine.build([_modified("content/index.html", "<x-footer/>!")])
    assert fixed.ok
    assert fixed.outputs["/"] == "<footer>F</footer>!"


def test_broken_component_fails_itself_and_degrades_callers():
    engine, _ = _site()
    report = engine.build([_modified("components/footer.html", "<footer><x-oops></footer>")])
    assert set(report.failures) == {"footer"}
    assert report.degraded["/"] == [
        "component 'footer' failed to parse: unterminated <x-oops>"
    ]
    assert "[broken component: footer]" in report.outputs["/"]


def test_unknown_component_resolves_once_added():
    engine = BuildEngine()
    first = engine.build([_added("content/index.html", "<x-late/>")])
    assert first.ok
    assert first.degraded == {"/": ["unknown component 'late' (line 1)"]}
    assert "[unknown component: late]" in first.outputs["/"]

    second = engine.build([_added("components/late.html", "<i>late</i>")])
    assert second.rendered == {"/"}
    assert second.outputs["/"] == "<i>late</i>"
    assert second.degraded == {}


def test_removed_component_degrades_callers():
    engine, _ = _site()
    report = engine.build([_removed("components/footer.html")])
    assert engine.component_ids() == []
    assert report.rendered == {"/"}
    assert "[unknown component: footer]" in report.outputs["/"]
    assert "/" in report.degraded


def test_removed_page_is_reported_and_forgotten():
    engine, _ = _site()
    report = engine.build([_removed("content/about.html")])
    assert report.removed == {"/about/"}
    assert engine.content_ids() == ["/"]
    assert engine.output_for("/about/") is None


def test_component_conflict_keeps_first_and_promotes_on_removal():
    engine = BuildEngine()
    report = engine.build(
        [
            _added("components/footer.html", "<footer>A</footer>"),
            _added("components/footer.htm", "<footer>B</footer>"),
            _added("content/index.html", "<x-footer/>"),
        ]
    )
    assert "footer" in report.failures
    assert "rejected components/footer.htm" in report.failures["footer"].message
    assert report.failures["footer"].source_path == Path("components/footer.htm")
    assert report.outputs["/"] == "<footer>A</footer>"
    assert report.degraded["/"][0].startswith("component 'footer' has conflicting definitions")

    promoted = engine.build([_removed("components/footer.html")])
    assert promoted.ok
    assert promoted.outputs["/"] == "<footer>B</footer>"
    assert promoted.degraded == {}


def test_removing_rejected_definition_clears_conflict():
    engine = BuildEngine()
    engine.build(
        [
            _added("components/footer.html", "<footer>A</footer>"),
            _added("components/footer.htm", "<footer>B</footer>"),
            _added("content/index.html", "<x-footer/>"),
        ]
    )
    report = engine.build([_removed("components/footer.htm")])
    assert report.ok
    assert report.outputs["/"] == "<footer>A</footer>"
    assert report.degraded == {}


def test_content_route_conflict():
    engine = BuildEngine()
    report = engine.build(
        [
            _added("content/about.html", "<p>html</p>"),
            _added("content/about.md", "markdown"),
        ]
    )
    assert "/about/" in report.failures
    assert report.failures["/about/"].source_path == Path("content/about.md")
    assert engine.render("/about/") == "<p>html</p>"


def test_cycle_renders_marker_and_is_reported_statically():
    engine = BuildEngine()
    report = engine.build(
        [
            _added("components/a.html", "a<x-b/>"),
            _added("components/b.html", "b<x-a/>"),
            _added("content/index.html", "<x-a/>"),
        ]
    )
    assert report.ok
    assert "[cycle: a]" in report.outputs["/"]
    assert report.degraded["/"] == ["component cycle a -> b -> a"]
    cycles = [d for d in engine.static_diagnostics() if d.kind is DiagnosticKind.CYCLE_DETECTED]
    assert [d.message for d in cycles] == ["component cycle a -> b -> a"]


def test_render_limit_fails_only_that_page():
    engine = BuildEngine(max_depth=2)
    report = engine.build(
        [
            _added("components/a.html", "<x-b/>"),
            _added("components/b.html", "<x-c/>"),
            _added("components/c.html", "c"),
            _added("content/index.html", "<x-a/>"),
            _added("content/flat.html", "<x-c/>"),
        ]
    )
    assert set(report.failures) == {"/"}
    assert report.failures["/"].message == "recursion depth exceeded the limit of 2"
    assert report.outputs == {"/flat/": "c"}
    kinds = [d.kind for d in report.diagnostics]
    assert DiagnosticKind.RENDER_LIMIT_EXCEEDED in kinds


def test_invalid_max_depth():
    with pytest.raises(ValueError):
        BuildEngine(max_depth=0)


def test_newer_generation_cancels_unstarted_renders(monkeypatch):
    engine = BuildEngine(workers=1)
    original = Renderer.render_unit
    calls = []

    def render_and_cancel(self, unit, params=None, slots=None):
        calls.append(unit.id)
        if len(calls) == 1:
            engine.cancel()
        return original(self, unit, params, slots)

    monkeypatch.setattr(Renderer, "render_unit", render_and_cancel)
    report = engine.build(
        [
            _added("content/index.html", "home"),
            _added("content/a.html", "a"),
            _added("content/b.html", "b"),
        ]
    )
    assert len(report.outputs) == 1
    assert len(report.cancelled) == 2
    assert set(report.outputs) | report.cancelled == {"/", "/a/", "/b/"}
    assert "Cancelled 2 units" in report.summary()[1]

    follow_up = engine.build()
    assert set(follow_up.outputs) == report.cancelled
    assert len(calls) == 3


def test_apply_changes_defers_rendering_to_next_build():
    engine = BuildEngine()
    changes = engine.apply_changes(
        [
            _added("content/index.html", "home"),
            _added("content/logo.png", ""),
            _added("notes.txt", "x"),
        ]
    )
    assert changes.changed == {"/"}
    assert changes.ignored == [Path("content/logo.png"), Path("notes.txt")]
    report = engine.build()
    assert report.outputs == {"/": "home"}


def test_variables_change_rerenders_users():
    engine = BuildEngine(variables=Variables({"site_name": "A"}))
    engine.build(
        [
            _added("content/index.html", '<title>@{var("site_name")}</title>'),
            _added("content/plain.html", "plain"),
        ]
    )
    assert engine.set_variables(Variables({"site_name": "A"})) == set()
    assert engine.set_variables(Variables({"site_name": "B"})) == {"/"}
    report = engine.build()
    assert report.outputs == {"/": "<title>B</title>"}


def test_default_layout_wraps_pages():
    builder = UnitBuilder(Path("content"), Path("components"), default_layout="base")
    engine = BuildEngine(builder=builder)
    report = engine.build(
        [
            _added(
                "components/base.html",
                "<html><title>@{title}</title><body>@{yield}</body></html>",
            ),
            _added("content/index.html", "---\ntitle: Home\n---\n<p>Hi</p>"),
        ]
    )
    assert report.outputs["/"] == "<html><title>Home</title><body><p>Hi</p></body></html>"

    relayout = engine.build(
        [_modified("components/base.html", "<main>@{title}|@{yield}</main>")]
    )
    assert relayout.outputs == {"/": "<main>Home|<p>Hi</p></main>"}


def test_markdown_page_keeps_invocations():
    engine = BuildEngine()
    report = engine.build(
        [
            _added("components/footer.html", "<footer>F</footer>"),
            _added("content/post.md", "# Title\n\n<x-footer/>\n"),
        ]
    )
    html = report.outputs["/post/"]
    assert '<h1 id="title">Title</h1>' in html
    assert "<p><footer>F</footer></p>" in html


def test_markdown_code_shows_placeholders_literally():
    engine = BuildEngine()
    report = engine.build(
        [
            _added(
                "content/docs.md",
                "---\ntitle: Docs\n---\nUse `@{title}` in @{title}.\n\n```\n@{yield}\n```\n",
            )
        ]
    )
    html = report.outputs["/docs/"]
    assert "<p>Use <code>&#64;{title}</code> in Docs.</p>" in html
    assert "<pre><code>&#64;{yield}\n</code></pre>" in html
    assert report.diagnostics == []


def test_render_single_units():
    engine, _ = _site()
    assert engine.render("footer") == "<footer>F</footer>"
    assert engine.render("/") == "<footer>F</footer><footer>F</footer>"
    with pytest.raises(UnknownUnitError):
        engine.render("/nope/")


def test_affected_by_walks_invocation_chain():
    engine = BuildEngine()
    engine.build(
        [
            _added("components/a.html", "<x-b/>"),
            _added("components/b.html", "<x-c/>"),
            _added("components/c.html", "c"),
            _added("components/d.html", "d"),
        ]
    )
    assert engine.affected_by({"c"}) == {"a", "b", "c"}


def test_diagnostics_are_streamed_with_generation():
    engine = BuildEngine()
    seen = []
    engine.diagnostics.subscribe(seen.append)
    report = engine.build([_added("content/index.html", "<x-ghost/>")])
    assert [d.kind for d in seen] == [DiagnosticKind.UNRESOLVED_COMPONENT]
    assert seen[0].generation == report.generation
    assert engine.diagnostics.history(report.generation) == seen


def test_static_diagnostics():
    engine = BuildEngine()
    engine.apply_changes(
        [
            _added("components/bad.html", "<x-oops"),
            _added("components/footer.html", "A"),
            _added("components/footer.htm", "B"),
            _added("content/index.html", "<x-ghost/>"),
        ]
    )
    found = {(d.kind, d.unit_id) for d in engine.static_diagnostics()}
    assert found == {
        (DiagnosticKind.PARSE_ERROR, "bad"),
        (DiagnosticKind.REGISTRATION_CONFLICT, "footer"),
        (DiagnosticKind.UNRESOLVED_COMPONENT, "/"),
    }
