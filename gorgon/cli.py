"""Command-line interface for Gorgon.

This module defines the CLI commands using the Click framework.

Commands:
- new: Scaffold a new Gorgon project.
- build: Build the site into the output directory.
- serve: Run development server with live reload.
- check: Report parse errors, conflicts, cycles and unknown components without building.
- add: Create a new page or component interactively.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from datetime import datetime
from pathlib import Path

import click
import questionary

from . import __version__
from .errors import ConfigError
from .logging import configure_logging

_SCAFFOLD: dict[str, str] = {
    "gorgon.yaml": """\
content_dir: content
components_dir: components
data_dir: data
output_dir: output
default_layout: layout
port: 4000
""",
    "data/variables.yaml": """\
site_name: My Gorgon Site
""",
    "data/variables.dev.yaml": """\
base_url: http://localhost:4000
""",
    "data/variables.prod.yaml": """\
base_url: https://example.com
""",
    "components/layout.html": """\
---
params:
  title: Untitled
---
<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>@{title} | @{var("site_name")}</title>
</head>
<body>
  <x-header />
  <main>@{yield}</main>
  <x-footer />
</body>
</html>
""",
    "components/header.html": """\
<header><a href="@{var("base_url")}/">@{var("site_name")}</a></header>
""",
    "components/footer.html": """\
<footer>Built with Gorgon</footer>
""",
    "components/ui/card.html": """\
---
params:
  tone: plain
---
<section class="card card-@{tone}">
  <h2>@{yield header}</h2>
  <div>@{yield}</div>
</section>
""",
    "content/index.md": """\
---
title: Home
---

# Welcome

<x-ui/card tone="info"><slot name="header">@{title}</slot>Edit content/index.md to get started.</x-ui/card>
""",
    "content/about.html": """\
---
title: About
---
<h1>About</h1>
<p>This page is plain HTML with components.</p>
""",
}


@click.group()
@click.version_option(version=__version__, prog_name="gorgon")
def cli():
    """Gorgon static site generator."""


@cli.command()
@click.argument("name")
def new(name: str):
    """Scaffold a new Gorgon project."""
    target = Path(name).resolve()
    if target.exists() and any(target.iterdir()):
        raise click.ClickException(
            f"Refusing to initialize into non-empty directory: {target}"
        )
    _scaffold(target)
    click.echo(f"New Gorgon site created at {target}")


@cli.command()
@click.option("--release", is_flag=True, help="Use production variables")
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.option("--workers", type=click.IntRange(min=1), help="Render worker threads")
@click.option("--max-depth", type=click.IntRange(min=1), help="Component nesting ceiling")
@click.option("--verbose", "-v", is_flag=True, help="Log every diagnostic and debug detail")
def build(
    release: bool, drafts: bool, workers: int | None, max_depth: int | None, verbose: bool
):
    """Build the site into the output directory."""
    configure_logging(verbose=verbose)
    project_root = Path.cwd()
    from .build import build_site

    try:
        result = build_site(
            project_root,
            release=release,
            include_drafts=drafts,
            workers=workers,
            max_depth=max_depth,
        )
    except (ConfigError, FileNotFoundError) as exc:
        raise click.ClickException(str(exc)) from None

    report = result.report
    for unit_id in sorted(report.degraded):
        for reason in report.degraded[unit_id]:
            click.echo(click.style(f"  Degraded {unit_id}: ", fg="yellow") + reason, err=True)
    if not report.ok:
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        for unit_id in sorted(report.failures):
            error = report.failures[unit_id]
            location = _relative(error.source_path, project_root)
            click.echo(click.style(f"  {unit_id}", fg="yellow") + f" ({location})", err=True)
            click.echo(f"    Error: {error.message}", err=True)
    click.echo(
        f"Built {len(result.written)} pages into {result.output_dir} "
        f"({len(report.failures)} failed, {len(report.degraded)} degraded)"
    )
    if not report.ok:
        raise SystemExit(1)


@cli.command()
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.option(
    "--port",
    type=int,
    required=False,
    help="Port to run the dev server (overrides gorgon.yaml)",
)
@click.option(
    "--ws-port",
    type=int,
    required=False,
    help="Port for the live reload websocket server (overrides gorgon.yaml ws_port)",
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug detail")
def serve(drafts: bool, port: int | None, ws_port: int | None, verbose: bool):
    """Run dev server with live reload."""
    configure_logging(verbose=verbose)
    project_root = Path.cwd()
    from .server import DevServer

    try:
        server = DevServer(project_root, http_port=port, ws_port=ws_port, include_drafts=drafts)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from None
    server.start()


@cli.command()
@click.option("--drafts", is_flag=True, help="Include draft content")
def check(drafts: bool):
    """Parse every unit and report problems without writing output."""
    configure_logging()
    project_root = Path.cwd()
    from .build import SiteBuilder

    try:
        site = SiteBuilder(project_root, include_drafts=drafts)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from None
    site.engine.apply_changes(site.loader.load_changes(drafts))
    found = site.engine.static_diagnostics()
    fatal = [d for d in found if d.kind.fatal]
    for diagnostic in found:
        color = "red" if diagnostic.kind.fatal else "yellow"
        label = click.style(f"{diagnostic.kind.value:<22}", fg=color)
        click.echo(f"{label} {diagnostic.unit_id}: {diagnostic.message}")
    click.echo(
        f"Checked {len(site.engine.content_ids())} pages and "
        f"{len(site.engine.component_ids())} components: "
        f"{len(fatal)} errors, {len(found) - len(fatal)} warnings"
    )
    if fatal:
        raise SystemExit(1)


@cli.command()
def add():
    """Create a new page or component interactively."""
    from .build import load_config

    project_root = Path.cwd()
    try:
        config = load_config(project_root)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from None

    kind = questionary.select(
        "What do you want to add?",
        choices=["page", "component"],
        style=_questionary_style(),
    ).ask()
    if kind is None:
        raise click.Abort()
    if kind == "page":
        target = _ask_page(project_root / config["content_dir"])
    else:
        target = _ask_component(project_root / config["components_dir"])
    click.echo(f"Created {_relative(target, project_root)}")


def _ask_page(content_dir: Path) -> Path:
    if not content_dir.exists():
        raise click.ClickException(
            f"No {content_dir.name}/ directory found. Run this command from a Gorgon project root."
        )
    folder = questionary.select(
        "Select folder:",
        choices=_get_content_folders(content_dir),
        style=_questionary_style(),
    ).ask()
    if folder is None:
        raise click.Abort()

    name = questionary.text(
        "Filename (without .md extension):",
        validate=lambda x: len(x.strip()) > 0 or "Filename cannot be empty",
        style=_questionary_style(),
    ).ask()
    if name is None:
        raise click.Abort()
    name = name.strip()

    add_date = questionary.confirm(
        "Prefix with today's date? (YYYY-MM-DD-)",
        default=False,
        style=_questionary_style(),
    ).ask()
    if add_date is None:
        raise click.Abort()

    filename = f"{datetime.now().strftime('%Y-%m-%d-') if add_date else ''}{name}.md"
    target_dir = content_dir if folder == ". (root)" else content_dir / folder
    target_path = target_dir / filename
    if target_path.exists():
        raise click.ClickException(f"File already exists: {target_path}")

    slug = _extract_slug(filename)
    conflicting = [
        f for f in target_dir.glob("*.*") if f.suffix in (".md", ".html") and _extract_slug(f.name) == slug
    ] if target_dir.exists() else []
    if conflicting:
        raise click.ClickException(
            f"A page with slug '{slug}' already exists: {conflicting[0].name}"
        )

    target_dir.mkdir(parents=True, exist_ok=True)
    title = _titleize(name)
    target_path.write_text(f"---\ntitle: {title}\n---\n\n# {title}\n\n", encoding="utf-8")
    return target_path


def _ask_component(components_dir: Path) -> Path:
    component_id = questionary.text(
        "Component identifier (use / for nesting, e.g. ui/button):",
        validate=_validate_component_id,
        style=_questionary_style(),
    ).ask()
    if component_id is None:
        raise click.Abort()
    component_id = component_id.strip().strip("/")
    target_path = components_dir / f"{component_id}.html"
    if target_path.exists():
        raise click.ClickException(f"Component already exists: {component_id}")
    css_class = component_id.replace("/", "-")
    target_path.parent.mkdir(parents=True, exist_ok=True)
    target_path.write_text(
        f'<div class="{css_class}">\n  @{{yield}}\n</div>\n', encoding="utf-8"
    )
    return target_path


def _validate_component_id(value: str) -> bool | str:
    from .parser import OPEN_TAG_RE

    candidate = value.strip().strip("/")
    if not candidate:
        return "Identifier cannot be empty"
    match = OPEN_TAG_RE.match(f"<x-{candidate}>")
    if not match or match.group(1) != candidate:
        return "Use letters, digits, '-' or '_', separated by '/'"
    return True


def _get_content_folders(content_dir: Path) -> list[str]:
    """Content folders, excluding internal ones starting with _, with the root first."""
    folders = sorted(
        path.relative_to(content_dir).as_posix()
        for path in content_dir.rglob("*")
        if path.is_dir() and not any(p.startswith("_") for p in path.relative_to(content_dir).parts)
    )
    folders.insert(0, ". (root)")
    return folders


def _extract_slug(filename: str) -> str:
    """Extract slug from filename, removing date prefix and extension."""
    from .utils import slugify

    return slugify(Path(filename).stem)


def _titleize(name: str) -> str:
    words = name.replace("-", " ").replace("_", " ").split()
    return " ".join(word.capitalize() for word in words)


def _relative(path: Path, root: Path) -> Path:
    try:
        return path.relative_to(root)
    except ValueError:
        return path


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path) -> None:
    """Create the directory structure and files for a new Gorgon project."""
    for rel_path, text in _SCAFFOLD.items():
        dest_path = root / rel_path
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        dest_path.write_text(text, encoding="utf-8")
    (root / ".gitignore").write_text("output/\n", encoding="utf-8")
    _try_git_init(root)


def _try_git_init(root: Path) -> None:
    """Initialize a git repository if git is available."""
    if os.environ.get("GORGON_SKIP_GIT_INIT") == "1":
        return
    git_bin = shutil.which("git")
    if not git_bin:
        return
    try:
        subprocess.run(
            [git_bin, "init"],
            cwd=root,
            check=True,
            capture_output=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        click.echo(f"Skipped git init: {exc}", err=True)
