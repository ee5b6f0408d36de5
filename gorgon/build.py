"""Site building functionality for Gorgon.

This module connects the build engine to a project on disk. It loads the
configuration and site variables, walks the content and component trees into
file events, runs the engine and writes every rendered route to the output
directory.

Key functions and classes:
- load_config: Loads site configuration from gorgon.yaml.
- build_site: Builds the entire site once.
- SiteBuilder: Keeps an engine alive across rebuilds (watch mode).
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .content import ChangeKind, FileChange, FileContentLoader, UnitBuilder
from .diagnostics import DiagnosticStream
from .engine import BuildEngine, BuildReport
from .errors import ConfigError
from .logging import get_logger
from .utils import ensure_clean_dir
from .variables import load_variables

logger = get_logger("build")

CONFIG_FILE = "gorgon.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "content_dir": "content",
    "components_dir": "components",
    "data_dir": "data",
    "output_dir": "output",
    "port": 4000,
    "ws_port": None,
    "max_depth": 256,
    "workers": 4,
    "default_layout": None,
    "environment": "dev",
}

_CONFIG_TYPES: dict[str, tuple[type, ...]] = {
    "content_dir": (str,),
    "components_dir": (str,),
    "data_dir": (str,),
    "output_dir": (str,),
    "port": (int,),
    "ws_port": (int, type(None)),
    "max_depth": (int,),
    "workers": (int,),
    "default_layout": (str, type(None)),
    "environment": (str,),
}


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        report: Engine report for the build generation.
        output_dir: Directory where the site was built.
        written: Routes written to disk.
    """

    report: BuildReport
    output_dir: Path
    written: list[str]

    @property
    def ok(self) -> bool:
        return self.report.ok


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from gorgon.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.

    Raises:
        ConfigError: If the file is not valid YAML or a value has the wrong type.
    """
    config_path = project_root / CONFIG_FILE
    config = DEFAULT_CONFIG.copy()
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"{config_path}: invalid YAML: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigError(f"{config_path}: expected a mapping")
        config.update(loaded)
    for key, types in _CONFIG_TYPES.items():
        value = config.get(key)
        if isinstance(value, bool) or not isinstance(value, types):
            raise ConfigError(f"{CONFIG_FILE}: '{key}' has an invalid value {value!r}")
    if config["max_depth"] < 1:
        raise ConfigError(f"{CONFIG_FILE}: 'max_depth' must be at least 1")
    if config["workers"] < 1:
        raise ConfigError(f"{CONFIG_FILE}: 'workers' must be at least 1")
    return config


class SiteBuilder:
    """Long-lived engine plus output writer for one project.

    Attributes:
        project_root: Root directory of the project.
        config: Site configuration.
        output_dir: Directory that routes are written to.
        engine: The build engine holding the parsed site.
        loader: Walks the content and component trees.
    """

    def __init__(
        self,
        project_root: Path,
        *,
        release: bool = False,
        include_drafts: bool = False,
        workers: int | None = None,
        max_depth: int | None = None,
        output_dir: Path | None = None,
        diagnostics: DiagnosticStream | None = None,
    ):
        self.project_root = project_root
        self.config = load_config(project_root)
        if release:
            self.config["environment"] = "prod"
        self.content_dir = project_root / self.config["content_dir"]
        self.components_dir = project_root / self.config["components_dir"]
        self.data_dir = project_root / self.config["data_dir"]
        self.output_dir = output_dir or project_root / self.config["output_dir"]
        self.loader = FileContentLoader(self.content_dir, self.components_dir)
        builder = UnitBuilder(
            self.content_dir,
            self.components_dir,
            default_layout=self.config["default_layout"],
            include_drafts=include_drafts,
        )
        self.include_drafts = include_drafts
        self.engine = BuildEngine(
            builder=builder,
            variables=load_variables(self.data_dir, self.config["environment"]),
            max_depth=max_depth or self.config["max_depth"],
            workers=workers or self.config["workers"],
            diagnostics=diagnostics,
        )

    def build(self, clean_output: bool = True) -> BuildResult:
        """Run a full build from the files on disk and write every route."""
        if not self.content_dir.exists():
            raise FileNotFoundError(f"Expected content directory at {self.content_dir}")
        if clean_output:
            ensure_clean_dir(self.output_dir)
        else:
            self.output_dir.mkdir(parents=True, exist_ok=True)
        report = self.engine.build(self.loader.load_changes(self.include_drafts), full=True)
        written = self._write(report, sorted(report.outputs))
        return BuildResult(report, self.output_dir, written)

    def rebuild(self, events: Iterable[FileChange]) -> BuildResult:
        """Apply file events and write only the routes that were re-rendered.

        Variable file changes reload the site variables. Failed routes keep their
        previous output file; removed routes have their output deleted.
        """
        unit_events = []
        for event in events:
            if self._is_variables_file(event.path):
                self.engine.set_variables(
                    load_variables(self.data_dir, self.config["environment"])
                )
            else:
                unit_events.append(event)
        report = self.engine.build(unit_events)
        written = self._write(report, sorted(report.rendered))
        for route in sorted(report.removed):
            self._delete_route(route)
        return BuildResult(report, self.output_dir, written)

    def change_for(self, path: Path, kind: ChangeKind) -> FileChange:
        """Build a FileChange for a path on disk, reading its text unless removed."""
        if kind is ChangeKind.REMOVED or not path.exists():
            return FileChange(path, "", ChangeKind.REMOVED)
        return FileChange(path, path.read_text(encoding="utf-8"), kind)

    def _is_variables_file(self, path: Path) -> bool:
        return path.parent == self.data_dir and path.name.startswith("variables.")

    def _write(self, report: BuildReport, routes: list[str]) -> list[str]:
        for route in routes:
            _write_page(self.output_dir, route, report.outputs[route])
        return routes

    def _delete_route(self, route: str) -> None:
        target = self.output_dir / route.strip("/") / "index.html"
        if target.exists():
            target.unlink()
            logger.debug("removed %s", target)


def build_site(
    project_root: Path,
    release: bool = False,
    include_drafts: bool = False,
    clean_output: bool = True,
    output_dir_override: Path | None = None,
    workers: int | None = None,
    max_depth: int | None = None,
) -> BuildResult:
    """Build the entire static site.

    Args:
        project_root: Root directory of the project.
        release: Use the "prod" variable overlay instead of "dev".
        include_drafts: Whether to include draft pages (starting with _).
        clean_output: Whether to wipe the output directory before building.
        output_dir_override: Optional path to write the build output instead of config output_dir.
        workers: Override for the render worker pool size.
        max_depth: Override for the recursion ceiling.

    Returns:
        BuildResult with the engine report and the routes written.
    """
    builder = SiteBuilder(
        project_root,
        release=release,
        include_drafts=include_drafts,
        workers=workers,
        max_depth=max_depth,
        output_dir=output_dir_override,
    )
    return builder.build(clean_output=clean_output)


def _write_page(output_dir: Path, route: str, rendered: str) -> None:
    """Write a rendered route to <output>/<route>/index.html."""
    target_dir = output_dir / route.strip("/")
    target_dir.mkdir(parents=True, exist_ok=True)
    with open(target_dir / "index.html", "w", encoding="utf-8") as f:
        f.write(rendered)
