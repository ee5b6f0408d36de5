"""Error overlay for the Gorgon dev server.

Renders failed and degraded units of a build report as an HTML fragment that the
live-reload script shows on top of the current page. The failed pages keep
serving their last good output underneath.
"""

from __future__ import annotations

from jinja2 import Environment, select_autoescape
from markupsafe import Markup

from .engine import BuildReport

_ENV = Environment(autoescape=select_autoescape(default_for_string=True, default=True))

OVERLAY_TEMPLATE = _ENV.from_string(
    """\
<div id="gorgon-overlay" style="position:fixed;inset:0;z-index:99999;overflow:auto;\
background:rgba(20,20,28,.94);color:#eee;font:14px/1.5 ui-monospace,monospace;padding:2rem">
  <h2 style="color:#ff6b6b;margin-top:0">Build generation {{ report.generation }} has problems</h2>
  {% if failures %}
  <h3>Failed</h3>
  <ul>
    {% for unit_id, error in failures %}
    <li><strong>{{ unit_id }}</strong> <code>{{ error.source_path }}</code><br>{{ error.message }}</li>
    {% endfor %}
  </ul>
  {% endif %}
  {% if degraded %}
  <h3>Degraded</h3>
  <ul>
    {% for unit_id, reasons in degraded %}
    <li><strong>{{ unit_id }}</strong>
      <ul>{% for reason in reasons %}<li>{{ reason }}</li>{% endfor %}</ul>
    </li>
    {% endfor %}
  </ul>
  {% endif %}
  <p style="opacity:.7">Fix the files above and save; this overlay closes on the next good build.</p>
</div>
"""
)


def render_overlay(report: BuildReport) -> Markup:
    """Render the overlay for a report, or empty markup if the build is clean."""
    if report.ok and not report.degraded:
        return Markup("")
    html = OVERLAY_TEMPLATE.render(
        report=report,
        failures=sorted(report.failures.items()),
        degraded=sorted(report.degraded.items()),
    )
    return Markup(html)
