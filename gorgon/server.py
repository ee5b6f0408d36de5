"""Development server for Gorgon.

Serves the built site with live reload:
- Injects a reload script into HTML responses.
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- Watches the content, components and data folders, collects file events into
  debounced batches and feeds them to an incremental SiteBuilder.
- Tells connected browsers which routes changed, or shows an error overlay when
  a unit failed or rendered degraded. Failed pages keep their last good output.

Key classes:
- DevServer: Main class for running the development server.
- _ReloadHandler: HTTP request handler that injects reload script and enforces 404s.
- _ChangeHandler: File system event handler that queues changes.
"""

from __future__ import annotations

import asyncio
import functools
import json
import threading
import time
from collections.abc import Mapping
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import websockets
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .build import BuildResult, SiteBuilder
from .content import ChangeKind
from .logging import get_logger
from .overlay import render_overlay

logger = get_logger("server")

IGNORED_SUFFIXES = (".swp", ".swx", ".tmp", "~")


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects live reload script into HTML pages.

    Attributes:
        reload_script: JavaScript that listens for reload and error messages.
    """

    reload_script_template = """
    <script>
    (() => {{
      const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
      const norm = (p) => p.endsWith('/') ? p : p + '/';
      ws.onmessage = (event) => {{
        const data = JSON.parse(event.data || '{{}}');
        const old = document.getElementById('gorgon-overlay');
        if (data.type === 'error') {{
          if (old) old.remove();
          document.body.insertAdjacentHTML('beforeend', data.html);
          return;
        }}
        if (data.type !== 'reload') return;
        const routes = data.routes || [];
        if (old || routes.length === 0 || routes.includes(norm(location.pathname))) {{
          location.reload();
        }}
      }};
    }})();
    </script>
    """
    reload_script = reload_script_template.format(ws_port=4001)

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        return self._serve_404()

    def _inject(self, content: str) -> bytes:
        if "</body>" in content:
            content = content.replace("</body>", f"{self.reload_script}</body>")
        else:
            content += self.reload_script
        return content.encode("utf-8")

    def _send_html(self, status: int, content: str) -> None:
        encoded = self._inject(content)
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        self.wfile.write(encoded)

    def _serve_404(self):
        """Serve 404.html (when present) with injected reload script and a 404 status."""
        error_page = Path(self.directory) / "404" / "index.html"
        if error_page.exists():
            self._send_html(404, error_page.read_text(encoding="utf-8"))
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path_obj = Path(self.translate_path(self.path))
        if path_obj.is_dir():
            index_path = path_obj / "index.html"
            if not index_path.exists():
                return self._serve_404()
            path_obj = index_path
        elif not path_obj.exists():
            return self._serve_404()

        if path_obj.suffix == ".html":
            self._send_html(200, path_obj.read_text(encoding="utf-8"))
            return None
        return super().send_head()


class DevServer:
    """Development server with incremental rebuilds and live reload.

    Attributes:
        project_root: Root directory of the project.
        site: Incremental site builder.
        output_dir: Directory where built site is served.
        ws_port: Port for WebSocket connections.
        http_port: Port for HTTP server.
    """

    def __init__(
        self,
        project_root: Path,
        http_port: int | None = None,
        ws_port: int | None = None,
        include_drafts: bool = False,
        debounce_seconds: float = 0.1,
    ):
        self.project_root = project_root
        self.site = SiteBuilder(project_root, include_drafts=include_drafts)
        self.config = self.site.config
        self.output_dir = self.site.output_dir
        base_http = int(http_port or self.config["port"])
        if ws_port is not None:
            resolved_ws = ws_port
        elif http_port is None and self.config.get("ws_port") is not None:
            resolved_ws = int(self.config["ws_port"])
        else:
            resolved_ws = base_http + 1
        self.ws_port = resolved_ws
        self.http_port = base_http
        self._reload_script = _ReloadHandler.reload_script_template.format(ws_port=self.ws_port)
        self._observer: Observer | None = None
        self._ws_clients: set = set()
        self._loop = asyncio.new_event_loop()
        self._debounce_seconds = debounce_seconds
        self._queue_lock = threading.Lock()
        self._queued: dict[Path, ChangeKind] = {}
        self._timer: threading.Timer | None = None
        self._rebuild_lock = threading.Lock()
        self._last_error: str | None = None

    def start(self) -> None:  # pragma: no cover - integration path
        result = self.site.build()
        for line in result.report.summary():
            print(line)
        self._last_error = self._overlay_for(result)
        threading.Thread(target=self._start_http, daemon=True).start()
        threading.Thread(target=self._start_ws, daemon=True).start()
        self._start_watcher()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        if self._observer:
            self._observer.stop()
            self._observer.join()
        self._loop.call_soon_threadsafe(self._loop.stop)

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler_cls = type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script},
        )
        handler = functools.partial(handler_cls, directory=str(self.output_dir))
        httpd = ThreadingHTTPServer(("", self.http_port), handler)
        print(f"Serving {self.output_dir} at http://localhost:{self.http_port}")
        httpd.serve_forever()

    def _start_ws(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            print(f"WebSocket server failed to start (port {self.ws_port}): {exc}")

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, "0.0.0.0", self.ws_port):
            await asyncio.Future()

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            if self._last_error:
                await websocket.send(json.dumps({"type": "error", "html": self._last_error}))
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def _broadcast(self, payload: dict) -> None:
        message = json.dumps(payload)
        if self._loop.is_running():
            asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except Exception:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)

    def _start_watcher(self) -> None:
        handler = _ChangeHandler(self)
        observer = Observer()
        for folder in (self.site.content_dir, self.site.components_dir, self.site.data_dir):
            if folder.exists():
                observer.schedule(handler, str(folder), recursive=True)
        observer.start()
        self._observer = observer

    def queue_change(self, path: Path, kind: ChangeKind) -> None:
        """Record a file event and (re)start the debounce timer."""
        with self._queue_lock:
            previous = self._queued.get(path)
            if previous is ChangeKind.ADDED and kind is ChangeKind.MODIFIED:
                kind = ChangeKind.ADDED
            self._queued[path] = kind
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self._debounce_seconds, self.flush)
            self._timer.daemon = True
            self._timer.start()

    def flush(self) -> BuildResult | None:
        """Rebuild with every queued change as one batch."""
        with self._queue_lock:
            batch = dict(self._queued)
            self._queued.clear()
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
        if not batch:
            return None
        # A rebuild still in flight stops rendering units it has not started.
        self.site.engine.cancel()
        return self.rebuild(batch)

    def rebuild(self, changes: Mapping[Path, ChangeKind]) -> BuildResult:
        """Apply a batch of changes, write the re-rendered routes and notify browsers."""
        with self._rebuild_lock:
            print(f"Change detected ({len(changes)} files); rebuilding...")
            events = [self.site.change_for(path, kind) for path, kind in sorted(changes.items())]
            result = self.site.rebuild(events)
            for line in result.report.summary()[1:]:
                print(line)
            self._last_error = self._overlay_for(result)
            routes = sorted(set(result.written) | result.report.removed)
            if self._last_error:
                self._broadcast({"type": "error", "html": self._last_error, "routes": routes})
            else:
                self._broadcast({"type": "reload", "routes": routes})
            return result

    @staticmethod
    def _overlay_for(result: BuildResult) -> str | None:
        overlay = render_overlay(result.report)
        return str(overlay) if overlay else None


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, server: DevServer):
        super().__init__()
        self.server = server

    def on_any_event(self, event):
        if event.is_directory:
            return
        if event.event_type == "moved":
            self._queue(event.src_path, ChangeKind.REMOVED)
            self._queue(event.dest_path, ChangeKind.ADDED)
        elif event.event_type == "created":
            self._queue(event.src_path, ChangeKind.ADDED)
        elif event.event_type == "modified":
            self._queue(event.src_path, ChangeKind.MODIFIED)
        elif event.event_type == "deleted":
            self._queue(event.src_path, ChangeKind.REMOVED)

    def _queue(self, raw_path, kind: ChangeKind) -> None:
        path = Path(raw_path)
        if path.name.startswith(".") or path.name.endswith(IGNORED_SUFFIXES):
            return
        try:
            path.relative_to(self.server.output_dir)
            return
        except ValueError:
            pass
        self.server.queue_change(path, kind)
