"""Development server for Gem Check.

Serves the build directory with live reload:
- Injects a reload script into HTML responses.
- Falls back to the project root for files missing from the build
  (e.g. `node_modules` assets referenced during development).
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- Acts as the watch coordinator's reload sink: `notify("full")` reloads open
  pages, `notify("stream")` re-fetches their stylesheets in place.

Key classes:
- DevServer: HTTP server plus websocket reload channel.
- _ReloadHandler: HTTP request handler that injects reload script and enforces 404s.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import os
import threading
import time
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import websockets

logger = logging.getLogger(__name__)


class _ReloadHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that injects live reload script into HTML pages.

    Attributes:
        reload_script: JavaScript code for WebSocket connection to trigger reloads.
        fallback_dirs: Directories searched when a path is missing from the build.
    """

    reload_script_template = """
    <script>
    (() => {{
      const ws = new WebSocket('ws://' + location.hostname + ':{ws_port}');
      ws.onmessage = (event) => {{
        const data = JSON.parse(event.data || '{{}}');
        if (data.type !== 'reload') return;
        if (data.scope === 'stream') {{
          document.querySelectorAll('link[rel="stylesheet"]').forEach((link) => {{
            const url = new URL(link.href);
            url.searchParams.set('_reload', Date.now());
            link.href = url.toString();
          }});
          return;
        }}
        location.reload();
      }};
    }})();
    </script>
    """
    reload_script = reload_script_template.format(ws_port=4243)
    fallback_dirs: tuple[str, ...] = ()

    def end_headers(self):
        self.send_header("Cache-Control", "no-cache, no-store, must-revalidate")
        super().end_headers()

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    def list_directory(self, path):  # pragma: no cover - exercised via send_head
        # Never expose directory listings; treat as missing content.
        return self._serve_404()

    def translate_path(self, path):
        primary = super().translate_path(path)
        if os.path.exists(primary) or not self.fallback_dirs:
            return primary
        rel = os.path.relpath(primary, self.directory)
        for base in self.fallback_dirs:
            candidate = os.path.join(base, rel)
            if os.path.exists(candidate):
                return candidate
        return primary

    def _inject(self, content: str) -> bytes:
        if "</body>" in content:
            content = content.replace("</body>", f"{self.reload_script}</body>")
        else:
            content += self.reload_script
        return content.encode("utf-8")

    def _send_html(self, status: int, encoded: bytes) -> None:
        self.send_response(status)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(encoded)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(encoded)

    def _serve_404(self):
        """Serve 404.html (when present) with injected reload script and a 404 status."""
        error_page = Path(self.directory) / "404.html"
        if error_page.exists():
            self._send_html(404, self._inject(error_page.read_text(encoding="utf-8")))
            return None
        self.send_error(404, "File not found")
        return None

    def send_head(self):
        path = self.translate_path(self.path)
        path_obj = Path(path)
        if path_obj.is_dir():
            index_path = path_obj / "index.html"
            if index_path.exists():
                path = str(index_path)
                path_obj = index_path
            else:
                return self._serve_404()
        elif not path_obj.exists():
            return self._serve_404()

        if path.endswith(".html"):
            self._send_html(200, self._inject(path_obj.read_text(encoding="utf-8")))
            return None
        return super().send_head()


class DevServer:
    """Development server with live reload functionality.

    Attributes:
        build_dir: Directory served over HTTP.
        project_root: Fallback directory for files missing from the build.
        host: Interface to bind.
        http_port: Port for HTTP server.
        ws_port: Port for WebSocket connections.
        _ws_clients: Set of connected WebSocket clients.
        _loop: Event loop for WebSocket handling.
    """

    def __init__(
        self,
        build_dir: Path,
        project_root: Path | None = None,
        host: str = "localhost",
        http_port: int = 4242,
        ws_port: int | None = None,
    ):
        """Initialize the development server.

        Args:
            build_dir: Directory to serve.
            project_root: Optional fallback directory.
            host: Interface to bind.
            http_port: HTTP port.
            ws_port: Websocket port (defaults to http_port + 1).
        """
        self.build_dir = build_dir
        self.project_root = project_root
        self.host = host
        self.http_port = int(http_port)
        self.ws_port = int(ws_port) if ws_port is not None else self.http_port + 1
        self._reload_script = _ReloadHandler.reload_script_template.format(ws_port=self.ws_port)
        self._ws_clients: set = set()
        self._loop = asyncio.new_event_loop()
        self._httpd: ThreadingHTTPServer | None = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.http_port}"

    def start(self) -> None:  # pragma: no cover - integration path
        """Serve until interrupted."""
        self.start_background()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()

    def start_background(self) -> None:  # pragma: no cover - integration path
        threading.Thread(target=self._start_http, daemon=True).start()
        threading.Thread(target=self._start_ws, daemon=True).start()

    def stop(self) -> None:
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd = None
        self._loop.call_soon_threadsafe(self._loop.stop)

    def handler_class(self) -> type[_ReloadHandler]:
        fallback = (str(self.project_root),) if self.project_root else ()
        return type(
            "_ReloadHandlerWithPort",
            (_ReloadHandler,),
            {"reload_script": self._reload_script, "fallback_dirs": fallback},
        )

    def _start_http(self) -> None:  # pragma: no cover - integration path
        handler = functools.partial(self.handler_class(), directory=str(self.build_dir))
        httpd = ThreadingHTTPServer((self.host, self.http_port), handler)
        self._httpd = httpd
        logger.info("Serving %s at %s", self.build_dir, self.url)
        httpd.serve_forever()

    def _start_ws(self) -> None:  # pragma: no cover - integration path
        asyncio.set_event_loop(self._loop)
        try:
            self._loop.run_until_complete(self._run_ws_server())
        except OSError as exc:
            logger.error("WebSocket server failed to start (port %s): %s", self.ws_port, exc)
            return

    async def _run_ws_server(self) -> None:  # pragma: no cover - integration path
        async with websockets.serve(self._ws_handler, self.host, self.ws_port):
            await asyncio.Future()  # Run forever

    async def _ws_handler(self, websocket):
        self._ws_clients.add(websocket)
        try:
            await websocket.wait_closed()
        finally:
            self._ws_clients.discard(websocket)

    def notify(self, scope: str = "full") -> None:
        """Ask connected browsers to reload.

        Args:
            scope: "full" to reload pages, "stream" to refresh stylesheets only.
        """
        message = json.dumps({"type": "reload", "scope": scope})
        try:
            asyncio.run_coroutine_threadsafe(self._async_broadcast(message), self._loop)
        except RuntimeError as exc:
            logger.warning("Reload notification dropped: %s", exc)

    async def _async_broadcast(self, message: str):
        stale = set()
        for ws in list(self._ws_clients):
            try:
                await ws.send(message)
            except Exception:
                stale.add(ws)
        for ws in stale:
            self._ws_clients.discard(ws)
