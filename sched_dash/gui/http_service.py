"""HTTP + SSE transport for the dashboard."""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from threading import RLock
from typing import Any
from urllib.parse import parse_qs, urlparse

from sched_dash.application.broadcaster import (
    ALL_RUNS,
    DisconnectReason,
    EnvelopeType,
    SubscriberDisconnected,
)
from sched_dash.application.supervisor import RunLaunchError
from sched_dash.gui.contract import ServiceMetadata
from sched_dash.gui.facade import DashboardFacade
from sched_dash.utils.logging import setup_logger

logger = setup_logger("sched_dash.http")

_RUN_RE = re.compile(r"^/api/runs/(?P<run_id>[A-Za-z0-9_.-]+)$")
_RUN_VIEW_RE = re.compile(
    r"^/api/runs/(?P<run_id>[A-Za-z0-9_.-]+)/(?P<view>events|timeline|metrics|queue|stream)$"
)
_RUN_STOP_RE = re.compile(r"^/api/runs/(?P<run_id>[A-Za-z0-9_.-]+)/stop$")

_TERMINAL_ENVELOPES = (EnvelopeType.RUN_FINISHED, EnvelopeType.RUN_KILLED)


class _DashThreadingHTTPServer(ThreadingHTTPServer):
    daemon_threads = True
    allow_reuse_address = True


class DashboardHttpService:
    """Owns web transport lifecycle and diagnostics counters."""

    __slots__ = (
        "facade",
        "metadata",
        "host",
        "port",
        "base_url",
        "keep_alive_seconds",
        "_httpd",
        "_running",
        "_lock",
        "_sse_active_clients",
        "_sse_retried_writes",
        "_sse_dropped_clients",
        "_sse_last_error",
    )

    def __init__(
        self,
        *,
        facade: DashboardFacade,
        metadata: ServiceMetadata,
        host: str,
        port: int,
        keep_alive_seconds: float = 15.0,
    ) -> None:
        self.facade = facade
        self.metadata = metadata
        self.host = host
        self.port = port
        self.base_url = f"http://{host}:{port}"
        self.keep_alive_seconds = keep_alive_seconds

        self._httpd: _DashThreadingHTTPServer | None = None
        self._running = False
        self._lock = RLock()

        self._sse_active_clients = 0
        self._sse_retried_writes = 0
        self._sse_dropped_clients = 0
        self._sse_last_error: str | None = None

    def bind(self) -> None:
        """Open the listening socket; port 0 picks a free port."""
        if self._httpd is not None:
            return
        handler = build_request_handler(self)
        self._httpd = _DashThreadingHTTPServer((self.host, self.port), handler)
        self.port = self._httpd.server_address[1]
        self.base_url = f"http://{self.host}:{self.port}"

    def serve_forever(self) -> None:
        self.bind()
        with self._lock:
            httpd = self._httpd
            self._running = True
        assert httpd is not None

        logger.info("Dashboard API ready at %s", self.base_url)

        try:
            httpd.serve_forever(poll_interval=0.5)
        finally:
            self.stop()

    def stop(self) -> None:
        with self._lock:
            self._running = False
            httpd, self._httpd = self._httpd, None

        if httpd is not None:
            httpd.shutdown()
            httpd.server_close()

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def diagnostics_payload(self) -> dict[str, Any]:
        with self._lock:
            status = "connected" if self._sse_active_clients > 0 else "idle"
            payload = self.facade.diagnostics(
                metadata=self.metadata,
                base_url=self.base_url,
                event_stream_status=status,
                event_stream_active_clients=self._sse_active_clients,
                event_stream_retried_writes=self._sse_retried_writes,
                event_stream_dropped_clients=self._sse_dropped_clients,
            )
            payload["last_event_stream_error"] = self._sse_last_error
            return payload

    def mark_sse_connected(self) -> None:
        with self._lock:
            self._sse_active_clients += 1

    def mark_sse_disconnected(self) -> None:
        with self._lock:
            self._sse_active_clients = max(0, self._sse_active_clients - 1)

    def mark_sse_retry(self, error: BaseException) -> None:
        with self._lock:
            self._sse_retried_writes += 1
            self._sse_last_error = str(error)

    def mark_sse_drop(self, error: BaseException | None = None) -> None:
        with self._lock:
            self._sse_dropped_clients += 1
            if error is not None:
                self._sse_last_error = str(error)


def build_request_handler(service: DashboardHttpService) -> type[BaseHTTPRequestHandler]:
    """Bind service instance into a request handler class."""

    class DashboardRequestHandler(BaseHTTPRequestHandler):
        server_version = "SchedDashHTTP/1.0"

        def do_GET(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            path = parsed.path
            query = parse_qs(parsed.query)

            try:
                if path == "/api/health":
                    self._write_json(
                        {
                            "status": "ok",
                            "timestamp": datetime.now(timezone.utc).isoformat(),
                        }
                    )
                    return

                if path == "/api/meta":
                    payload = service.facade.metadata(
                        metadata=service.metadata,
                        base_url=service.base_url,
                    )
                    self._write_json(payload)
                    return

                if path == "/api/diagnostics":
                    self._write_json(service.diagnostics_payload())
                    return

                if path == "/api/runs":
                    self._write_json({"items": service.facade.list_runs()})
                    return

                if path == "/api/stream":
                    self._handle_sse(ALL_RUNS, after=None)
                    return

                run_match = _RUN_RE.match(path)
                if run_match:
                    self._write_json(service.facade.get_run(run_match.group("run_id")))
                    return

                view_match = _RUN_VIEW_RE.match(path)
                if view_match:
                    run_id = view_match.group("run_id")
                    view = view_match.group("view")
                    if view == "events":
                        items = service.facade.list_events(
                            run_id,
                            from_sequence=self._parse_optional_int(query, "from") or 0,
                            hide_trivial=self._first(query, "hide_trivial") in {"1", "true", "yes"},
                        )
                        self._write_json({"items": items})
                    elif view == "timeline":
                        tick = self._parse_optional_int(query, "tick")
                        self._write_json(service.facade.timeline(run_id, tick=tick))
                    elif view == "metrics":
                        tick = self._parse_optional_int(query, "tick")
                        self._write_json(service.facade.metrics(run_id, tick=tick))
                    elif view == "queue":
                        tick = self._parse_optional_int(query, "tick")
                        self._write_json(service.facade.queue_state(run_id, tick=tick))
                    else:
                        after = self._parse_optional_int(query, "after")
                        self._handle_sse(run_id, after=-1 if after is None else after)
                    return

                self._write_error(404, "Unknown endpoint")
            except KeyError as exc:
                self._write_error(404, str(exc))
            except ValueError as exc:
                self._write_error(400, str(exc))
            except Exception as exc:  # pragma: no cover - safety net for manual runs
                logger.exception("GET %s failed", path)
                self._write_error(500, f"Internal error: {exc}")

        def do_POST(self) -> None:  # noqa: N802
            parsed = urlparse(self.path)
            path = parsed.path

            try:
                if path == "/api/runs":
                    body = self._read_json_body()
                    self._write_json(service.facade.start_run(body), status=201)
                    return

                stop_match = _RUN_STOP_RE.match(path)
                if stop_match:
                    self._write_json(service.facade.stop_run(stop_match.group("run_id")))
                    return

                self._write_error(404, "Unknown endpoint")
            except KeyError as exc:
                self._write_error(404, str(exc))
            except ValueError as exc:
                self._write_error(400, str(exc))
            except TypeError as exc:
                self._write_error(400, f"Invalid request payload: {exc}")
            except RunLaunchError as exc:
                self._write_error(502, f"Run {exc.run_id} failed to launch: {exc}")
            except Exception as exc:  # pragma: no cover - safety net for manual runs
                logger.exception("POST %s failed", path)
                self._write_error(500, f"Internal error: {exc}")

        def do_OPTIONS(self) -> None:  # noqa: N802
            self.send_response(204)
            self.send_header("Allow", "GET,POST,OPTIONS")
            self.end_headers()

        def log_message(self, format: str, *args: Any) -> None:
            logger.debug("%s - %s", self.address_string(), format % args)

        def _handle_sse(self, run_id: str, *, after: int | None) -> None:
            subscription = service.facade.subscribe(run_id, after_sequence=after)
            service.mark_sse_connected()

            self.send_response(200)
            self.send_header("Content-Type", "text/event-stream")
            self.send_header("Cache-Control", "no-cache")
            self.send_header("Connection", "keep-alive")
            self.end_headers()

            try:
                self._write_sse_chunk(": connected\n\n")
                while service.is_running:
                    try:
                        envelope = subscription.next(timeout_seconds=service.keep_alive_seconds)
                    except SubscriberDisconnected as exc:
                        if exc.reason is not DisconnectReason.UNSUBSCRIBED:
                            payload = json.dumps({"reason": exc.reason.value}, separators=(",", ":"))
                            self._write_sse_chunk(f"event: disconnect\ndata: {payload}\n\n")
                        break

                    if envelope is None:
                        if not self._write_sse_chunk(": keep-alive\n\n"):
                            break
                        continue

                    event_lines = []
                    if envelope.sequence is not None:
                        event_lines.append(f"id: {envelope.sequence}")
                    event_lines.extend(
                        [
                            f"event: {envelope.type.value}",
                            f"data: {json.dumps(envelope.to_dict(), separators=(',', ':'))}",
                            "",
                        ]
                    )
                    text = "\n".join(event_lines) + "\n"
                    if not self._write_sse_chunk(text):
                        break
                    if run_id != ALL_RUNS and envelope.type in _TERMINAL_ENVELOPES:
                        break
            finally:
                subscription.close()
                service.mark_sse_disconnected()

        def _write_sse_chunk(self, text: str) -> bool:
            data = text.encode("utf-8")
            try:
                self.wfile.write(data)
                self.wfile.flush()
                return True
            except (BrokenPipeError, ConnectionResetError) as exc:
                service.mark_sse_drop(exc)
                return False
            except OSError as exc:
                service.mark_sse_retry(exc)
                try:
                    self.wfile.write(data)
                    self.wfile.flush()
                    return True
                except (BrokenPipeError, ConnectionResetError, OSError) as retry_exc:
                    service.mark_sse_drop(retry_exc)
                    return False

        def _read_json_body(self) -> dict[str, Any]:
            content_length = int(self.headers.get("Content-Length", "0"))
            if content_length <= 0:
                return {}
            raw = self.rfile.read(content_length)
            if not raw:
                return {}
            decoded = raw.decode("utf-8")
            data = json.loads(decoded)
            if not isinstance(data, dict):
                raise ValueError("JSON body must be an object")
            return data

        @staticmethod
        def _parse_optional_int(query: dict[str, list[str]], key: str) -> int | None:
            raw = DashboardRequestHandler._first(query, key)
            if raw is None or raw == "":
                return None
            return int(raw)

        @staticmethod
        def _first(query: dict[str, list[str]], key: str) -> str | None:
            values = query.get(key)
            if not values:
                return None
            return values[0]

        def _write_json(self, payload: dict[str, Any], status: int = 200) -> None:
            encoded = json.dumps(payload).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json; charset=utf-8")
            self.send_header("Content-Length", str(len(encoded)))
            self.end_headers()
            self.wfile.write(encoded)

        def _write_error(self, status: int, message: str) -> None:
            payload = {
                "error": {
                    "status": status,
                    "message": message,
                }
            }
            encoded = json.dumps(payload).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json; charset=utf-8")
            self.send_header("Content-Length", str(len(encoded)))
            self.end_headers()
            self.wfile.write(encoded)

    return DashboardRequestHandler
