"""Remote-control HTTP API for pending firewall alerts."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.applications import Starlette
from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from firewall_advisor.actions import PendingAlert, RemoteControl, parse_reply

if TYPE_CHECKING:
    from firewall_advisor.analysis import AnalysisClient
    from firewall_advisor.history import HistoryStore
    from firewall_advisor.watcher import WindowWatcher


def _error(message: str, code: str, status_code: int, param: str | None = None) -> JSONResponse:
    return JSONResponse(
        {
            "error": {
                "message": message,
                "type": "invalid_request_error" if status_code < 500 else "action_error",
                "param": param,
                "code": code,
            }
        },
        status_code=status_code,
    )


def _pending_json(pending: PendingAlert) -> dict:
    alert = pending.alert
    analysis = pending.analysis
    return {
        "id": alert.id,
        "short_id": alert.id[:8],
        "process_name": alert.process_name,
        "process_path": alert.process_path,
        "destination": alert.destination,
        "protocol": alert.protocol,
        "reverse_dns": alert.reverse_dns,
        "geo_location": alert.geo_location,
        "recommendation": analysis.recommendation.value,
        "confidence": analysis.confidence,
        "summary": analysis.summary,
        "risks": list(analysis.risks),
    }


def create_app(
    remote: RemoteControl,
    client: AnalysisClient | None = None,
    watcher: WindowWatcher | None = None,
    history: HistoryStore | None = None,
) -> Starlette:
    """Create the Starlette ASGI application.

    Args:
        remote: Registry of alerts awaiting a remote decision.
        client: Optional analysis client reported by ``/status``.
        watcher: Optional window watcher reported by ``/status``.
        history: Optional history store reported by ``/status``.

    Returns:
        A configured Starlette application.
    """

    async def health(request: Request) -> JSONResponse:
        return JSONResponse({"status": "ok"})

    async def status(request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "monitoring": watcher.is_monitoring if watcher else False,
                "analysis_in_progress": client.is_analyzing if client else False,
                "credentials": len(client.credentials) if client else 0,
                "history_entries": len(history) if history else 0,
                "pending_alerts": len(remote.pending()),
            }
        )

    async def list_pending(request: Request) -> JSONResponse:
        return JSONResponse(
            {"object": "list", "data": [_pending_json(p) for p in remote.pending()]}
        )

    async def respond(request: Request) -> JSONResponse:
        alert_id = request.path_params["alert_id"]
        try:
            body = await request.json()
        except ValueError:
            return _error("Invalid JSON in request body", "invalid_json", 400)

        action = body.get("action") if isinstance(body, dict) else None
        if not isinstance(action, str) or not action.strip():
            return _error("Missing 'action'", "invalid_request", 400, param="action")

        try:
            parse_reply(action)
        except ValueError as exc:
            return _error(str(exc), "unknown_action", 400, param="action")

        if remote.find(alert_id) is None:
            return _error(f"No pending alert found for ID: {alert_id}", "not_found", 404)

        # osascript blocks; keep it off the loop shared with the monitor
        if not await run_in_threadpool(remote.handle_response, alert_id, action):
            return _error(
                f"Could not perform '{action}' on the firewall alert",
                "action_failed",
                502,
            )
        return JSONResponse({"id": alert_id, "action": action, "status": "done"})

    return Starlette(
        routes=[
            Route("/health", health, methods=["GET"]),
            Route("/status", status, methods=["GET"]),
            Route("/alerts/pending", list_pending, methods=["GET"]),
            Route("/alerts/{alert_id}/respond", respond, methods=["POST"]),
        ],
    )
