"""Webhook server for receiving GitHub push and release events."""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import logging
import sys
from typing import TYPE_CHECKING, Any

from aiohttp import web

from docs_sync.exceptions import AuthenticationError

if TYPE_CHECKING:
    from docs_sync.config import WebhookConfig
    from docs_sync.sync.debounce import ReindexDebouncer
    from docs_sync.sync.dispatch import ReindexDispatcher

logger = logging.getLogger(__name__)

# Configure logging to stderr (never stdout, the MCP transport may own it)
if not logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def verify_signature(secret: str, payload: bytes, signature: str | None) -> bool:
    """Check a ``sha256=<hex>`` HMAC signature over the raw body."""
    if not secret or not signature or not signature.startswith("sha256="):
        return False

    expected_sig = signature[7:]  # Remove "sha256=" prefix
    computed = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed, expected_sig)


class WebhookServer:
    """HTTP server for GitHub webhook events.

    Every request is authenticated against the configured secret before its
    body is parsed. Pushes to a default branch and releases pass through the
    debouncer; admitted ones are handed to the reindex dispatcher. Pings are
    acknowledged without touching the debouncer.
    """

    def __init__(
        self,
        config: WebhookConfig,
        debouncer: ReindexDebouncer,
        dispatcher: ReindexDispatcher,
    ) -> None:
        """Initialize webhook server.

        Args:
            config: Webhook settings (secret, branches, port).
            debouncer: Admission control per repository.
            dispatcher: Downstream reindex action.
        """
        self._config = config
        self._debouncer = debouncer
        self._dispatcher = dispatcher
        self._branch_refs = {f"refs/heads/{b}" for b in config.default_branches}
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def _authenticate(self, payload: bytes, signature: str | None) -> None:
        if not self._config.secret:
            logger.warning("Webhook secret not configured, skipping verification")
            return
        if not verify_signature(self._config.secret, payload, signature):
            raise AuthenticationError("Webhook signature verification failed")

    async def process_event(
        self, event_type: str, payload: bytes, signature: str | None
    ) -> tuple[int, dict[str, Any]]:
        """Handle one webhook delivery; returns (HTTP status, JSON body)."""
        try:
            self._authenticate(payload, signature)
        except AuthenticationError:
            logger.warning("Webhook signature verification failed")
            return 401, {"error": "Invalid signature"}

        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return 400, {"error": "Invalid JSON payload"}
        if not isinstance(data, dict):
            return 400, {"error": "Invalid JSON payload"}

        if event_type == "ping":
            # Sent once when the webhook is configured
            return 200, {"status": "ok", "message": "Webhook configured successfully"}

        repo_data = data.get("repository")
        if not isinstance(repo_data, dict):
            return 400, {"error": "Missing repository name in payload"}
        repo_name = repo_data.get("name")
        repo_full_name = repo_data.get("full_name") or repo_name
        if not repo_name or not isinstance(repo_name, str):
            return 400, {"error": "Missing repository name in payload"}

        logger.info("Webhook received: %s for %s", event_type, repo_full_name)

        if event_type == "push":
            ref = data.get("ref")
            if ref not in self._branch_refs:
                return 200, {"status": "ignored", "reason": "Not a default branch push", "ref": ref}
            body = await self._admit_and_dispatch(repo_name, "push")
            body["repository"] = repo_full_name
            return 200, body

        if event_type == "release":
            release = data.get("release")
            tag_name = release.get("tag_name") if isinstance(release, dict) else None
            body = await self._admit_and_dispatch(repo_name, f"release:{tag_name}")
            body["repository"] = repo_full_name
            body["release"] = tag_name
            return 200, body

        return 200, {"status": "ignored", "reason": f"Event type '{event_type}' not handled"}

    async def _admit_and_dispatch(self, repo_name: str, event_type: str) -> dict[str, Any]:
        if not self._debouncer.admit(repo_name):
            return {"status": "debounced", "reason": f"Recent webhook for {repo_name}, skipping"}

        priority = self._debouncer.is_priority(repo_name)
        outcome = await self._dispatcher.dispatch(repo_name, event_type, priority)
        return {
            "status": "queued" if outcome.success else "error",
            "message": outcome.message,
            "priority": priority,
        }

    async def _handle_webhook(self, request: web.Request) -> web.Response:
        """Handle incoming webhook request."""
        try:
            payload = await request.read()
        except Exception:
            logger.exception("Failed to read webhook payload")
            return web.json_response({"error": "Bad Request"}, status=400)

        status, body = await self.process_event(
            request.headers.get("X-GitHub-Event", ""),
            payload,
            request.headers.get("X-Hub-Signature-256"),
        )
        return web.json_response(body, status=status)

    async def _handle_pending(self, _request: web.Request) -> web.Response:
        """List pending reindex requests."""
        pending = [m.model_dump(mode="json") for m in self._dispatcher.pending.list_pending()]
        return web.json_response({"count": len(pending), "pending": pending})

    async def _handle_health(self, _request: web.Request) -> web.Response:
        """Health check endpoint."""
        return web.Response(text="OK", status=200)

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/webhook/github", self._handle_webhook)
        app.router.add_get("/webhook/pending", self._handle_pending)
        app.router.add_get("/health", self._handle_health)
        return app

    async def start(self) -> None:
        """Start the webhook server."""
        self._app = self.build_app()
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await self._site.start()

        logger.info("Webhook server started on port %d", self._config.port)

    async def stop(self) -> None:
        """Stop the webhook server."""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._site = None
        self._runner = None

        logger.info("Webhook server stopped")

    async def run_forever(self) -> None:
        """Start server and run until cancelled."""
        await self.start()
        try:
            while True:
                await asyncio.sleep(3600)  # Sleep indefinitely
        except asyncio.CancelledError:
            await self.stop()
