"""Server process: one instance per project.

Usage: python -m vfeedback serve   (socket + HTTP, strategy from config)
       python -m vfeedback mcp     (stdio tool server, plus socket + HTTP if the ports are free)

Manages:
- Component construction (stores, strategy, service, gateway)
- Registry entry for discovery (registered at startup, removed on every exit path)
- Graceful shutdown (SIGTERM/SIGINT, or stdin closing in stdio mode)
"""

from __future__ import annotations

import asyncio
import atexit
import logging
import signal
from dataclasses import dataclass, replace

from vfeedback.auth import load_or_create_token
from vfeedback.config import FeedbackConfig, load_config
from vfeedback.delivery import build_strategy
from vfeedback.delivery.base import DeliveryStrategy
from vfeedback.delivery.tool_surface import ToolCallSurface
from vfeedback.gateway import Gateway
from vfeedback.prompts import load_template
from vfeedback.registry import InstanceRegistry
from vfeedback.rpc.protocol import RpcDispatcher
from vfeedback.rpc.sse import SseTransport
from vfeedback.rpc.stdio import serve_stdio
from vfeedback.service import FeedbackService
from vfeedback.store.requests import RequestStore

logger = logging.getLogger(__name__)


@dataclass
class Components:
    store: RequestStore
    registry: InstanceRegistry
    token: str
    gateway: Gateway
    strategy: DeliveryStrategy
    service: FeedbackService
    dispatcher: RpcDispatcher | None


class StartupError(RuntimeError):
    """No transport could be brought up."""


class FeedbackDaemon:
    """Wires the components together and runs them until shutdown."""

    def __init__(self, config: FeedbackConfig | None = None, *, stdio: bool | None = None) -> None:
        self.config = config or load_config()
        self.stdio = self.config.stdio if stdio is None else stdio
        if self.stdio and self.config.delivery.strategy != "tool_call":
            logger.info("Stdio mode always uses the tool_call strategy")
            self.config = replace(
                self.config, delivery=replace(self.config.delivery, strategy="tool_call")
            )
        self._shutdown_event: asyncio.Event | None = None

    # ── Signal handling ──────────────────────────────────────

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        if self._shutdown_event:
            self._shutdown_event.set()

    # ── Build components ─────────────────────────────────────

    def build(self) -> Components:
        config = self.config
        store = RequestStore(config.queue_file, max_tasks=config.max_tasks)
        registry = InstanceRegistry(config.registry_file)
        token = load_or_create_token(config.token_file)
        template = load_template(config.delivery.prompt_template)

        gateway = Gateway(config, store, registry, token)
        strategy = build_strategy(config, store, gateway, template)

        dispatcher = None
        rpc = None
        if isinstance(strategy, ToolCallSurface):
            dispatcher = RpcDispatcher(strategy)
            rpc = SseTransport(dispatcher)
        gateway.attach_strategy(strategy.name, strategy.live_log, rpc)

        service = FeedbackService(store, strategy, default_model=config.agent.model)
        return Components(store, registry, token, gateway, strategy, service, dispatcher)

    def _announce(self, parts: Components) -> None:
        logger.info("=" * 60)
        logger.info("Visual Feedback server started (strategy=%s)", parts.strategy.name)
        logger.info("Connection token: %s", parts.token)
        logger.info("Enter this token in the Visual Feedback extension to connect.")
        logger.info("(Token is saved to %s)", self.config.token_file)
        logger.info("=" * 60)

    # ── Main run loop ────────────────────────────────────────

    async def run(self) -> None:
        self._shutdown_event = asyncio.Event()
        self._setup_signals()

        parts = self.build()
        ws_ok, http_ok = await parts.gateway.start(parts.service.handle_message)
        if not ws_ok and not http_ok and not self.stdio:
            await parts.gateway.stop()
            raise StartupError(
                f"Ports {self.config.server.ws_port} and {self.config.server.http_port} "
                "are both in use and no stdio transport was requested"
            )

        if ws_ok:
            parts.registry.register(parts.token, self.config.server.ws_port)
            atexit.register(parts.registry.unregister)
        self._announce(parts)

        waiters = [asyncio.create_task(self._shutdown_event.wait())]
        if self.stdio and parts.dispatcher:
            waiters.append(asyncio.create_task(serve_stdio(parts.dispatcher)))

        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in waiters:
                task.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)
            await parts.strategy.close()
            await parts.gateway.stop()
            if ws_ok:
                parts.registry.unregister()
            logger.info("Visual Feedback server stopped.")
