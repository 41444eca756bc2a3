"""Async client for the Vapi REST API: evals, eval runs and chats.

Two strategies use this client. The Evals strategy creates (or inlines)
a ``chat.mockConversation`` eval, runs it against an assistant and polls
the run until it has ``ended``. The chat strategy plays a conversation
turn by turn through POST /chat, chaining each chat to the previous one
with ``previousChatId`` so the assistant keeps its context.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Any

import httpx
import structlog

from parley.clients.http import build_http_client, request_object
from parley.errors import ConfigurationError, ProviderAPIError
from parley.models.config import VapiSettings

log = structlog.get_logger(__name__)

TERMINAL_RUN_STATUS = "ended"
RUNNING_STATUSES = frozenset({"queued", "running"})
CHAT_NAME_LIMIT = 40

ProgressCallback = Callable[[str], None]


def chat_turn_name(test_name: str, turn_number: int) -> str:
    """Build a chat name within Vapi's length limit.

    Names too long for the limit are cut and marked with ``...`` before
    the ``" - T<n>"`` suffix.
    """
    suffix = f" - T{turn_number}"
    max_base = CHAT_NAME_LIMIT - len(suffix)
    base = test_name if len(test_name) <= max_base else test_name[: max_base - 3] + "..."
    return f"{base}{suffix}"


class VapiClient:
    """Thin async wrapper over the Vapi endpoints parley needs.

    Args:
        settings: API key, base URL, default assistant and polling settings.
        transport: Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        settings: VapiSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        headers = {"Authorization": f"Bearer {settings.api_key}"} if settings.api_key else {}
        self._http = build_http_client(
            settings.base_url,
            headers=headers,
            timeout=settings.timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> VapiClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def get_assistant_id(self, override: str | None = None) -> str:
        """Return ``override`` or the configured default assistant id.

        Raises:
            ConfigurationError: If neither is set.
        """
        assistant_id = override or self.settings.assistant_id
        if not assistant_id:
            raise ConfigurationError("Assistant ID not provided and no default configured")
        return assistant_id

    # -- evals ---------------------------------------------------------

    async def create_eval(self, eval_dto: dict[str, Any]) -> dict[str, Any]:
        """POST /eval: store an eval definition and return it (with ``id``)."""
        return await request_object(self._http, "POST", "/eval", "Failed to create eval", json=eval_dto)

    async def run_eval(
        self,
        *,
        eval_id: str | None = None,
        eval_dto: dict[str, Any] | None = None,
        assistant_id: str | None = None,
    ) -> str:
        """POST /eval/run for a stored eval (``eval_id``) or an inline one (``eval_dto``).

        Returns:
            The eval run id.
        """
        if (eval_id is None) == (eval_dto is None):
            raise ValueError("run_eval needs exactly one of eval_id or eval_dto")

        body: dict[str, Any] = {
            "type": "eval",
            "target": {"type": "assistant", "assistantId": self.get_assistant_id(assistant_id)},
        }
        if eval_id is not None:
            body["evalId"] = eval_id
        else:
            body["eval"] = eval_dto

        response = await request_object(self._http, "POST", "/eval/run", "Failed to run eval", json=body)
        run_id = response.get("evalRunId") or response.get("id")
        if not isinstance(run_id, str):
            raise ProviderAPIError(
                "Failed to run eval: unexpected response format",
                details={"response": response},
            )
        return run_id

    async def get_eval_run(self, run_id: str) -> dict[str, Any]:
        """GET /eval/run/{run_id}."""
        return await request_object(
            self._http, "GET", f"/eval/run/{run_id}", f"Failed to get eval run {run_id}"
        )

    async def poll_eval_run(
        self,
        run_id: str,
        *,
        interval: float | None = None,
        timeout: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, Any]:
        """Poll an eval run until its status is ``ended``.

        Raises:
            ProviderAPIError: With status_code 408 when ``timeout`` elapses first.
        """
        interval = self.settings.poll_interval_seconds if interval is None else interval
        timeout = self.settings.poll_timeout_seconds if timeout is None else timeout
        started = time.monotonic()

        while True:
            run = await self.get_eval_run(run_id)
            status = run.get("status")
            log.debug("vapi.poll", run_id=run_id, status=status, results=len(run.get("results") or []))
            if on_progress is not None:
                on_progress(str(status))

            if status == TERMINAL_RUN_STATUS:
                return run
            if status not in RUNNING_STATUSES:
                log.warning("vapi.unexpected_run_status", run_id=run_id, status=status)

            if time.monotonic() - started > timeout:
                raise ProviderAPIError(
                    f"Eval run polling timeout after {timeout:g}s. Last status: {status}",
                    details={"run_id": run_id},
                    status_code=408,
                )
            await asyncio.sleep(interval)

    # -- chats ---------------------------------------------------------

    async def create_chat(
        self,
        *,
        assistant_id: str,
        input: str,
        previous_chat_id: str | None = None,
        session_id: str | None = None,
        name: str | None = None,
    ) -> dict[str, Any]:
        """POST /chat: send one user message and return the chat with its ``output``."""
        body: dict[str, Any] = {"assistantId": assistant_id, "input": input}
        if previous_chat_id:
            body["previousChatId"] = previous_chat_id
        if session_id:
            body["sessionId"] = session_id
        if name:
            body["name"] = name
        return await request_object(self._http, "POST", "/chat", "Failed to create chat", json=body)

    async def run_multi_turn_conversation(
        self,
        assistant_id: str,
        user_messages: list[str],
        *,
        name: str | None = None,
        session_id: str | None = None,
    ) -> dict[str, Any]:
        """Play ``user_messages`` against an assistant, one chat per turn.

        Returns:
            ``{"chats", "messages", "total_cost", "last_chat_id"}`` where
            ``messages`` is the full conversation as role/content dicts.
        """
        chats: list[dict[str, Any]] = []
        messages: list[dict[str, Any]] = []
        previous_chat_id: str | None = None
        total_cost = 0.0

        for turn_number, user_message in enumerate(user_messages, 1):
            chat = await self.create_chat(
                assistant_id=assistant_id,
                input=user_message,
                previous_chat_id=previous_chat_id,
                session_id=session_id,
                name=chat_turn_name(name, turn_number) if name else None,
            )
            chats.append(chat)
            previous_chat_id = chat.get("id")

            messages.append({"role": "user", "content": user_message})
            output = chat.get("output")
            if isinstance(output, list):
                messages.extend(
                    {"role": m.get("role", "assistant"), "content": m.get("content") or ""}
                    for m in output
                )
            total_cost += float(chat.get("cost") or 0.0)
            log.debug("vapi.chat_turn", turn=turn_number, chat_id=previous_chat_id)

        return {
            "chats": chats,
            "messages": messages,
            "total_cost": total_cost,
            "last_chat_id": previous_chat_id,
        }
