"""LLM client: a Claude Code SDK client reused across analysis prompts."""

import asyncio
import logging

from claude_code_sdk import AssistantMessage, ClaudeCodeOptions, ClaudeSDKClient, TextBlock

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 15  # seconds
RESPONSE_TIMEOUT = 60  # seconds
CHUNK_TIMEOUT = 15  # seconds – max wait between consecutive messages
MAX_RETRIES = 2
RETRY_BACKOFF = 1.0  # seconds
MAX_PROMPT_SIZE = 200 * 1024  # 200KB

SYSTEM_PROMPT = (
    "You are an expert requirements analyst and test engineer working on "
    "regulated software. Answer exactly what is asked. When a JSON reply is "
    "requested, return only the JSON value: no markdown, no code fences, no prose."
)


class LLMPool:
    """Reuses a single Claude Code SDK client across requests.

    Requests are serialized with a lock; the client is recycled every
    ``max_requests`` queries and torn down after any failure so the next
    request starts from a fresh connection.
    """

    def __init__(self, system_prompt: str = SYSTEM_PROMPT, max_requests: int = 20):
        self.system_prompt = system_prompt
        self._client: ClaudeSDKClient | None = None
        self._lock = asyncio.Lock()
        self._request_count = 0
        self._max_requests = max_requests

    async def _get_client(self) -> ClaudeSDKClient:
        if self._client and self._request_count < self._max_requests:
            return self._client
        # Tear down old client if cycling
        await self._drop_client()
        client = ClaudeSDKClient(ClaudeCodeOptions(
            system_prompt=self.system_prompt,
            allowed_tools=[],
            max_turns=1,
        ))
        try:
            await asyncio.wait_for(client.connect(), timeout=CONNECT_TIMEOUT)
        except (asyncio.TimeoutError, Exception):
            await client.disconnect()
            raise
        self._client = client
        self._request_count = 0
        return client

    async def _drop_client(self) -> None:
        if self._client:
            try:
                await self._client.disconnect()
            except Exception:
                logger.debug("LLM client disconnect failed", exc_info=True)
            self._client = None
            self._request_count = 0

    async def _query_once(self, prompt: str) -> str:
        client = await self._get_client()
        await asyncio.wait_for(client.query(prompt), timeout=RESPONSE_TIMEOUT)
        text = ""
        response_iter = client.receive_response().__aiter__()
        while True:
            try:
                msg = await asyncio.wait_for(response_iter.__anext__(), timeout=CHUNK_TIMEOUT)
            except StopAsyncIteration:
                break
            if isinstance(msg, AssistantMessage):
                for block in msg.content:
                    if isinstance(block, TextBlock):
                        text += block.text
        self._request_count += 1
        return text

    async def query(self, prompt: str) -> str:
        """Send one prompt and return the full text reply, retrying on failure."""
        if len(prompt.encode("utf-8")) > MAX_PROMPT_SIZE:
            raise ValueError(
                f"Prompt too large ({len(prompt.encode('utf-8'))} bytes). "
                f"Maximum allowed size is {MAX_PROMPT_SIZE} bytes."
            )

        last_exc = None
        async with self._lock:
            for attempt in range(1 + MAX_RETRIES):
                if attempt > 0:
                    await asyncio.sleep(RETRY_BACKOFF * attempt)
                try:
                    return await self._query_once(prompt)
                except Exception as exc:
                    last_exc = exc
                    # Force reconnect on next attempt
                    await self._drop_client()
                    logger.warning("LLM query failed (attempt %d/%d): %s", attempt + 1, 1 + MAX_RETRIES, exc)
        # All retries exhausted
        raise last_exc  # type: ignore[misc]

    async def shutdown(self) -> None:
        await self._drop_client()


# Module-level singleton
llm_pool = LLMPool()
