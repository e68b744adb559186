from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Union
from urllib.parse import quote

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from .constants import DISCORD_API_BASE_URL
from .errors import (
    APIError,
    RateLimitedError,
    RequestError,
    ServerError,
    TransportError,
)
from .logging_utils import log_event
from .ratelimit import RateLimiter, route_key

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
USER_AGENT = "DiscordBot (https://github.com/unicord/unicord, 0.1.0)"

JSONPayload = Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]


@dataclass(frozen=True)
class FileData:
    name: str
    data: bytes
    content_type: Optional[str] = None


async def _sleep(seconds: float) -> None:
    await asyncio.sleep(seconds)


def _retry_wait(retry_state: RetryCallState) -> float:
    outcome = retry_state.outcome
    exc = outcome.exception() if outcome is not None else None
    if isinstance(exc, APIError) and exc.retry_after is not None:
        return exc.retry_after
    return float(2**retry_state.attempt_number)


def _parse_retry_after(response: httpx.Response) -> Optional[float]:
    raw: Any = response.headers.get("Retry-After")
    if raw is None and response.content:
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            raw = body.get("retry_after")
    if raw is None:
        return None
    try:
        return max(float(raw), 0.0)
    except (TypeError, ValueError):
        return None


def _body_preview(response: httpx.Response) -> str:
    return (response.text or "").strip().replace("\n", " ")[:200]


def build_multipart_form(
    payload: Optional[Mapping[str, Any]], files: Sequence[FileData]
) -> tuple[dict[str, str], list[tuple[str, tuple[str, bytes, Optional[str]]]]]:
    data: dict[str, str] = {}
    if payload:
        data["payload_json"] = json.dumps(payload)
    form_files = [
        (f"files[{index}]", (item.name, item.data, item.content_type))
        for index, item in enumerate(files)
    ]
    return data, form_files


class RestClient:
    """Discord REST client; every request is serialized through its route."""

    def __init__(
        self,
        *,
        bot_token: Optional[str] = None,
        base_url: str = DISCORD_API_BASE_URL,
        timeout_seconds: float = 10.0,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout_seconds, transport=transport
        )
        self._bot_token = bot_token
        self._max_attempts = max(max_attempts, 1)
        self._rate_limiter = rate_limiter or RateLimiter()

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    def set_token(self, bot_token: Optional[str]) -> None:
        self._bot_token = bot_token

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "RestClient":
        return self

    async def __aexit__(self, *_exc_info: object) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": USER_AGENT}
        if self._bot_token:
            headers["Authorization"] = f"Bot {self._bot_token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[JSONPayload] = None,
        params: Optional[Mapping[str, Any]] = None,
        files: Optional[Sequence[FileData]] = None,
    ) -> Any:
        """Send a request through its route queue.

        Returns the decoded JSON body, or ``None`` for an empty success body.
        429 and 5xx responses are retried up to ``max_attempts`` in total
        before ``RateLimitedError``/``ServerError`` is raised; any other
        failure status raises ``RequestError`` immediately.
        """
        method = method.upper()

        async def _operation() -> Any:
            return await self._send_with_retries(
                method, path, payload=payload, params=params, files=files
            )

        return await self._rate_limiter.enqueue(route_key(method, path), _operation)

    async def _send_with_retries(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[JSONPayload],
        params: Optional[Mapping[str, Any]],
        files: Optional[Sequence[FileData]],
    ) -> Any:
        def _before_sleep(retry_state: RetryCallState) -> None:
            outcome = retry_state.outcome
            exc = outcome.exception() if outcome is not None else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            log_event(
                logger,
                logging.WARNING,
                "unicord.rest.retry",
                method=method,
                path=path,
                status_code=getattr(exc, "status_code", None),
                attempt=retry_state.attempt_number,
                max_attempts=self._max_attempts,
                delay_seconds=delay,
            )

        result: Any = None
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts),
            wait=_retry_wait,
            retry=retry_if_exception_type((RateLimitedError, ServerError)),
            sleep=_sleep,
            before_sleep=_before_sleep,
            reraise=True,
        ):
            with attempt:
                result = await self._send_once(
                    method, path, payload=payload, params=params, files=files
                )
        return result

    async def _send_once(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[JSONPayload],
        params: Optional[Mapping[str, Any]],
        files: Optional[Sequence[FileData]],
    ) -> Any:
        try:
            if files:
                form_payload = payload if isinstance(payload, Mapping) else None
                data, form_files = build_multipart_form(form_payload, files)
                response = await self._client.request(
                    method,
                    path,
                    data=data or None,
                    files=form_files,
                    params=params,
                    headers=self._headers(),
                )
            else:
                response = await self._client.request(
                    method,
                    path,
                    json=payload,
                    params=params,
                    headers=self._headers(),
                )
        except httpx.HTTPError as exc:
            raise TransportError(
                f"Discord API network error for {method} {path}: {exc}"
            ) from exc

        status_code = response.status_code
        if 200 <= status_code < 300:
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                raise APIError(
                    f"Discord API returned non-JSON success response for {method} {path}",
                    status_code=status_code,
                ) from exc

        if status_code == 429:
            raise RateLimitedError(
                f"Discord API rate limit exceeded for {method} {path}",
                status_code=status_code,
                retry_after=_parse_retry_after(response),
            )
        if 500 <= status_code < 600:
            raise ServerError(
                f"Discord API server error for {method} {path}: "
                f"status={status_code} body={_body_preview(response)!r}",
                status_code=status_code,
                retry_after=_parse_retry_after(response),
            )
        raise RequestError(
            f"Request failed: {status_code} for {method} {path} "
            f"body={_body_preview(response)!r}",
            status_code=status_code,
        )

    async def get(self, path: str, *, params: Optional[Mapping[str, Any]] = None) -> Any:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, payload: Optional[JSONPayload] = None) -> Any:
        return await self.request("POST", path, payload=payload)

    async def put(self, path: str, payload: Optional[JSONPayload] = None) -> Any:
        return await self.request("PUT", path, payload=payload)

    async def patch(self, path: str, payload: Optional[JSONPayload] = None) -> Any:
        return await self.request("PATCH", path, payload=payload)

    async def delete(self, path: str) -> Any:
        return await self.request("DELETE", path)

    async def post_multipart(
        self,
        path: str,
        files: Sequence[FileData],
        payload: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        return await self.request("POST", path, payload=payload, files=files)

    async def get_gateway_bot(self) -> dict[str, Any]:
        payload = await self.get("/gateway/bot")
        return payload if isinstance(payload, dict) else {}

    async def get_current_user(self) -> dict[str, Any]:
        payload = await self.get("/users/@me")
        return payload if isinstance(payload, dict) else {}

    async def get_current_application(self) -> dict[str, Any]:
        payload = await self.get("/applications/@me")
        return payload if isinstance(payload, dict) else {}

    async def get_current_user_guilds(self) -> list[dict[str, Any]]:
        payload = await self.get("/users/@me/guilds")
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]

    async def get_guild(self, guild_id: str) -> dict[str, Any]:
        payload = await self.get(f"/guilds/{guild_id}")
        return payload if isinstance(payload, dict) else {}

    async def get_guild_member(self, guild_id: str, user_id: str) -> dict[str, Any]:
        payload = await self.get(f"/guilds/{guild_id}/members/{user_id}")
        return payload if isinstance(payload, dict) else {}

    async def get_guild_channels(self, guild_id: str) -> list[dict[str, Any]]:
        payload = await self.get(f"/guilds/{guild_id}/channels")
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]

    async def get_guild_roles(self, guild_id: str) -> list[dict[str, Any]]:
        payload = await self.get(f"/guilds/{guild_id}/roles")
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]

    async def create_message(
        self, channel_id: str, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        response = await self.post(f"/channels/{channel_id}/messages", payload)
        return response if isinstance(response, dict) else {}

    async def create_message_with_files(
        self,
        channel_id: str,
        files: Sequence[FileData],
        payload: Optional[Mapping[str, Any]] = None,
    ) -> dict[str, Any]:
        response = await self.post_multipart(
            f"/channels/{channel_id}/messages", files, payload
        )
        return response if isinstance(response, dict) else {}

    async def edit_message(
        self, channel_id: str, message_id: str, payload: Mapping[str, Any]
    ) -> dict[str, Any]:
        response = await self.patch(
            f"/channels/{channel_id}/messages/{message_id}", payload
        )
        return response if isinstance(response, dict) else {}

    async def delete_message(self, channel_id: str, message_id: str) -> None:
        await self.delete(f"/channels/{channel_id}/messages/{message_id}")

    async def create_reaction(
        self, channel_id: str, message_id: str, emoji: str
    ) -> None:
        encoded = quote(emoji, safe=":")
        await self.put(
            f"/channels/{channel_id}/messages/{message_id}/reactions/{encoded}/@me"
        )

    async def create_interaction_response(
        self,
        interaction_id: str,
        interaction_token: str,
        payload: Mapping[str, Any],
    ) -> None:
        await self.post(
            f"/interactions/{interaction_id}/{interaction_token}/callback", payload
        )

    async def edit_original_interaction_response(
        self,
        application_id: str,
        interaction_token: str,
        payload: Mapping[str, Any],
    ) -> dict[str, Any]:
        response = await self.patch(
            f"/webhooks/{application_id}/{interaction_token}/messages/@original",
            payload,
        )
        return response if isinstance(response, dict) else {}

    async def delete_original_interaction_response(
        self, application_id: str, interaction_token: str
    ) -> None:
        await self.delete(
            f"/webhooks/{application_id}/{interaction_token}/messages/@original"
        )

    async def create_followup_message(
        self,
        application_id: str,
        interaction_token: str,
        payload: Mapping[str, Any],
    ) -> dict[str, Any]:
        response = await self.post(
            f"/webhooks/{application_id}/{interaction_token}", payload
        )
        return response if isinstance(response, dict) else {}

    async def execute_webhook(
        self,
        webhook_id: str,
        webhook_token: str,
        payload: Mapping[str, Any],
        *,
        wait: bool = True,
    ) -> Optional[dict[str, Any]]:
        response = await self.request(
            "POST",
            f"/webhooks/{webhook_id}/{webhook_token}",
            payload=payload,
            params={"wait": "true" if wait else "false"},
        )
        return response if isinstance(response, dict) else None

    async def list_application_commands(
        self, application_id: str, *, guild_id: Optional[str] = None
    ) -> list[dict[str, Any]]:
        payload = await self.get(_commands_path(application_id, guild_id))
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]

    async def bulk_overwrite_application_commands(
        self,
        application_id: str,
        commands: Sequence[Mapping[str, Any]],
        *,
        guild_id: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        payload = await self.put(
            _commands_path(application_id, guild_id), list(commands)
        )
        if not isinstance(payload, list):
            return []
        return [item for item in payload if isinstance(item, dict)]


def _commands_path(application_id: str, guild_id: Optional[str]) -> str:
    if guild_id is None:
        return f"/applications/{application_id}/commands"
    return f"/applications/{application_id}/guilds/{guild_id}/commands"


async def send_webhook(
    url: str,
    payload: Mapping[str, Any],
    *,
    timeout_seconds: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Any:
    """POST ``payload`` to a full webhook URL outside any route queue."""
    async with httpx.AsyncClient(
        timeout=timeout_seconds, transport=transport
    ) as client:
        try:
            response = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            raise TransportError(f"Webhook network error: {exc}") from exc
    if not 200 <= response.status_code < 300:
        raise RequestError(
            f"Webhook failed: {response.status_code}",
            status_code=response.status_code,
        )
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None
