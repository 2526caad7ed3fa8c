"""Tests for the completion client and identity resolution."""

import asyncio

import httpx
import pytest

from blackgift_chat.core.errors import CompletionServiceFailure, IdentityVerificationFailure
from blackgift_chat.models.chat import ChatMessage
from blackgift_chat.models.identity import (
    Anonymous,
    Authenticated,
    VerificationFailed,
    effective_identity,
)
from blackgift_chat.services.identity import IdentityProvider, parse_bearer, resolve_identity
from blackgift_chat.services.llm import CompletionClient

from conftest import DEFAULT_REPLY, SYSTEM_PROMPT


def messages():
    return [
        ChatMessage(role="system", content=SYSTEM_PROMPT),
        ChatMessage(role="user", content="Mhoro"),
    ]


def client_with(handler, timeout=5):
    return CompletionClient(
        api_url="https://completions.test/v1/",
        api_key="secret",
        model="gpt-3.5-turbo",
        timeout=timeout,
        default_reply=DEFAULT_REPLY,
        transport=httpx.MockTransport(handler),
    )


# === Completion client ===

class TestCompletionClient:
    @pytest.mark.asyncio
    async def test_sends_configured_request(self, completion_client, completion_service):
        reply = await completion_client.complete(messages())
        assert reply == "Mhoro, ndeipi?"

        sent = completion_service.requests[-1]
        assert sent["headers"]["authorization"] == "Bearer test-completion-key"
        assert sent["body"] == {
            "model": "gpt-3.5-turbo",
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": "Mhoro"},
            ],
            "max_tokens": 800,
            "temperature": 0.7,
        }
        await completion_client.close()

    @pytest.mark.asyncio
    async def test_empty_content_uses_default_reply(self, completion_client, completion_service):
        completion_service.reply = None
        assert await completion_client.complete(messages()) == DEFAULT_REPLY

    @pytest.mark.asyncio
    async def test_no_choices_uses_default_reply(self):
        client = client_with(lambda request: httpx.Response(200, json={"choices": []}))
        assert await client.complete(messages()) == DEFAULT_REPLY

    @pytest.mark.asyncio
    async def test_http_error_carries_details(self, completion_client, completion_service):
        completion_service.status_code = 429
        with pytest.raises(CompletionServiceFailure) as excinfo:
            await completion_client.complete(messages())
        assert excinfo.value.details == completion_service.error_body
        assert excinfo.value.error == "Failed to process chat"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(CompletionServiceFailure):
            await client_with(handler).complete(messages())

    @pytest.mark.asyncio
    async def test_malformed_response(self):
        client = client_with(lambda request: httpx.Response(200, text="<html>oops</html>"))
        with pytest.raises(CompletionServiceFailure):
            await client.complete(messages())

    @pytest.mark.asyncio
    async def test_timeout_aborts_request(self):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={"choices": []})

        with pytest.raises(CompletionServiceFailure) as excinfo:
            await client_with(handler, timeout=0.05).complete(messages())
        assert "timed out" in str(excinfo.value.details)

    @pytest.mark.asyncio
    async def test_health_check(self, completion_client):
        assert await completion_client.health_check() is True


# === Identity ===

class TestParseBearer:
    @pytest.mark.parametrize("header,expected", [
        (None, None),
        ("", None),
        ("Basic abc", None),
        ("Bearer ", None),
        ("Bearer   ", None),
        ("Bearer abc", "abc"),
        ("Bearer  abc ", "abc"),
    ])
    def test_parse(self, header, expected):
        assert parse_bearer(header) == expected


class TestResolveIdentity:
    @pytest.mark.asyncio
    async def test_no_header_is_anonymous(self, identity_provider):
        identity = await resolve_identity(identity_provider, None, "sid-1")
        assert identity == Anonymous(session_id="sid-1")

    @pytest.mark.asyncio
    async def test_valid_token_is_authenticated(self, identity_provider):
        identity = await resolve_identity(identity_provider, "Bearer token-user-1", "sid-1")
        assert identity == Authenticated(session_id="sid-1", user_id="user-1", email="one@example.com")

    @pytest.mark.asyncio
    async def test_rejected_token_is_verification_failed(self, identity_provider):
        identity = await resolve_identity(identity_provider, "Bearer forged", "sid-1")
        assert isinstance(identity, VerificationFailed)
        assert identity.session_id == "sid-1"
        assert effective_identity(identity) == Anonymous(session_id="sid-1")

    @pytest.mark.asyncio
    async def test_unconfigured_provider_fails_softly(self):
        provider = IdentityProvider("https://identity.test/lookup", api_key=None)
        with pytest.raises(IdentityVerificationFailure):
            await provider.verify("token-user-1")
        identity = await resolve_identity(provider, "Bearer token-user-1", "sid-1")
        assert isinstance(identity, VerificationFailed)
        assert await provider.health_check() is False

    @pytest.mark.asyncio
    async def test_unreachable_provider_fails_softly(self):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        provider = IdentityProvider("https://identity.test/lookup", "key", transport=httpx.MockTransport(handler))
        identity = await resolve_identity(provider, "Bearer token-user-1", "sid-1")
        assert isinstance(identity, VerificationFailed)

    @pytest.mark.asyncio
    async def test_empty_users_list_fails_softly(self):
        provider = IdentityProvider(
            "https://identity.test/lookup",
            "key",
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"users": []})),
        )
        identity = await resolve_identity(provider, "Bearer token-user-1", "sid-1")
        assert isinstance(identity, VerificationFailed)

    def test_effective_identity_keeps_resolved_variants(self):
        anonymous = Anonymous(session_id="s")
        user = Authenticated(session_id="s", user_id="u")
        assert effective_identity(anonymous) is anonymous
        assert effective_identity(user) is user
