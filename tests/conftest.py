"""
Shared pytest fixtures for the chat backend tests.

Provides:
- Settings environment for importing the app
- An in-memory async Redis double for the session store
- httpx MockTransport fakes for the completion service and identity provider (both record requests)
- Session / durable history stores and a wired ChatOrchestrator
- A TestClient bound to the orchestrator
"""
import json
import os
from typing import Awaitable, Callable, Dict, List, Optional

# Required secrets must exist before blackgift_chat.core.config is imported
os.environ.setdefault("COMPLETION_API_KEY", "test-completion-key")
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("TOKEN_ENCODING", "")

import httpx
import pytest
from fastapi.testclient import TestClient
from redis.exceptions import ConnectionError as RedisConnectionError

from blackgift_chat.core.database import DocumentStore
from blackgift_chat.main import create_app
from blackgift_chat.services.conversation import ConversationBuilder
from blackgift_chat.services.history_store import DurableHistoryStore, SessionHistoryStore
from blackgift_chat.services.identity import IdentityProvider
from blackgift_chat.services.llm import CompletionClient
from blackgift_chat.services.orchestrator import ChatOrchestrator
from blackgift_chat.services.tokens import TokenEstimator

SYSTEM_PROMPT = "Pindura muChiShona."  # 19 chars -> 5 heuristic tokens
DEFAULT_REPLY = "Handina kupindura zvakanaka. Edza zvakare."

USERS = {
    "token-user-1": {"localId": "user-1", "email": "one@example.com"},
    "token-user-2": {"localId": "user-2", "email": "two@example.com"},
}


# ============================================================================
# Fakes
# ============================================================================

class FakeRedis:
    """Minimal async Redis double: get / set(ex=) / ping / aclose."""

    def __init__(self):
        self.data: Dict[str, str] = {}
        self.ttls: Dict[str, Optional[int]] = {}
        self.fail = False
        self.closed = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self._check()
        self.data[key] = value
        self.ttls[key] = ex
        return True

    async def ping(self):
        self._check()
        return True

    async def aclose(self):
        self.closed = True


class FakeCompletionService:
    """OpenAI-style /chat/completions endpoint served through httpx.MockTransport."""

    def __init__(self, reply: str = "Mhoro, ndeipi?"):
        self.reply: Optional[str] = reply
        self.status_code = 200
        self.error_body = {"error": {"message": "Rate limit reached", "type": "rate_limit"}}
        self.requests: List[dict] = []
        # Awaited while the request is in flight, before the reply is returned
        self.on_request: Optional[Callable[[], Awaitable[None]]] = None

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/models"):
            return httpx.Response(200, json={"data": []})
        body = json.loads(request.content)
        self.requests.append({"headers": dict(request.headers), "body": body})
        if self.on_request is not None:
            await self.on_request()
        if self.status_code != 200:
            return httpx.Response(self.status_code, json=self.error_body)
        return httpx.Response(200, json={
            "choices": [{"index": 0, "message": {"role": "assistant", "content": self.reply}}],
        })

    @property
    def last_messages(self) -> List[dict]:
        return self.requests[-1]["body"]["messages"]


class FakeIdentityService:
    """Firebase-style accounts:lookup endpoint; records every token it is asked about."""

    def __init__(self):
        self.tokens: List[str] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        token = json.loads(request.content).get("idToken")
        self.tokens.append(token)
        account = USERS.get(token)
        if account is None:
            return httpx.Response(400, json={"error": {"message": "INVALID_ID_TOKEN"}})
        return httpx.Response(200, json={"users": [account]})


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def estimator():
    # Heuristic only (ceil(len / 4)) so token counts are exact in assertions
    return TokenEstimator(encoding_name=None)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def session_store(fake_redis, estimator):
    return SessionHistoryStore(
        redis_url="redis://fake:6379/0",
        ttl_seconds=3600,
        system_prompt=SYSTEM_PROMPT,
        estimator=estimator,
        client=fake_redis,
        max_retries=1,
    )


@pytest.fixture
def documents(tmp_path):
    return DocumentStore(str(tmp_path / "durable.db"), DurableHistoryStore.collection, max_retries=1)


@pytest.fixture
def durable_store(documents, estimator):
    return DurableHistoryStore(documents, SYSTEM_PROMPT, estimator)


@pytest.fixture
async def ready_durable_store(durable_store):
    await durable_store.init()
    return durable_store


@pytest.fixture
def completion_service():
    return FakeCompletionService()


@pytest.fixture
def completion_client(completion_service):
    return CompletionClient(
        api_url="https://completions.test/v1",
        api_key="test-completion-key",
        model="gpt-3.5-turbo",
        max_tokens=800,
        temperature=0.7,
        timeout=5,
        default_reply=DEFAULT_REPLY,
        transport=httpx.MockTransport(completion_service.handler),
    )


@pytest.fixture
def identity_service():
    return FakeIdentityService()


@pytest.fixture
def identity_provider(identity_service):
    return IdentityProvider(
        "https://identity.test/v1/accounts:lookup",
        api_key="test-identity-key",
        transport=httpx.MockTransport(identity_service.handler),
    )


def build_orchestrator(session_store, completion_client, identity_provider, estimator,
                       durable_store=None, max_tokens=3000):
    builder = ConversationBuilder(estimator, max_tokens, SYSTEM_PROMPT)
    return ChatOrchestrator(
        session_store=session_store,
        completion=completion_client,
        identity_provider=identity_provider,
        estimator=estimator,
        builder=builder,
        durable_store=durable_store,
    )


@pytest.fixture
def orchestrator(session_store, completion_client, identity_provider, estimator, durable_store):
    return build_orchestrator(session_store, completion_client, identity_provider, estimator, durable_store)


@pytest.fixture
def client(orchestrator):
    app = create_app(orchestrator=orchestrator)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer token-user-1"}
