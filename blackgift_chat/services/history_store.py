# blackgift_chat/services/history_store.py
"""
Conversation history persistence.

Two backends share one interface:

- SessionHistoryStore: ephemeral, one JSON blob per browser session in Redis
  with a TTL. Usage is not tracked for anonymous sessions.
- DurableHistoryStore: one document per authenticated user in the document
  store. History saves merge (they never touch usage) and usage increments
  are read-modify-write transactions, so concurrent turns never lose tokens.
"""
import json
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Sequence

import redis.asyncio as redis
from pydantic import ValidationError
from redis.exceptions import RedisError
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from blackgift_chat.core.database import DocumentStore
from blackgift_chat.core.errors import BackendUnavailable
from blackgift_chat.models.chat import ChatMessage, now_ms
from blackgift_chat.models.document import UsageCounter, UserHistoryDocument
from blackgift_chat.models.identity import Authenticated
from blackgift_chat.services.tokens import TokenEstimator
from blackgift_chat.services.trimming import seed_history

logger = logging.getLogger(__name__)


@dataclass
class HistoryRecord:
    messages: List[ChatMessage]
    total_tokens: int


class HistoryStore(ABC):
    name = "base"

    def __init__(self, system_prompt: str, estimator: TokenEstimator):
        self.system_prompt = system_prompt
        self.estimator = estimator

    def seed(self) -> HistoryRecord:
        seeded = seed_history(self.system_prompt, self.estimator)
        return HistoryRecord(messages=seeded.messages, total_tokens=seeded.total_tokens)

    async def init(self):
        return None

    async def health_check(self) -> bool:
        return True

    async def close(self):
        return None

    @abstractmethod
    async def load(self, identity) -> HistoryRecord:
        """Current history, created with just the system message on first access."""

    @abstractmethod
    async def save(self, identity, history: Sequence[ChatMessage], total_tokens: int):
        """Replaces the stored history."""

    @abstractmethod
    async def add_usage(self, identity, tokens: int):
        """Adds to the lifetime usage counter."""

    async def reset(self, identity) -> HistoryRecord:
        """Back to the seed history. Usage is left alone."""
        record = self.seed()
        await self.save(identity, record.messages, record.total_tokens)
        return record

    async def save_turn(self, identity, history: Sequence[ChatMessage], total_tokens: int, usage_delta: int):
        """Persists a finished chat turn: history and usage."""
        await self.save(identity, history, total_tokens)
        await self.add_usage(identity, usage_delta)


# === Session (Redis) ===

class SessionHistoryStore(HistoryStore):
    name = "session"

    def __init__(
        self,
        redis_url: str,
        ttl_seconds: int,
        system_prompt: str,
        estimator: TokenEstimator,
        client: Optional[redis.Redis] = None,
        key_prefix: str = "blackgift:session:",
        max_retries: int = 5,
        retry_delay: float = 1,
    ):
        super().__init__(system_prompt, estimator)
        self.redis_url = redis_url
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._redis = client

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[redis.Redis]:
        if self._redis is None:
            raise BackendUnavailable("Session store is not initialised")
        try:
            yield self._redis
        except (RedisError, OSError) as e:
            raise BackendUnavailable(f"Session store error: {e}") from e

    async def init(self):
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_delay, max=10),
            reraise=True,
        ):
            with attempt:
                await self._redis.ping()
        logger.info(f"Session store connected ({self.redis_url})")

    async def health_check(self) -> bool:
        try:
            async with self._connection() as conn:
                await conn.ping()
            return True
        except BackendUnavailable as e:
            logger.error(f"Session store health check failed: {e}")
            return False

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Closed session store connection")

    def _key(self, identity) -> str:
        return f"{self.key_prefix}{identity.session_id}"

    async def _write(self, identity, history: Sequence[ChatMessage], total_tokens: int):
        payload = {
            "history": [m.model_dump() for m in history],
            "total_tokens": total_tokens,
        }
        async with self._connection() as conn:
            await conn.set(self._key(identity), json.dumps(payload, ensure_ascii=False), ex=self.ttl_seconds)

    async def load(self, identity) -> HistoryRecord:
        async with self._connection() as conn:
            raw = await conn.get(self._key(identity))

        if raw is not None:
            try:
                data = json.loads(raw)
                messages = [ChatMessage.model_validate(m) for m in data.get("history") or []]
                if messages:
                    return HistoryRecord(messages=messages, total_tokens=int(data.get("total_tokens", 0)))
            except (ValueError, TypeError, AttributeError, ValidationError) as e:
                logger.warning(f"Discarding unreadable session history for {identity.session_id}: {e}")

        record = self.seed()
        await self._write(identity, record.messages, record.total_tokens)
        return record

    async def save(self, identity, history: Sequence[ChatMessage], total_tokens: int):
        await self._write(identity, history, total_tokens)

    async def add_usage(self, identity, tokens: int):
        # Anonymous usage is not billable
        logger.debug(f"Session {identity.session_id} used {tokens} tokens (not tracked)")


# === Durable (document store) ===

class DurableHistoryStore(HistoryStore):
    name = "durable"
    collection = "user_histories"

    def __init__(self, documents: DocumentStore, system_prompt: str, estimator: TokenEstimator):
        super().__init__(system_prompt, estimator)
        self.documents = documents

    async def init(self):
        await self.documents.init()

    async def health_check(self) -> bool:
        return await self.documents.health_check()

    async def close(self):
        await self.documents.close()

    @staticmethod
    def _user_id(identity) -> str:
        if not isinstance(identity, Authenticated):
            raise ValueError("durable history requires an authenticated identity")
        return identity.user_id

    def _seed_document(self) -> UserHistoryDocument:
        record = self.seed()
        return UserHistoryDocument(history=record.messages, total_tokens=record.total_tokens)

    def _document(self, user_id: str, stored) -> UserHistoryDocument:
        if stored is None:
            return self._seed_document()
        try:
            return UserHistoryDocument.from_stored(stored)
        except ValidationError as e:
            raise BackendUnavailable(
                f"Unreadable history document for user {user_id}: {e.error_count()} validation error(s)"
            ) from e

    async def load(self, identity) -> HistoryRecord:
        user_id = self._user_id(identity)
        stored = await self.documents.get(user_id)
        if stored is None:
            # Another request may create it first; keep whichever lands first
            stored = await self.documents.transaction(
                user_id,
                lambda current: current if current is not None else self._seed_document().to_stored(),
            )
            logger.info(f"Created history document for user {user_id}")

        document = self._document(user_id, stored)
        if not document.history:
            return self.seed()
        return HistoryRecord(messages=document.history, total_tokens=document.total_tokens)

    async def save(self, identity, history: Sequence[ChatMessage], total_tokens: int):
        user_id = self._user_id(identity)
        changes = {"history": list(history), "total_tokens": total_tokens, "updated_at": now_ms()}
        await self.documents.transaction(
            user_id,
            lambda current: self._document(user_id, current).merge(changes).to_stored(),
        )

    async def add_usage(self, identity, tokens: int):
        user_id = self._user_id(identity)

        def increment(current):
            document = self._document(user_id, current)
            return document.merge({"token_usage": document.token_usage.add(tokens)}).to_stored()

        await self.documents.transaction(user_id, increment)

    async def save_turn(self, identity, history: Sequence[ChatMessage], total_tokens: int, usage_delta: int):
        user_id = self._user_id(identity)

        def apply(current):
            document = self._document(user_id, current)
            return document.merge({
                "history": list(history),
                "total_tokens": total_tokens,
                "token_usage": document.token_usage.add(usage_delta),
                "updated_at": now_ms(),
            }).to_stored()

        await self.documents.transaction(user_id, apply)

    async def get_usage(self, identity) -> Optional[UsageCounter]:
        """Lifetime usage, or None when the user has no document yet."""
        user_id = self._user_id(identity)
        stored = await self.documents.get(user_id)
        if stored is None:
            return None
        return self._document(user_id, stored).token_usage
