# blackgift_chat/services/orchestrator.py
"""
Per-request control flow for the chat API.

    identity -> load history -> build + trim -> completion
             -> reload + append reply + trim -> persist history and usage -> reply

Nothing is written until the completion has succeeded, and an authenticated
turn writes history and usage in one transaction. The history is reloaded
after the completion so a concurrent turn that finished in the meantime is
kept; history itself is still last-write-wins, usage never is.
"""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar, Union

from blackgift_chat.core.config import Settings
from blackgift_chat.core.database import DocumentStore
from blackgift_chat.core.errors import (
    AuthenticationRequired,
    BackendUnavailable,
    ChatValidationError,
    PersistenceFailure,
)
from blackgift_chat.models.chat import ChatMessage
from blackgift_chat.models.document import UsageCounter
from blackgift_chat.models.identity import Anonymous, Authenticated, Identity, effective_identity
from blackgift_chat.services.conversation import ConversationBuilder
from blackgift_chat.services.history_store import DurableHistoryStore, HistoryStore, SessionHistoryStore
from blackgift_chat.services.identity import IdentityProvider, resolve_identity
from blackgift_chat.services.llm import CompletionClient
from blackgift_chat.services.tokens import TokenEstimator

logger = logging.getLogger(__name__)

T = TypeVar("T")
ScopedIdentity = Union[Anonymous, Authenticated]


@dataclass
class ChatResult:
    reply: str
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ChatOrchestrator:
    def __init__(
        self,
        session_store: SessionHistoryStore,
        completion: CompletionClient,
        identity_provider: IdentityProvider,
        estimator: TokenEstimator,
        builder: ConversationBuilder,
        durable_store: Optional[DurableHistoryStore] = None,
    ):
        self.session_store = session_store
        self.durable_store = durable_store
        self.completion = completion
        self.identity_provider = identity_provider
        self.estimator = estimator
        self.builder = builder

    @classmethod
    def from_settings(cls, settings: Settings) -> "ChatOrchestrator":
        estimator = TokenEstimator(
            settings.TOKEN_ENCODING,
            message_overhead=settings.MESSAGE_TOKEN_OVERHEAD,
            conversation_overhead=settings.CONVERSATION_TOKEN_OVERHEAD,
        )
        session_store = SessionHistoryStore(
            redis_url=settings.SESSION_STORE_URL,
            ttl_seconds=settings.session_ttl_seconds,
            system_prompt=settings.SYSTEM_PROMPT,
            estimator=estimator,
            max_retries=settings.DB_MAX_RETRIES,
            retry_delay=settings.DB_CONNECT_RETRY_DELAY,
        )
        durable_store = None
        if settings.DURABLE_STORE_PATH:
            documents = DocumentStore(
                settings.DURABLE_STORE_PATH,
                DurableHistoryStore.collection,
                max_retries=settings.DB_MAX_RETRIES,
                retry_delay=settings.DB_CONNECT_RETRY_DELAY,
            )
            durable_store = DurableHistoryStore(documents, settings.SYSTEM_PROMPT, estimator)
        else:
            logger.warning("DURABLE_STORE_PATH is not set; authenticated users get session-scoped history")

        completion = CompletionClient(
            api_url=settings.COMPLETION_API_URL,
            api_key=settings.COMPLETION_API_KEY,
            model=settings.COMPLETION_MODEL,
            max_tokens=settings.COMPLETION_MAX_TOKENS,
            temperature=settings.COMPLETION_TEMPERATURE,
            timeout=settings.COMPLETION_TIMEOUT,
            default_reply=settings.DEFAULT_REPLY,
        )
        identity_provider = IdentityProvider(
            settings.IDENTITY_VERIFY_URL,
            settings.IDENTITY_API_KEY,
            timeout=settings.IDENTITY_TIMEOUT,
        )
        builder = ConversationBuilder(estimator, settings.HISTORY_MAX_TOKENS, settings.SYSTEM_PROMPT)
        return cls(session_store, completion, identity_provider, estimator, builder, durable_store)

    # === Lifecycle ===

    async def init(self):
        await self.session_store.init()
        if self.durable_store is not None:
            try:
                await self.durable_store.init()
            except Exception as e:
                logger.error(f"Durable store failed to initialise, authenticated history disabled: {e}")
                self.durable_store = None
        await self.completion.init()
        await self.identity_provider.init()

    async def close(self):
        await self.completion.close()
        await self.identity_provider.close()
        if self.durable_store is not None:
            await self.durable_store.close()
        await self.session_store.close()

    async def health_check(self) -> Dict[str, Optional[bool]]:
        return {
            "session_store": await self.session_store.health_check(),
            "durable_store": await self.durable_store.health_check() if self.durable_store else None,
            "completion": await self.completion.health_check(),
            "identity": await self.identity_provider.health_check(),
        }

    # === Identity / store selection ===

    async def resolve_identity(self, authorization: Optional[str], session_id: str) -> Identity:
        return await resolve_identity(self.identity_provider, authorization, session_id)

    async def _on_store(
        self,
        identity: Identity,
        operation: Callable[[HistoryStore, ScopedIdentity], Awaitable[T]],
    ) -> Tuple[HistoryStore, ScopedIdentity, T]:
        """
        Runs `operation` on the durable store for authenticated users, and on
        the session store otherwise or when the durable store is unavailable.
        """
        scoped = effective_identity(identity)
        if isinstance(scoped, Authenticated) and self.durable_store is not None:
            try:
                return self.durable_store, scoped, await operation(self.durable_store, scoped)
            except BackendUnavailable as e:
                logger.warning(f"Durable store unavailable for user {scoped.user_id}, using session history: {e}")
        anonymous = Anonymous(session_id=scoped.session_id)
        return self.session_store, anonymous, await operation(self.session_store, anonymous)

    # === Operations ===

    async def chat(self, identity: Identity, message: Optional[str]) -> ChatResult:
        user_message = (message or "").strip()
        if not user_message:
            raise ChatValidationError()

        store, scoped, record = await self._on_store(identity, lambda s, i: s.load(i))
        logger.info(f"Processing message: {scoped.kind} via {store.name} store, {len(user_message)} chars")

        conversation = self.builder.build(scoped, record.messages, user_message)
        reply = await self.completion.complete(conversation.messages)
        logger.info(f"Completion reply: {len(reply)} chars")

        prompt_tokens = self.estimator.estimate_messages(conversation.messages)
        completion_tokens = self.estimator.estimate(reply)

        try:
            latest = await store.load(scoped)
            final = self.builder.append_reply(latest.messages, conversation.user_message, reply)
            await store.save_turn(scoped, final.messages, final.total_tokens, prompt_tokens + completion_tokens)
        except BackendUnavailable as e:
            logger.error(f"Failed to persist chat turn to {store.name} store: {e}")
            raise PersistenceFailure(e.details) from e

        return ChatResult(reply=reply, prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)

    async def reset(self, identity: Identity) -> str:
        store, scoped, _ = await self._on_store(identity, lambda s, i: s.reset(i))
        logger.info(f"History reset for {scoped.kind} via {store.name} store")
        if store is self.durable_store:
            return "User history reset."
        return "Session history reset."

    async def history(self, identity: Identity) -> List[ChatMessage]:
        _, _, record = await self._on_store(identity, lambda s, i: s.load(i))
        return record.messages

    async def usage(self, identity: Identity) -> UsageCounter:
        scoped = effective_identity(identity)
        if not isinstance(scoped, Authenticated) or self.durable_store is None:
            raise AuthenticationRequired()
        try:
            usage = await self.durable_store.get_usage(scoped)
        except BackendUnavailable as e:
            logger.warning(f"Durable store unavailable for usage of user {scoped.user_id}: {e}")
            raise AuthenticationRequired(e.details) from e
        return usage or UsageCounter(total=0)
