"""Core engine: the per-message chat pipeline.

The engine receives a user message, validates it, appends it to the
session, trims a copy of the history into the outbound context, calls the
completion provider (whole or streaming) and appends the assistant turn
back to the untrimmed history.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator

import structlog

from chatline.config import ChatlineConfig
from chatline.core.errors import NotFoundError, ProviderError, ValidationError
from chatline.core.memory.history import TurnHistory
from chatline.core.memory.tokens import CharTokenEstimator, ModelTokenEstimator, TokenEstimator
from chatline.core.memory.trimmer import ContextTrimmer
from chatline.core.model_router import CompletionProvider
from chatline.core.security.validator import normalize, validate
from chatline.core.session.store import SessionStore, mint_conversation_id
from chatline.core.types import ReplyBuilder, Role, Session, Turn, TurnStatus

logger = structlog.get_logger()

PROVIDER_FAILURE_MESSAGE = "Sorry, I couldn't generate a response. Please try again."


@dataclass
class PreparedRequest:
    """A validated user turn, already appended, plus its outbound context."""

    conversation_id: str
    user_turn: Turn
    context: list[Turn]

    @property
    def messages(self) -> list[dict[str, Any]]:
        return [t.to_litellm() for t in self.context]


@dataclass
class ChatReply:
    """Result of a whole-response exchange."""

    conversation_id: str
    user_turn: Turn
    turn: Turn


def build_trimmer(config: ChatlineConfig) -> ContextTrimmer:
    """Create the context trimmer described by the config."""
    ctx = config.context
    estimator: TokenEstimator
    if ctx.tokenizer == "model":
        estimator = ModelTokenEstimator(config.models.default, overhead=ctx.message_overhead)
    else:
        estimator = CharTokenEstimator(ctx.chars_per_token, ctx.message_overhead)
    return ContextTrimmer(
        max_tokens=ctx.max_tokens,
        max_messages=ctx.max_messages,
        keep_recent=ctx.keep_recent,
        summarize_ratio=ctx.summarize_ratio,
        estimator=estimator,
    )


class ReplyStream:
    """A streamed assistant reply.

    Iterating yields text fragments from the provider. Whatever has been
    accumulated when iteration stops is appended to the session: complete
    on normal exhaustion, partial if the consumer stops early, failed if
    the provider raises.
    """

    def __init__(self, engine: ChatEngine, prepared: PreparedRequest) -> None:
        self._engine = engine
        self._prepared = prepared
        self._builder = ReplyBuilder(conversation_id=prepared.conversation_id)
        self._started = False
        self.turn: Turn | None = None

    @property
    def conversation_id(self) -> str:
        return self._prepared.conversation_id

    @property
    def message_id(self) -> str:
        return self._builder.id

    @property
    def content(self) -> str:
        return self._builder.content

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("Reply stream can only be iterated once")
        self._started = True
        return self._run()

    async def _run(self) -> AsyncIterator[str]:
        status = TurnStatus.PARTIAL
        try:
            async for fragment in self._engine.provider.stream(self._prepared.messages):
                self._builder.append(fragment)
                yield fragment
            status = TurnStatus.COMPLETE
        except ProviderError:
            status = TurnStatus.FAILED
            raise
        except Exception as e:
            status = TurnStatus.FAILED
            raise ProviderError(str(e)) from e
        finally:
            if status == TurnStatus.PARTIAL:
                logger.info(
                    "stream_interrupted",
                    conversation_id=self.conversation_id,
                    chars=len(self._builder.content),
                )
            self.turn = await self._engine._finish_reply(self._builder, status)


class ChatEngine:
    """Per-message pipeline over an injectable session store."""

    def __init__(
        self,
        config: ChatlineConfig,
        provider: CompletionProvider,
        store: SessionStore | None = None,
        trimmer: ContextTrimmer | None = None,
        history: TurnHistory | None = None,
    ) -> None:
        self.config = config
        self.provider = provider
        if store is None:
            store = SessionStore(system_prompt=config.sessions.system_prompt)
        self.store = store
        self.trimmer = trimmer if trimmer is not None else build_trimmer(config)
        self.history = history

    # === Sessions ===

    async def open_session(self, conversation_id: str) -> Session:
        """Get the live session, rehydrating from history when persistence is on."""
        session = await self.store.get(conversation_id)
        if session is not None:
            return session

        restored: list[Turn] = []
        if self.history is not None:
            try:
                restored = await self.history.load_history(conversation_id)
            except Exception as e:
                logger.warning("history_load_failed", conversation_id=conversation_id, error=str(e))
        return await self.store.get_or_create(conversation_id, restored=restored)

    async def get_conversation(self, conversation_id: str) -> Session:
        session = await self.store.get(conversation_id)
        if session is None:
            raise NotFoundError(conversation_id)
        return session

    async def clear_conversation(self, conversation_id: str) -> bool:
        """Forget a conversation in memory and in persistent history."""
        removed = await self.store.delete(conversation_id)
        if self.history is not None:
            try:
                removed = await self.history.delete_conversation(conversation_id) or removed
            except Exception as e:
                logger.warning("history_delete_failed", conversation_id=conversation_id, error=str(e))
        if removed:
            logger.info("conversation_cleared", conversation_id=conversation_id)
        return removed

    def outbound_context(self, session: Session) -> list[Turn]:
        """Trimmed copy of the history to send to the provider.

        Failed assistant turns stay in the transcript but are never sent.
        """
        turns = [t for t in session.turns() if t.status != TurnStatus.FAILED]
        if self.trimmer.needs_summarization(turns):
            logger.info(
                "context_summarization_suggested",
                conversation_id=session.conversation_id,
                turns=len(turns),
            )
        return self.trimmer.trim(turns)

    # === Pipeline ===

    async def prepare(self, content: Any, conversation_id: str | None = None) -> PreparedRequest:
        """Validate the message, append it and build the outbound context."""
        # Validate exactly the text that will be stored and sent
        text = normalize(content) if isinstance(content, str) else content
        result = validate(text, self.config.validation.max_length)
        if not result.valid:
            logger.info("input_rejected", reason=result.error, conversation_id=conversation_id)
            raise ValidationError(result.error, result.detail)

        conversation_id = conversation_id or mint_conversation_id()
        user_turn = Turn(role=Role.USER, content=text, conversation_id=conversation_id)

        await self.open_session(conversation_id)
        try:
            session = await self.store.append(conversation_id, user_turn)
        except NotFoundError:
            # Evicted between lookup and append; start fresh
            await self.open_session(conversation_id)
            session = await self.store.append(conversation_id, user_turn)

        # Snapshot before the next await so later appends cannot leak in
        context = self.outbound_context(session)
        await self._persist(user_turn)

        logger.debug(
            "context_built",
            conversation_id=conversation_id,
            history_turns=len(session.history),
            outbound_turns=len(context),
            outbound_tokens=self.trimmer.total_tokens(context),
        )
        return PreparedRequest(conversation_id=conversation_id, user_turn=user_turn, context=context)

    async def process_message(self, content: Any, conversation_id: str | None = None) -> ChatReply:
        """Process a user message and return the assistant's whole response."""
        prepared = await self.prepare(content, conversation_id)
        builder = ReplyBuilder(conversation_id=prepared.conversation_id)

        try:
            text = await self.provider.complete(prepared.messages)
        except ProviderError:
            await self._finish_reply(builder, TurnStatus.FAILED)
            raise
        except Exception as e:
            await self._finish_reply(builder, TurnStatus.FAILED)
            raise ProviderError(str(e)) from e

        builder.append(text)
        turn = await self._finish_reply(builder, TurnStatus.COMPLETE)
        return ChatReply(conversation_id=prepared.conversation_id, user_turn=prepared.user_turn, turn=turn)

    async def stream_message(self, content: Any, conversation_id: str | None = None) -> ReplyStream:
        """Validate and append the user message, then return the reply stream.

        Validation errors surface here, before any fragment is produced.
        """
        prepared = await self.prepare(content, conversation_id)
        return ReplyStream(self, prepared)

    async def _finish_reply(self, builder: ReplyBuilder, status: TurnStatus) -> Turn | None:
        """Freeze the accumulated reply and append it to the untrimmed history."""
        content = builder.content
        if status == TurnStatus.FAILED and not content:
            content = PROVIDER_FAILURE_MESSAGE
        if status == TurnStatus.PARTIAL and not content:
            return None

        turn = builder.finalize(status, content)
        try:
            await self.store.append(turn.conversation_id, turn)
        except NotFoundError:
            logger.warning("session_gone_before_reply", conversation_id=turn.conversation_id)
            return turn

        await self._persist(turn)
        logger.info(
            "reply_finished",
            conversation_id=turn.conversation_id,
            status=status.value,
            chars=len(turn.content),
        )
        return turn

    async def _persist(self, turn: Turn) -> None:
        if self.history is None:
            return
        try:
            await self.history.save(turn)
        except Exception as e:
            logger.warning("turn_save_failed", conversation_id=turn.conversation_id, error=str(e))
