"""
Conversation Orchestrator.

``send_turn`` runs the per-request workflow, stopping at the first failure:

1. resolve (or create) the conversation and check ownership
2. record the user turn
3. read back every turn; on a conversation's first turn, schedule the
   deferred title task
4. assemble the backend context and call the generation backend
5. record the assistant turn
6. return the assistant turn

A backend failure leaves the user turn in place and records no assistant
turn. The title task already runs on its own clock by then, so the
generation call can neither delay nor cancel it. Nothing on this path
retries.
"""

from contextlib import nullcontext
from typing import Dict, List, Optional, Tuple
import logging
import threading

from config import config
from models import Conversation, Turn
from conversations.context import assemble
from conversations.errors import BackendUnknown, Forbidden, InvalidInput, NotFound
from conversations.store import TurnStore
from conversations.titles import TitleDeriver, TitleScheduler


class ConversationLocks:
    """Per-conversation locks, used only when same-conversation sends must be serialized."""

    def __init__(self):
        self._locks: Dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def get(self, conversation_id: int) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(conversation_id, threading.Lock())

    def discard(self, conversation_id: int) -> None:
        with self._guard:
            self._locks.pop(conversation_id, None)


class Orchestrator:
    def __init__(
        self,
        store: TurnStore,
        generation,
        titles: TitleDeriver,
        scheduler: TitleScheduler,
        default_model: str = config.DEFAULT_MODEL,
        placeholder_title: str = config.PLACEHOLDER_TITLE,
        serialize: bool = config.SERIALIZE_CONVERSATIONS,
    ):
        self.store = store
        self.generation = generation
        self.titles = titles
        self.scheduler = scheduler
        self.default_model = default_model
        self.placeholder_title = placeholder_title
        self.locks = ConversationLocks() if serialize else None

    # --- Ownership ---

    def _owned(self, conversation_id: int, user_id: int) -> Conversation:
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None:
            raise NotFound(f"Conversation {conversation_id} not found")
        if conversation.user_id != user_id:
            logging.warning(f"User {user_id} denied access to conversation {conversation_id}")
            raise Forbidden(f"Conversation {conversation_id} not found")
        return conversation

    # --- Reads and maintenance ---

    def create_conversation(self, user_id: int, model_id: Optional[str] = None, title: Optional[str] = None) -> Conversation:
        return self.store.create_conversation(
            user_id=user_id,
            model_id=model_id or self.default_model,
            title=(title or "").strip() or self.placeholder_title,
        )

    def list_conversations(self, user_id: int) -> List[Conversation]:
        return self.store.list_conversations(user_id)

    def get_conversation(self, conversation_id: int, user_id: int) -> Tuple[Conversation, List[Turn]]:
        conversation = self._owned(conversation_id, user_id)
        return conversation, self.store.list_ordered(conversation_id)

    def delete_conversation(self, conversation_id: int, user_id: int) -> None:
        self._owned(conversation_id, user_id)
        self.scheduler.cancel(conversation_id)
        self.store.delete_conversation(conversation_id)
        if self.locks is not None:
            self.locks.discard(conversation_id)

    # --- Send ---

    def send_turn(
        self,
        user_id: int,
        text: Optional[str],
        model_id: Optional[str] = None,
        conversation_id: Optional[int] = None,
        attachment: Optional[str] = None,
    ) -> Turn:
        text = text or ""
        if not text.strip() and not attachment:
            raise InvalidInput("Message text or an attachment is required")

        if conversation_id is None:
            conversation = self.create_conversation(user_id, model_id)
        else:
            conversation = self._owned(conversation_id, user_id)

        lock = self.locks.get(conversation.id) if self.locks is not None else nullcontext()
        with lock:
            return self._run(conversation, text, attachment)

    def _run(self, conversation: Conversation, text: str, attachment: Optional[str]) -> Turn:
        user_turn = self.store.append(conversation.id, "user", text, attachment)

        turns = self.store.list_ordered(conversation.id)
        if len(turns) == 1:
            self.scheduler.schedule(
                conversation.id,
                lambda: self._apply_title(conversation.id, user_turn.content),
                delay=self.scheduler.delay,
            )

        blocks = assemble(turns)
        completion = self.generation.complete(blocks, conversation.model_id)
        if not completion.text.strip():
            logging.error(f"Empty completion from {completion.revision} for conversation {conversation.id}")
            raise BackendUnknown("The model returned an empty response. Please try again.")

        return self.store.append(conversation.id, "assistant", completion.text)

    def _apply_title(self, conversation_id: int, opening_text: str) -> None:
        title = self.titles.derive_title(opening_text)
        try:
            self.store.set_title(conversation_id, title)
        except NotFound:
            logging.info(f"Conversation {conversation_id} deleted before its title was set")
            return
        logging.info(f"Conversation {conversation_id} titled '{title}'")
