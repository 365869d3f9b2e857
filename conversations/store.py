"""
Durable storage for conversations and their turns.

Each public method opens its own session and either commits everything it
changed or nothing, so callers never observe a half-written turn. Turns are
append-only: there is no update or single-turn delete.
"""

from typing import List, Optional
import logging
from sqlmodel import Session, select

from models import Conversation, Turn, utcnow
from conversations.errors import InvalidInput, NotFound

ROLES = ("user", "assistant")


class TurnStore:
    def __init__(self, engine):
        self.engine = engine

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    # --- Conversations ---

    def create_conversation(self, user_id: int, model_id: str, title: str) -> Conversation:
        with self._session() as session:
            conversation = Conversation(user_id=user_id, model_id=model_id, title=title)
            session.add(conversation)
            session.commit()
            session.refresh(conversation)
            logging.info(f"Created conversation {conversation.id} for user {user_id} ({model_id})")
            return conversation

    def get_conversation(self, conversation_id: int) -> Optional[Conversation]:
        with self._session() as session:
            return session.get(Conversation, conversation_id)

    def list_conversations(self, user_id: int) -> List[Conversation]:
        with self._session() as session:
            return list(session.exec(
                select(Conversation)
                .where(Conversation.user_id == user_id)
                .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
            ).all())

    def set_title(self, conversation_id: int, title: str) -> None:
        with self._session() as session:
            conversation = session.get(Conversation, conversation_id)
            if conversation is None:
                raise NotFound(f"Conversation {conversation_id} not found")
            conversation.title = title
            conversation.updated_at = utcnow()
            session.add(conversation)
            session.commit()

    def delete_conversation(self, conversation_id: int) -> None:
        with self._session() as session:
            conversation = session.get(Conversation, conversation_id)
            if conversation is None:
                raise NotFound(f"Conversation {conversation_id} not found")
            turns = session.exec(select(Turn).where(Turn.conversation_id == conversation_id)).all()
            for turn in turns:
                session.delete(turn)
            session.delete(conversation)
            session.commit()
            logging.info(f"Deleted conversation {conversation_id} and {len(turns)} turns")

    # --- Turns ---

    def append(self, conversation_id: int, role: str, content: str, attachment: Optional[str] = None) -> Turn:
        if role not in ROLES:
            raise InvalidInput(f"Unknown role: {role}")
        if attachment and role != "user":
            raise InvalidInput("Only user turns may carry an attachment")

        with self._session() as session:
            conversation = session.get(Conversation, conversation_id)
            if conversation is None:
                raise NotFound(f"Conversation {conversation_id} not found")

            # Never stamp a turn earlier than the newest one already stored
            latest = session.exec(
                select(Turn.created_at)
                .where(Turn.conversation_id == conversation_id)
                .order_by(Turn.created_at.desc(), Turn.id.desc())
                .limit(1)
            ).first()
            created_at = utcnow()
            if latest is not None and created_at < latest:
                created_at = latest

            turn = Turn(
                conversation_id=conversation_id,
                role=role,
                content=content,
                attachment=attachment or None,
                created_at=created_at,
            )
            conversation.updated_at = created_at
            session.add(turn)
            session.add(conversation)
            session.commit()
            session.refresh(turn)
            return turn

    def list_ordered(self, conversation_id: int) -> List[Turn]:
        with self._session() as session:
            return list(session.exec(
                select(Turn)
                .where(Turn.conversation_id == conversation_id)
                .order_by(Turn.created_at, Turn.id)
            ).all())
