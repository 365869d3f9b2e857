from fastapi import APIRouter, Depends, HTTPException, Request
from models import User
from auth import get_current_user
from conversations.errors import ConversationError
from conversations.generation import models_catalogue
from pydantic import BaseModel
from typing import Optional

router = APIRouter(prefix="/api/chat", tags=["chat"])

# Forbidden answers exactly like NotFound so foreign ids reveal nothing
ERROR_STATUS = {
    "InvalidInput": 400,
    "Forbidden": 404,
    "NotFound": 404,
    "BackendRateLimited": 429,
    "BackendUnavailable": 503,
    "BackendAuthError": 502,
    "BackendUnknown": 502,
}


class ChatRequest(BaseModel):
    message: str = ""
    conversation_id: Optional[int] = None
    model: Optional[str] = None
    image_url: Optional[str] = None  # opaque attachment reference


class NewConversation(BaseModel):
    title: Optional[str] = None
    model: Optional[str] = None


def get_orchestrator(request: Request):
    return request.app.state.orchestrator


def to_http(error: ConversationError) -> HTTPException:
    status_code = ERROR_STATUS.get(error.kind, 500)
    if error.kind in ("Forbidden", "NotFound"):
        return HTTPException(status_code=status_code, detail="Conversation not found")
    return HTTPException(status_code=status_code, detail={"kind": error.kind, "message": error.message})


@router.get("/models")
def list_models():
    return {"models": models_catalogue()}


@router.get("/conversations")
def get_conversations(user: User = Depends(get_current_user), orchestrator=Depends(get_orchestrator)):
    return [c.model_dump() for c in orchestrator.list_conversations(user.id)]


@router.post("/conversations")
def new_conversation(
    request: NewConversation,
    user: User = Depends(get_current_user),
    orchestrator=Depends(get_orchestrator),
):
    conversation = orchestrator.create_conversation(user.id, model_id=request.model, title=request.title)
    return conversation.model_dump()


@router.post("/")
def chat_endpoint(
    request: ChatRequest,
    user: User = Depends(get_current_user),
    orchestrator=Depends(get_orchestrator),
):
    try:
        turn = orchestrator.send_turn(
            user_id=user.id,
            text=request.message,
            model_id=request.model,
            conversation_id=request.conversation_id,
            attachment=request.image_url,
        )
    except ConversationError as e:
        raise to_http(e)

    return {
        "response": turn.content,
        "conversation_id": turn.conversation_id,
        "message": turn.model_dump(),
    }


@router.get("/{conversation_id}")
def get_history(conversation_id: int, user: User = Depends(get_current_user), orchestrator=Depends(get_orchestrator)):
    try:
        conversation, turns = orchestrator.get_conversation(conversation_id, user.id)
    except ConversationError as e:
        raise to_http(e)
    return {"conversation": conversation.model_dump(), "messages": [t.model_dump() for t in turns]}


@router.delete("/{conversation_id}")
def delete_conversation(conversation_id: int, user: User = Depends(get_current_user), orchestrator=Depends(get_orchestrator)):
    try:
        orchestrator.delete_conversation(conversation_id, user.id)
    except ConversationError as e:
        raise to_http(e)
    return {"message": "Conversation deleted successfully"}
