"""
Shared fixtures: a throwaway SQLite file per test and a mocked Groq client.

The mocked client answers title requests (sent to the title revision) with
``TITLE_TEXT`` and everything else with ``REPLY_TEXT``; tests swap
``backend.reply``, ``backend.error`` or ``backend.chat_delay`` to steer it.
"""

import time
from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import pytest
from sqlmodel import Session
from tenacity import wait_none

from database import init_db, make_engine
from models import User
from conversations.generation import GenerationClient, MODELS
from conversations.orchestrator import Orchestrator
from conversations.store import TurnStore
from conversations.titles import TitleDeriver, TitleScheduler

REPLY_TEXT = "Hello! How can I help?"
TITLE_TEXT = "Friendly Greeting"
TITLE_REVISION = MODELS["llama-3.1-8b"].revision

GROQ_URL = "https://api.groq.com/openai/v1/chat/completions"


def make_response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def status_error(cls, status_code, message="backend said no"):
    request = httpx.Request("POST", GROQ_URL)
    response = httpx.Response(status_code, request=request)
    return cls(message, response=response, body=None)


class FakeBackend:
    def __init__(self):
        self.calls = []
        self.reply = REPLY_TEXT
        self.title = TITLE_TEXT
        self.error = None
        self.title_error = None
        self.chat_delay = 0
        self.client = MagicMock()
        self.client.chat.completions.create.side_effect = self._create

    def _create(self, **kwargs):
        self.calls.append(kwargs)
        if kwargs["model"] == TITLE_REVISION:
            if self.title_error is not None:
                raise self.title_error
            return make_response(self.title)
        time.sleep(self.chat_delay)
        if self.error is not None:
            raise self.error
        return make_response(self.reply)

    def chat_calls(self):
        return [c for c in self.calls if c["model"] != TITLE_REVISION]

    def title_calls(self):
        return [c for c in self.calls if c["model"] == TITLE_REVISION]


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return TurnStore(engine)


def _add_user(engine, username):
    with Session(engine) as session:
        user = User(username=username, email=f"{username}@example.com", password_hash="x")
        session.add(user)
        session.commit()
        session.refresh(user)
        return user.id


@pytest.fixture
def alice(engine):
    return _add_user(engine, "alice")


@pytest.fixture
def bob(engine):
    return _add_user(engine, "bob")


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def generation(backend):
    return GenerationClient(backend.client)


@pytest.fixture
def scheduler():
    scheduler = TitleScheduler(delay=0.05)
    yield scheduler
    scheduler.shutdown()
    scheduler.drain(timeout=5)


@pytest.fixture
def orchestrator(store, generation, scheduler):
    return Orchestrator(
        store=store,
        generation=generation,
        titles=TitleDeriver(generation, model_id="llama-3.1-8b", attempts=2, wait=wait_none()),
        scheduler=scheduler,
        default_model="llama-3.3-70b",
        serialize=False,
    )
