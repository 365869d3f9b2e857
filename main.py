from fastapi import FastAPI
import logging
from config import config
from database import init_db, engine
from routers import auth, chat
from conversations.generation import GenerationClient, make_groq_client, resolve_revision
from conversations.orchestrator import Orchestrator
from conversations.store import TurnStore
from conversations.titles import TitleDeriver, TitleScheduler

# --- Logging Configuration ---
logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(levelname)s - %(message)s')

app = FastAPI(title="Multi-conversation Chat")

# Include Routers
app.include_router(auth.router)
app.include_router(chat.router)


def build_orchestrator() -> Orchestrator:
    """Wire the engine: one backend client per process, injected everywhere it is used."""
    if not config.GROQ_API_KEY:
        logging.error("GROQ_API_KEY not set. Generation calls will fail with BackendAuthError.")
    generation = GenerationClient(
        make_groq_client(config.GROQ_API_KEY or "missing", timeout=config.BACKEND_TIMEOUT),
        default_revision=resolve_revision(config.DEFAULT_MODEL),
    )
    return Orchestrator(
        store=TurnStore(engine),
        generation=generation,
        titles=TitleDeriver(generation),
        scheduler=TitleScheduler(config.TITLE_DELAY_SECONDS),
    )


@app.on_event("startup")
def on_startup():
    init_db()
    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = build_orchestrator()


@app.on_event("shutdown")
def on_shutdown():
    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None:
        orchestrator.scheduler.shutdown()


@app.get("/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="127.0.0.1", port=8000, reload=True)
