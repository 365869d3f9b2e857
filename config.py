import os
from dotenv import load_dotenv

load_dotenv()


class Config:
    GROQ_API_KEY = os.getenv("GROQ_API_KEY")
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./site.db")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # --- Identity ---
    SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
    ALGORITHM = os.getenv("ALGORITHM", "HS256")
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(7 * 24 * 60)))
    MAX_USERS = int(os.getenv("MAX_USERS", "10"))

    # --- Generation ---
    DEFAULT_MODEL = os.getenv("DEFAULT_MODEL", "llama-3.3-70b")
    BACKEND_TIMEOUT = float(os.getenv("BACKEND_TIMEOUT", "60"))

    # --- Titles ---
    PLACEHOLDER_TITLE = "New Chat"
    TITLE_MODEL = os.getenv("TITLE_MODEL", "llama-3.1-8b")
    TITLE_MAX_TOKENS = 50
    TITLE_DELAY_SECONDS = float(os.getenv("TITLE_DELAY_SECONDS", "1.5"))
    TITLE_RETRY_ATTEMPTS = int(os.getenv("TITLE_RETRY_ATTEMPTS", "2"))
    TITLE_PROMPT = (
        "Generate a short, descriptive title (max 50 characters) for a chat conversation "
        "based on the first message. Return only the title, no quotes or extra text."
    )

    # Opt-in mutual exclusion for concurrent sends to one conversation
    SERIALIZE_CONVERSATIONS = os.getenv("SERIALIZE_CONVERSATIONS", "0") == "1"


config = Config()
