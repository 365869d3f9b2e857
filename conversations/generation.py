"""
Generation Client Adapter: one call shape over the Groq chat-completions API.

Two closed tables drive every call:

* ``MODELS`` maps a logical model id (what conversations store) to a concrete
  backend revision. Unknown ids fall back to ``DEFAULT_REVISION``.
* ``REVISIONS`` holds the invocation parameters of each revision. Some
  revisions only accept ``max_completion_tokens`` and reject a temperature
  override, so parameters are chosen from the *resolved revision*, never from
  the logical id, and only one token-limit parameter is ever sent.

Backend exceptions are normalized into ``conversations.errors.BackendError``
subclasses. Nothing here retries; the SDK's own retries are disabled as well.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence
import logging

import groq
from groq import Groq

from conversations.context import AttachmentPart, ContentBlock, TextPart
from conversations.errors import (
    BackendAuthError,
    BackendRateLimited,
    BackendUnavailable,
    BackendUnknown,
)


@dataclass(frozen=True)
class RevisionParams:
    token_param: str  # "max_tokens" or "max_completion_tokens"
    max_output_tokens: int
    temperature: Optional[float] = None  # None: revision rejects the override
    vision: bool = False


@dataclass(frozen=True)
class ModelEntry:
    name: str
    revision: str


REVISIONS: Dict[str, RevisionParams] = {
    "llama-3.3-70b-versatile": RevisionParams("max_tokens", 4096, temperature=0.7),
    "llama-3.1-8b-instant": RevisionParams("max_tokens", 1024, temperature=0.7),
    "meta-llama/llama-4-scout-17b-16e-instruct": RevisionParams("max_completion_tokens", 8192, temperature=0.7, vision=True),
    "meta-llama/llama-4-maverick-17b-128e-instruct": RevisionParams("max_completion_tokens", 8192, temperature=0.7, vision=True),
    "openai/gpt-oss-120b": RevisionParams("max_completion_tokens", 8192),
}

MODELS: Dict[str, ModelEntry] = {
    "llama-3.3-70b": ModelEntry("Llama 3.3 70B", "llama-3.3-70b-versatile"),
    "llama-3.1-8b": ModelEntry("Llama 3.1 8B Instant", "llama-3.1-8b-instant"),
    "llama-4-scout": ModelEntry("Llama 4 Scout (vision)", "meta-llama/llama-4-scout-17b-16e-instruct"),
    "llama-4-maverick": ModelEntry("Llama 4 Maverick (vision)", "meta-llama/llama-4-maverick-17b-128e-instruct"),
    "gpt-oss-120b": ModelEntry("GPT-OSS 120B", "openai/gpt-oss-120b"),
}

DEFAULT_REVISION = "llama-3.3-70b-versatile"


@dataclass(frozen=True)
class Completion:
    text: str
    revision: str


def resolve_revision(model_id: Optional[str], default: str = DEFAULT_REVISION) -> str:
    if not model_id:
        return default
    if model_id in MODELS:
        return MODELS[model_id].revision
    if model_id in REVISIONS:
        return model_id
    logging.warning(f"Unknown model '{model_id}', falling back to {default}")
    return default


def invocation_params(revision: str, max_output_tokens: Optional[int] = None) -> Dict:
    params = REVISIONS[revision]
    limit = params.max_output_tokens
    if max_output_tokens is not None:
        limit = min(max_output_tokens, limit)
    kwargs = {params.token_param: limit}
    if params.temperature is not None:
        kwargs["temperature"] = params.temperature
    return kwargs


def render_block(block: ContentBlock, vision: bool) -> Dict:
    """Render one block in chat-completions wire format."""
    parts = list(block.parts)
    if not vision and block.has_attachment:
        logging.warning("Dropping attachment parts for a revision without image input")
        parts = [p for p in parts if not isinstance(p, AttachmentPart)]

    if len(parts) == 1 and isinstance(parts[0], TextPart):
        return {"role": block.role, "content": parts[0].text}

    content = []
    for part in parts:
        if isinstance(part, AttachmentPart):
            content.append({"type": "image_url", "image_url": {"url": part.reference}})
        else:
            content.append({"type": "text", "text": part.text})
    return {"role": block.role, "content": content}


def models_catalogue() -> List[Dict]:
    return [
        {"id": model_id, "name": entry.name, "revision": entry.revision, "vision": REVISIONS[entry.revision].vision}
        for model_id, entry in MODELS.items()
    ]


def make_groq_client(api_key: Optional[str], timeout: float = 60) -> Groq:
    # max_retries=0: rate limits and outages go straight back to the caller
    return Groq(api_key=api_key, timeout=timeout, max_retries=0)


class GenerationClient:
    def __init__(self, client, default_revision: str = DEFAULT_REVISION):
        if default_revision not in REVISIONS:
            raise ValueError(f"Default revision {default_revision} has no parameter entry")
        self.client = client
        self.default_revision = default_revision

    def resolve(self, model_id: Optional[str]) -> str:
        return resolve_revision(model_id, self.default_revision)

    def complete(
        self,
        blocks: Sequence[ContentBlock],
        model_id: Optional[str],
        max_output_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
    ) -> Completion:
        revision = self.resolve(model_id)
        vision = REVISIONS[revision].vision

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.extend(render_block(b, vision) for b in blocks)

        logging.info(f"Generating with {revision} ({len(messages)} messages)")
        try:
            response = self.client.chat.completions.create(
                model=revision,
                messages=messages,
                **invocation_params(revision, max_output_tokens),
            )
        except (groq.AuthenticationError, groq.PermissionDeniedError) as e:
            logging.error(f"Backend rejected credentials: {e}")
            raise BackendAuthError("Invalid API key. Please check the backend key configuration.") from e
        except groq.RateLimitError as e:
            logging.error(f"Backend rate limit hit: {e}")
            raise BackendRateLimited("Rate limit exceeded. Please try again later.") from e
        except (groq.InternalServerError, groq.APIConnectionError) as e:
            logging.error(f"Backend unavailable: {e}")
            raise BackendUnavailable("Generation backend unavailable. Please try again later.") from e
        except groq.APIStatusError as e:
            logging.error(f"Backend error {e.status_code}: {e}")
            if e.status_code >= 500:
                raise BackendUnavailable("Generation backend unavailable. Please try again later.") from e
            raise BackendUnknown(f"Failed to generate response: {e}") from e
        except Exception as e:
            logging.exception("Unexpected generation error")
            raise BackendUnknown(f"Failed to generate response: {e}") from e

        choices = response.choices or []
        text = (choices[0].message.content if choices else None) or ""
        return Completion(text=text, revision=revision)
