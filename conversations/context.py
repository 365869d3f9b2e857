"""
Turns stored turns into the role-tagged content blocks sent to the backend.

The whole conversation is presented, in stored order. Token budgets are the
generation adapter's business, not this module's.
"""

from dataclasses import dataclass
from typing import Iterable, List, Tuple, Union


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class AttachmentPart:
    reference: str


Part = Union[TextPart, AttachmentPart]


@dataclass(frozen=True)
class ContentBlock:
    role: str
    parts: Tuple[Part, ...]

    @property
    def has_attachment(self) -> bool:
        return any(isinstance(p, AttachmentPart) for p in self.parts)


def block_for(role: str, text: str, attachment: str = None) -> ContentBlock:
    if attachment:
        return ContentBlock(role=role, parts=(TextPart(text or ""), AttachmentPart(attachment)))
    return ContentBlock(role=role, parts=(TextPart(text or ""),))


def assemble(turns: Iterable) -> List[ContentBlock]:
    """Build one block per turn; a turn with an attachment becomes text + attachment."""
    return [block_for(turn.role, turn.content, turn.attachment) for turn in turns]
