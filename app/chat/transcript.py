"""In-memory conversation transcript with streamed-output reassembly.

Each entry is either COMPLETE or STREAMING. At most one entry streams at a
time; it is closed out explicitly by a user message, a whole
``assistant_message``, or a delta carrying a different message id.
"""
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, List, Optional

logger = logging.getLogger(__name__)


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class EntryState(str, Enum):
    COMPLETE = "complete"
    STREAMING = "streaming"


@dataclass
class TranscriptEntry:
    """One message in the transcript."""
    id: str
    role: Role
    content: str
    state: EntryState = EntryState.COMPLETE

    @property
    def is_streaming(self) -> bool:
        return self.state is EntryState.STREAMING

    def to_dict(self) -> dict:
        return {"id": self.id, "role": self.role.value, "content": self.content}


class Transcript:
    """Ordered list of user and assistant messages for one session."""

    def __init__(self) -> None:
        self._entries: List[TranscriptEntry] = []
        self._streaming: Optional[TranscriptEntry] = None
        self._ids = itertools.count(1)

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TranscriptEntry]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> TranscriptEntry:
        return self._entries[index]

    @property
    def entries(self) -> List[TranscriptEntry]:
        return list(self._entries)

    @property
    def streaming_entry(self) -> Optional[TranscriptEntry]:
        return self._streaming

    def _local_id(self, prefix: str) -> str:
        return f"{prefix}-{next(self._ids)}"

    def close_stream(self) -> None:
        """Mark the open streaming entry (if any) complete."""
        if self._streaming is not None:
            self._streaming.state = EntryState.COMPLETE
            self._streaming = None

    def add_user_message(self, text: str) -> TranscriptEntry:
        self.close_stream()
        entry = TranscriptEntry(id=self._local_id("user"), role=Role.USER, content=text)
        self._entries.append(entry)
        return entry

    def apply_delta(self, delta: str, message_id: Optional[str] = None) -> TranscriptEntry:
        """Append a streamed fragment.

        Continues the open stream when the ids match or the delta has no
        id; otherwise starts a new streaming entry.
        """
        current = self._streaming
        if current is not None and (message_id is None or message_id == current.id):
            if message_id is None:
                logger.debug(f"Delta without messageId continues stream {current.id}")
            current.content += delta
            return current

        self.close_stream()
        entry = TranscriptEntry(
            id=message_id or self._local_id("msg"),
            role=Role.ASSISTANT,
            content=delta,
            state=EntryState.STREAMING,
        )
        self._entries.append(entry)
        self._streaming = entry
        return entry

    def add_assistant_message(self, text: str, message_id: Optional[str] = None) -> TranscriptEntry:
        """Append a whole assistant message, regardless of prior deltas."""
        self.close_stream()
        entry = TranscriptEntry(
            id=message_id or self._local_id("msg"),
            role=Role.ASSISTANT,
            content=text,
        )
        self._entries.append(entry)
        return entry
