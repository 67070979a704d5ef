from collections import deque
from typing import Any

Message = dict[str, Any]


class ConversationStore:
    """In-memory conversation history, keyed by conversation session id.

    Only the last `limit` messages of each conversation are kept.
    """

    def __init__(self, limit: int = 20) -> None:
        if limit <= 0:
            raise ValueError("limit must be positive")
        self.limit = limit
        self._conversations: dict[str, deque[Message]] = {}

    def __len__(self) -> int:
        return len(self._conversations)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._conversations

    def get(self, session_id: str) -> list[Message]:
        return list(self._conversations.get(session_id, ()))

    def append(self, session_id: str, *messages: Message) -> None:
        history = self._conversations.setdefault(session_id, deque(maxlen=self.limit))
        history.extend(messages)

    def clear(self, session_id: str) -> bool:
        return self._conversations.pop(session_id, None) is not None

    def clear_all(self) -> None:
        self._conversations.clear()
