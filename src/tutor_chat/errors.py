class ChatError(Exception):
    """Base class for errors that reject a chat operation."""


class ChatNotFoundError(ChatError):
    def __init__(self, chat_id: str):
        super().__init__(f"Chat not found: {chat_id}")
        self.chat_id = chat_id


class RateLimitExceededError(ChatError):
    def __init__(self, chat_id: str, limit: int):
        super().__init__(f"Rate limit exceeded: maximum {limit} messages per chat ({chat_id})")
        self.chat_id = chat_id
        self.limit = limit
