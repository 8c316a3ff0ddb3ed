"""
Chat support: one streamed assistant reply per session.
"""

from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional

from codelens.constants import CHAT_SYSTEM_PROMPT
from codelens.gateway import GatewayClient, Message


def chat_messages_payload(history: Iterable[Dict[str, Any]], new_message: str) -> List[Message]:
    """Build the role-tagged message list for the gateway, system prompt first."""
    messages: List[Message] = [{"role": "system", "content": CHAT_SYSTEM_PROMPT}]
    messages.extend({"role": m["role"], "content": m["content"]} for m in history)
    messages.append({"role": "user", "content": new_message})
    return messages


class ChatSession:
    """
    Owns the accumulation buffer for a single streamed reply.

    ``content`` is only mutated by the task iterating ``run``; every
    snapshot handed to ``on_snapshot`` is an immutable string.
    """

    def __init__(self, gateway: GatewayClient, messages: List[Message]):
        self._gateway = gateway
        self._messages = messages
        self.content = ""
        self.completed = False

    async def run(self, on_snapshot: Optional[Callable[[str], None]] = None) -> AsyncIterator[str]:
        async for delta in self._gateway.stream(self._messages):
            self.content += delta
            if on_snapshot is not None:
                on_snapshot(self.content)
            yield delta
        self.completed = True
