# offers/services/notifier.py
import uuid
from typing import Dict, Protocol

from utils.logger import logger


class Notifier(Protocol):
    """
    Outbound messaging transport.
    - send: raises on failure, returns an opaque handle
    - delete: best effort, False (or an exception) on failure
    - is_ready: transport connectivity, read-only for the engine
    """

    async def send(self, text: str) -> str: ...

    async def delete(self, handle: str) -> bool: ...

    def is_ready(self) -> bool: ...


class LogNotifier:
    """Writes notifications to the log instead of a chat group (dry runs, mock mode)."""

    def __init__(self, ready: bool = True) -> None:
        self.ready = ready
        self.messages: Dict[str, str] = {}

    def is_ready(self) -> bool:
        return self.ready

    async def send(self, text: str) -> str:
        handle = f"log-{uuid.uuid4().hex[:16]}"
        self.messages[handle] = text
        logger.info(f"[notify] {handle}\n{text}")
        return handle

    async def delete(self, handle: str) -> bool:
        if self.messages.pop(handle, None) is None:
            logger.warning(f"[notify] delete {handle}: unknown handle")
            return False
        logger.info(f"[notify] deleted {handle}")
        return True
