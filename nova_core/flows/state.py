"""State definition for the send graph."""

from __future__ import annotations

import threading
from typing import Optional, TypedDict


class SendState(TypedDict, total=False):
    """State shared across send graph nodes."""

    trace_id: str
    chat_id: str
    text: str
    model: str
    reply: Optional[str]
    error: Optional[Exception]
    writes_at_append: int
    cancel_event: Optional[threading.Event]
