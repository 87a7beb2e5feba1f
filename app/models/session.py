import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class Session:
    session_id: str
    pin: str
    name: str
    client: Any
    closed: bool = False
    created_at: float = field(default_factory=time.time)


def make_session_id(pin: str, name: str, now: float | None = None) -> str:
    stamp = int((now if now is not None else time.time()) * 1000)
    return f"{pin}-{name}-{stamp}"
