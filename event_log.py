# event_log.py
import sys
from typing import Any, Dict, Optional


def short(x: Any, n: int = 6) -> str:
    if not x:
        return "None"
    x = str(x)
    return (x[:n] + "...") if len(x) > n else x


def log_event(tag: str, event: str, fields: Optional[Dict[str, Any]] = None) -> None:
    """
    One line per step, e.g. `[pay] build ok {'ixs': 2}`.
    Pass keys/signatures through short(); never log secrets or whole transactions.
    """
    if fields:
        print(f"[{tag}] {event}", fields, file=sys.stderr)
    else:
        print(f"[{tag}] {event}", file=sys.stderr)
