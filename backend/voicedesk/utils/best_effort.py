"""
Best-effort writes.

Some writes (message counters, persisting a session after the provider
already minted it) must never fail the user-facing operation. They are run
through best_effort(), which logs the failure and reports it as a separate
outcome instead of raising.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Optional

from voicedesk.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class BestEffortResult:
    """Outcome of a best-effort write, kept apart from the primary result."""
    label: str
    ok: bool
    value: Any = None
    error: Optional[str] = None


async def best_effort(label: str, operation: Awaitable) -> BestEffortResult:
    """Await an operation, logging instead of raising on failure."""
    try:
        value = await operation
        return BestEffortResult(label=label, ok=True, value=value)
    except Exception as e:
        logger.warning(f"Best-effort write '{label}' failed: {e}")
        return BestEffortResult(label=label, ok=False, error=str(e))
