"""Small wrappers around Opik to keep instrumentation consistent.

We keep these helpers best-effort and guarded behind Settings so observability
never breaks runtime logic when Opik is disabled or misconfigured.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from agent_engine.core.config import settings

logger = logging.getLogger(__name__)

_stored_prompts: set[str] = set()


def configure_opik() -> bool:
    """Configure the Opik client from Settings.

    Best-effort: returns False instead of raising.
    """
    if not settings.OPIK_ENABLED:
        return False
    try:
        import opik

        opik.configure(
            api_key=settings.OPIK_API_KEY,
            workspace=settings.OPIK_WORKSPACE,
            use_local=not settings.OPIK_API_KEY,
        )
    except Exception as e:
        logger.warning("Opik configuration failed: %s", e)
        return False
    return True


def store_prompt(
    *,
    name: str,
    prompt: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Store a prompt template in Opik using `opik.Prompt`.

    Each name is stored once per process. Best-effort: never raises.
    No-op when Opik is disabled.
    """
    if not settings.OPIK_ENABLED:
        return
    if not prompt or not isinstance(prompt, str):
        return
    if not name or not isinstance(name, str) or name in _stored_prompts:
        return

    try:
        import opik

        opik.Prompt(name=name, prompt=prompt, metadata=metadata or None)
        _stored_prompts.add(name)
    except Exception as e:
        # Avoid breaking core logic if Opik is unavailable.
        logger.debug("Could not store prompt %s in Opik: %s", name, e)
