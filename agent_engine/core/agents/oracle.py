"""Single entry point for reasoning oracle calls."""

import logging

from agent_engine.core.exceptions import ReasoningError
from agent_engine.models.user import AgentUser

logger = logging.getLogger(__name__)


async def ask_oracle(
    oracle, user: AgentUser, prompt: str, tools_enabled: bool = False
) -> str:
    """Call ``oracle.complete`` and surface every failure as ReasoningError.

    Args:
        oracle: Reasoning oracle with ``complete(user, prompt, tools_enabled)``
        user: Acting user
        prompt: Prompt text
        tools_enabled: Whether the model may call tools

    Returns:
        Response text

    Raises:
        ReasoningError: If the oracle raised anything
    """
    try:
        return await oracle.complete(user, prompt, tools_enabled=tools_enabled)
    except ReasoningError:
        raise
    except Exception as e:
        logger.exception("Reasoning oracle raised %s", type(e).__name__)
        raise ReasoningError(str(e) or type(e).__name__) from e


__all__ = ["ask_oracle"]
