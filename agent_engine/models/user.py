"""Acting user passed to collaborators."""

import uuid
from typing import Optional

from pydantic import BaseModel, Field


class AgentUser(BaseModel):
    """The user on whose behalf the engine acts."""

    id: uuid.UUID = Field(..., description="Owner id stored on tasks")
    email: Optional[str] = Field(default=None, description="User's own mailbox address")
    display_name: Optional[str] = Field(default=None, description="Name used in drafted mail")


__all__ = ["AgentUser"]
