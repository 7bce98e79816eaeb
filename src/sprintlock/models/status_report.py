"""
Status report model for sprintlock.

Workers emit status reports at the heartbeat interval and on every state
transition; the coordinator is the only consumer.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field


class StatusReport(BaseModel):
    """Message from a worker to the coordinator."""

    task_id: str
    state: Literal["running", "succeeded", "failed"]
    progress_percent: int = Field(default=0, ge=0, le=100)
    message: str = ""
    session_id: Optional[str] = None
