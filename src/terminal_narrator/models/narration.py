"""
Narration Output Schema
=======================

The flush event emitted by the change accumulator and handed to the
narration collaborator.

Output Contract:
    {
        "text": "$ make test\\n12 passed",
        "char_count": 19,
        "line_count": 2,
        "reason": "size",
        "truncated": false,
        "created_at": 1707321234.567
    }
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class FlushReason(str, Enum):
    """
    Why a batch of changes was flushed.

    Attributes:
        SIZE: Pending changed characters reached the char threshold
        TIME: Oldest pending change reached the time threshold
        FORCED: Drained explicitly (pipeline shutdown)
    """

    SIZE = "size"
    TIME = "time"
    FORCED = "forced"


class FlushEvent(BaseModel):
    """
    One narration-sized text delta.

    Attributes:
        text: Changed lines in original order, newline-joined, bounded in size
        char_count: Changed characters accumulated for this batch
        line_count: Number of changed lines in the batch
        reason: Which threshold fired
        truncated: True if the oldest content was dropped to fit
        created_at: Wall-clock time of the flush
    """

    model_config = ConfigDict(frozen=True)

    text: str = Field(..., description="Changed text to narrate")
    char_count: int = Field(..., ge=0, description="Changed characters in the batch")
    line_count: int = Field(..., ge=0, description="Changed lines in the batch")
    reason: FlushReason = Field(..., description="Threshold that triggered the flush")
    truncated: bool = Field(default=False, description="Oldest content was dropped")
    created_at: float = Field(..., description="UNIX timestamp of the flush")
