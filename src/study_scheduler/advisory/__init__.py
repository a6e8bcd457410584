"""Advisory reasoning service: OpenAI client, prompts and reply schemas."""

from .client import AdvisoryClient
from .schemas import (
    AdvisoryAssignment,
    Adjustment,
    parse_assignment_reply,
    parse_rebalance_reply,
)

__all__ = [
    "AdvisoryClient",
    "AdvisoryAssignment",
    "Adjustment",
    "parse_assignment_reply",
    "parse_rebalance_reply",
]
