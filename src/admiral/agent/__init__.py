"""
Agent module - the runtime that plays the game.

Includes:
- Agent: One profile's connection, conversation and turn loop
- AgentManager: Process-wide registry of live agents
- Turn loop with retrying model calls and bounded tool rounds
- Compaction: Rolling summarization of old conversation turns
"""

from .cancellation import CancelToken
from .compaction import CompactionState, compact_context
from .context import ConversationContext
from .core import Agent
from .loop import LoopConfig, complete_with_retry, run_agent_turn
from .manager import AgentManager

__all__ = [
    "Agent",
    "AgentManager",
    "CancelToken",
    "CompactionState",
    "ConversationContext",
    "LoopConfig",
    "compact_context",
    "complete_with_retry",
    "run_agent_turn",
]
