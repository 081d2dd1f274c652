"""Collaborators handed to built-in tools at registration time."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from gym_agents.ai.handoff import HandoffService
    from gym_agents.services.delivery import DeliveryService
    from gym_agents.services.members import MemberDirectory
    from gym_agents.storage.conversation_repo import ConversationRepository
    from gym_agents.storage.memory_repo import MemoryRepository
    from gym_agents.storage.outbound_repo import TaskRepository


@dataclass
class ToolServices:
    members: MemberDirectory
    conversations: ConversationRepository
    delivery: DeliveryService
    tasks: TaskRepository
    memories: MemoryRepository
    handoff_starter: HandoffService
