"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from typing import Optional

from gym_agents.ai.approvals import ApprovalService
from gym_agents.ai.client import AIClient, AnthropicClient
from gym_agents.ai.handler import InboundHandler
from gym_agents.ai.handoff import HandoffService
from gym_agents.ai.runtime import RuntimeDeps
from gym_agents.ai.tools.registry import ToolRegistry
from gym_agents.ai.tools.services import ToolServices
from gym_agents.config import AppConfig
from gym_agents.core.approval import ApprovalGate
from gym_agents.core.roles import RoleCatalog
from gym_agents.core.router import ChannelRouter
from gym_agents.core.session import SessionManager
from gym_agents.log import get_logger
from gym_agents.services.delivery import DeliveryProvider, DeliveryService
from gym_agents.services.members import InMemoryMemberDirectory, MemberDirectory
from gym_agents.services.scheduler import SchedulerService
from gym_agents.services.supervisor import TaskSupervisor
from gym_agents.storage.approval_repo import ApprovalRepository
from gym_agents.storage.conversation_repo import ConversationRepository
from gym_agents.storage.database import Database
from gym_agents.storage.memory_repo import MemoryRepository
from gym_agents.storage.outbound_repo import OutboundRepository, TaskRepository
from gym_agents.storage.session_repo import SessionRepository

logger = get_logger(__name__)


class GymAgentsApp:
    """Top-level application orchestrator."""

    def __init__(
        self,
        config: AppConfig,
        ai_client: Optional[AIClient] = None,
        members: Optional[MemberDirectory] = None,
        delivery_provider: Optional[DeliveryProvider] = None,
    ):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.sessions = SessionRepository(self.db)
        self.conversations = ConversationRepository(self.db)
        self.approvals = ApprovalRepository(self.db)
        self.memories = MemoryRepository(self.db)
        self.outbound = OutboundRepository(self.db)
        self.tasks = TaskRepository(self.db)

        self.supervisor = TaskSupervisor()
        self.roles = RoleCatalog(config.roles, config.runtime)
        self.members = members or self._create_member_directory()
        self.delivery = DeliveryService(config.delivery, self.outbound, provider=delivery_provider)
        self.tool_registry = ToolRegistry(tool_timeout=config.runtime.tool_timeout_seconds)

        self.session_manager = SessionManager(
            RuntimeDeps(
                client=ai_client or self._create_ai_client(),
                registry=self.tool_registry,
                sessions=self.sessions,
                approvals=self.approvals,
                conversations=self.conversations,
                roles=self.roles,
                runtime=config.runtime,
                pricing=config.pricing,
                memories=self.memories,
                gate=ApprovalGate(config.runtime.approval_confidence_threshold),
            ),
            self.supervisor,
        )
        self.handoff = HandoffService(self.session_manager, self.conversations, config.handoff)
        self.approval_service = ApprovalService(self.session_manager, self.approvals)
        self.router = ChannelRouter(self.conversations, config.routing)
        self.inbound = InboundHandler(self.router, self.session_manager, self.conversations, config.routing)
        self.scheduler = SchedulerService(config.schedules, self.session_manager, timezone=config.timezone)

        self.tool_registry.discover_and_register(
            ToolServices(
                members=self.members,
                conversations=self.conversations,
                delivery=self.delivery,
                tasks=self.tasks,
                memories=self.memories,
                handoff_starter=self.handoff,
            )
        )

    async def initialize(self) -> None:
        """Open storage. Enough for one-shot CLI commands."""
        await self.db.initialize()

    async def start(self) -> None:
        """Initialize storage and start background services."""
        await self.initialize()
        await self.scheduler.start()
        logger.info(
            "gym_agents_started",
            tools=len(self.tool_registry.all_tools()),
            roles=[r.id for r in self.roles.all()],
            schedules=len(self.config.schedules),
        )

    async def stop(self) -> None:
        """Gracefully shut down: stop scheduling, settle sessions, close storage."""
        await self.scheduler.stop()
        await self.supervisor.shutdown()
        await self.db.close()
        logger.info("gym_agents_stopped")

    def _create_ai_client(self) -> AIClient:
        if not self.config.anthropic:
            raise ValueError("No 'anthropic' section in config")
        return AnthropicClient(self.config.anthropic, self.config.model)

    def _create_member_directory(self) -> MemberDirectory:
        if self.config.members_file:
            return InMemoryMemberDirectory.from_yaml(self.config.members_file)
        logger.warning("member_directory_empty", hint="set members_file to seed member data")
        return InMemoryMemberDirectory()
