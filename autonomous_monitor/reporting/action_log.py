"""Append-only audit trail of agent decisions and actions."""

from typing import Any, Dict, List, Optional

import structlog

from ..errors import StorageError
from ..models import AgentAction
from ..storage.base import Store


logger = structlog.get_logger(__name__)


class ActionLog:
    """Writes Agent Action rows; a failed write is logged and never interrupts the caller."""

    def __init__(self, store: Store, agent_id: str, agent_type: str = "monitoring_agent"):
        self.store = store
        self.agent_id = agent_id
        self.agent_type = agent_type

    async def record(
        self,
        action_type: str,
        description: str,
        success: Optional[bool],
        incident_id: Optional[str] = None,
        knowledge_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        agent_type: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Append one action row."""
        action = AgentAction(
            agent_id=self.agent_id,
            agent_type=agent_type or self.agent_type,
            action_type=action_type,
            description=description,
            success=success,
            incident_id=incident_id,
            knowledge_id=knowledge_id,
            action_details=details or {},
        )
        try:
            row = await self.store.insert("agent_actions", action.to_row())
        except StorageError as e:
            logger.error("Failed to record agent action",
                         action_type=action_type,
                         incident_id=incident_id,
                         error=str(e))
            return None

        logger.debug("Recorded agent action", action_type=action_type, success=success, incident_id=incident_id)
        return row

    async def list_actions(
        self,
        incident_id: Optional[str] = None,
        action_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """List actions, newest first."""
        where: Dict[str, Any] = {}
        if incident_id is not None:
            where["incident_id"] = incident_id
        if action_type is not None:
            where["action_type"] = action_type
        return await self.store.select(
            "agent_actions", where=where, order_by="timestamp", descending=True, limit=limit
        )
