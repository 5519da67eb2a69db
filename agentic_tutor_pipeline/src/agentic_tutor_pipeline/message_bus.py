"""
Agent Message Bus

Append-only trail of inter-stage messages stored in agent_communications.
There is no consumer: the trail is for auditing and future adaptive
signaling. Publishing is best-effort and never fails the calling stage.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from agentic_tutor_pipeline.models import MESSAGES_TABLE, MESSAGE_TYPES, AgentMessage

logger = logging.getLogger(__name__)


@dataclass
class OutgoingMessage:
    """A message waiting to be published."""
    session_id: str
    from_agent: str
    to_agent: str
    message_type: str
    payload: Dict[str, Any] = field(default_factory=dict)


class AgentMessageBus:
    """Publishes AgentMessage records through the store."""

    def __init__(self, store):
        self.store = store

    async def publish(
        self,
        session_id: str,
        from_agent: str,
        to_agent: str,
        message_type: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[AgentMessage]:
        """
        Append one message with status "sent".

        Returns:
            The stored AgentMessage, or None if the type is unknown or the write failed
        """
        if message_type not in MESSAGE_TYPES:
            logger.warning(f"⚠️ [MessageBus] Unknown message type {message_type!r} from {from_agent}, not recorded")
            return None

        record = {
            "session_id": session_id,
            "from_agent": from_agent,
            "to_agent": to_agent,
            "message_type": message_type,
            "payload": payload or {},
            "status": "sent",
        }
        try:
            rows = await self.store.insert(MESSAGES_TABLE, record)
        except Exception as e:
            logger.warning(
                f"⚠️ [MessageBus] {message_type} {from_agent} -> {to_agent} not recorded: {e}"
            )
            return None

        logger.debug(f"[MessageBus] {message_type} {from_agent} -> {to_agent}")
        return AgentMessage.from_row(rows[0])

    async def publish_all(self, messages: Iterable[OutgoingMessage]) -> List[Optional[AgentMessage]]:
        """Publish several messages concurrently; order between them is not kept."""
        return list(await asyncio.gather(*[
            self.publish(
                message.session_id,
                message.from_agent,
                message.to_agent,
                message.message_type,
                message.payload,
            )
            for message in messages
        ]))

    async def history(self, session_id: str) -> List[AgentMessage]:
        """Every message recorded for a session, oldest first."""
        rows = await self.store.select(
            MESSAGES_TABLE,
            filters={"session_id": session_id},
            order_by="created_at",
        )
        return [AgentMessage.from_row(row) for row in rows]
