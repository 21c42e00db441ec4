# chat_relay/services/connection_manager.py

from __future__ import annotations

from typing import Any, Dict, Optional, Set
import logging

logger = logging.getLogger(__name__)

# ============================================================================
# LOCAL CONNECTION HUB
# ============================================================================

class ConnectionManager:
    """
    Tracks the WebSocket connections held by THIS instance and the named
    groups they belong to.

    Nothing here is shared between instances: cross-instance reach goes
    through the event bus, and each instance then uses its own manager to
    push to its own sockets.

    Data Structures:
        groups: Maps group name -> Set of WebSocket connections in that group
                Example: {"room:0": {websocket1, websocket2}}

        connection_groups: Maps WebSocket -> Set of group names it joined
                           Example: {websocket1: {"room:0", "room:1:2"}}

        connection_users: Maps WebSocket -> user id, for authenticated
                          connections only. Presence notices go to these.

    Concurrency:
        All mutation is synchronous (no await between read and write), so
        tasks interleaving on one event loop need no lock.
    """

    def __init__(self) -> None:
        self.groups: Dict[str, Set[Any]] = {}
        self.connection_groups: Dict[Any, Set[str]] = {}
        self.connection_users: Dict[Any, str] = {}

    def register(self, websocket: Any, user_id: Optional[str] = None) -> None:
        """
        Start tracking an (already accepted) connection.

        Args:
            websocket: The WebSocket connection object
            user_id: Resolved user id, or None for an anonymous connection
        """
        self.connection_groups.setdefault(websocket, set())
        if user_id is not None:
            self.connection_users[websocket] = user_id

        logger.info(
            "✓ Connection registered (user=%s). Total: %d",
            user_id or "anonymous",
            len(self.connection_groups),
        )

    def unregister(self, websocket: Any) -> None:
        """
        Forget a connection and remove it from every group. Idempotent.
        """
        if websocket not in self.connection_groups:
            return

        for group in self.connection_groups[websocket]:
            members = self.groups.get(group)
            if members is None:
                continue
            members.discard(websocket)
            # Clean up empty groups from memory
            if not members:
                del self.groups[group]

        del self.connection_groups[websocket]
        user_id = self.connection_users.pop(websocket, None)

        logger.info(
            "✗ Connection unregistered (user=%s). Total: %d",
            user_id or "anonymous",
            len(self.connection_groups),
        )

    def is_registered(self, websocket: Any) -> bool:
        return websocket in self.connection_groups

    def join_group(self, websocket: Any, group: str) -> bool:
        """
        Add a connection to a group.

        Returns:
            True if the connection was newly added, False if it was already
            a member or is no longer registered.
        """
        if websocket not in self.connection_groups:
            return False  # Connection already closed

        members = self.groups.setdefault(group, set())
        if websocket in members:
            return False
        members.add(websocket)
        self.connection_groups[websocket].add(group)

        logger.info("→ %s joined %s (%d local members)",
                    self.connection_users.get(websocket, "anonymous"), group, len(members))
        return True

    def leave_group(self, websocket: Any, group: str) -> bool:
        if websocket not in self.connection_groups:
            return False

        if group not in self.connection_groups[websocket]:
            return False

        self.connection_groups[websocket].discard(group)
        members = self.groups.get(group)
        if members is not None:
            members.discard(websocket)
            if not members:
                del self.groups[group]
        return True

    def group_members(self, group: str) -> Set[Any]:
        return set(self.groups.get(group, set()))

    async def send_personal(self, websocket: Any, message: dict) -> bool:
        """
        Send a message to one connection.

        A failed send marks the connection as gone and unregisters it.
        """
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            logger.error(f"Send error: {e}")
            self.unregister(websocket)
            return False

    async def emit_to_group(self, group: str, message: dict, exclude: Any = None) -> int:
        """
        Deliver a message to every local connection in a group.

        Returns:
            Number of connections the message was delivered to.
        """
        if group not in self.groups:
            # No one here subscribed to this group currently
            logger.info("[routing] Skipped emit: %s has 0 local subscribers", group)
            return 0

        # Copy to avoid modification during iteration
        connections = [c for c in self.groups[group].copy() if c is not exclude]
        logger.info("📨 Emitting %s to %s: %d clients", message.get("type"), group, len(connections))
        return await self._send_all(connections, message)

    async def emit_to_authenticated(self, message: dict, exclude: Any = None) -> int:
        """
        Deliver a message to every local authenticated connection
        (the presence listeners).
        """
        connections = [c for c in list(self.connection_users) if c is not exclude]
        return await self._send_all(connections, message)

    async def _send_all(self, connections: list, message: dict) -> int:
        disconnected = set()
        delivered = 0

        for connection in connections:
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as e:
                logger.error(f"Send error: {e}")
                # Mark for cleanup
                disconnected.add(connection)

        # Clean up failed connections
        for conn in disconnected:
            self.unregister(conn)

        return delivered

    def get_groups_info(self) -> Dict[str, int]:
        """
        Local member count per group.

        Used by the /metrics endpoint and for debugging.
        """
        return {group: len(members) for group, members in self.groups.items()}
