"""Dispatch of orchestration actions (syncData, testConnection, listTables, getColumnMappings)."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from ..core.glide_client import GlideApiError, GlideClient
from ..core.models import GlConnection
from ..database.supabase_client import SupabaseClient
from ..database.sync_service import GlideSyncService, SyncInProgressError

logger = logging.getLogger(__name__)

ActionResult = Tuple[int, Dict[str, Any]]

__all__ = ["ActionDispatcher", "ActionResult"]


class ActionDispatcher:
    """Routes an action payload to the Glide client or the sync service."""

    def __init__(
        self,
        supabase: SupabaseClient,
        client_factory: Optional[Callable[[GlConnection], GlideClient]] = None,
        sync_service: Optional[GlideSyncService] = None,
    ) -> None:
        self.supabase = supabase
        self.client_factory = client_factory or GlideClient.from_connection
        self.sync_service = sync_service or GlideSyncService(self.supabase, self.client_factory)
        self._handlers = {
            "syncData": self._sync_data,
            "testConnection": self._test_connection,
            "listTables": self._list_tables,
            "getColumnMappings": self._get_column_mappings,
        }

    async def dispatch(self, payload: Dict[str, Any]) -> ActionResult:
        if not isinstance(payload, dict):
            return 400, {"error": "Request body must be a JSON object"}

        action = payload.get("action")
        if not action:
            return 400, {"error": "Action is required"}
        handler = self._handlers.get(action)
        if handler is None:
            return 400, {"error": f"Unknown action: {action}"}

        connection_id = payload.get("connectionId")
        if not connection_id:
            return 400, {"error": "connectionId is required"}

        try:
            connection = self.supabase.get_connection(connection_id)
            if connection is None:
                return 404, {"error": f"Connection {connection_id} not found"}

            logger.info("Dispatching %s for connection %s", action, connection_id)
            return await handler(connection, payload)
        except Exception as exc:
            logger.exception("Action %s for connection %s failed", action, connection_id)
            return 500, {"success": False, "error": str(exc)}

    async def _sync_data(self, connection: GlConnection, payload: Dict[str, Any]) -> ActionResult:
        mapping_id = payload.get("mappingId")
        if not mapping_id:
            return 400, {"error": "mappingId is required for syncData"}
        if self.supabase.get_mapping(mapping_id) is None:
            return 404, {"error": f"Mapping {mapping_id} not found"}

        try:
            result = await self.sync_service.sync_mapping(connection.id, mapping_id)
        except SyncInProgressError as exc:
            return 409, {"success": False, "error": str(exc)}

        return (200 if result.success else 500), result.to_response()

    async def _test_connection(self, connection: GlConnection, payload: Dict[str, Any]) -> ActionResult:
        try:
            self.client_factory(connection).test_connection()
        except (GlideApiError, ValueError) as exc:
            self.supabase.set_connection_status(connection.id, "error")
            details = exc.details() if isinstance(exc, GlideApiError) else None
            body: Dict[str, Any] = {"error": str(exc)}
            if details:
                body["details"] = details
            return 502, body

        self.supabase.set_connection_status(connection.id, "active")
        return 200, {"success": True}

    async def _list_tables(self, connection: GlConnection, payload: Dict[str, Any]) -> ActionResult:
        try:
            tables = self.client_factory(connection).list_tables()
        except GlideApiError as exc:
            return 502, {"error": str(exc)}
        return 200, {"tables": tables}

    async def _get_column_mappings(self, connection: GlConnection, payload: Dict[str, Any]) -> ActionResult:
        table_id = payload.get("tableId")
        if not table_id:
            return 400, {"error": "tableId is required for getColumnMappings"}
        try:
            columns = self.client_factory(connection).get_table_columns(table_id)
        except GlideApiError as exc:
            return 502, {"error": str(exc)}
        return 200, {"columns": columns}
