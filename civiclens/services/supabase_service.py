import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from supabase import Client, create_client

from civiclens.core.config import Settings

logger = logging.getLogger(__name__)

ISSUES_TABLE = "issues"
ISSUE_LOGS_TABLE = "issue_logs"
PROFILES_TABLE = "profiles"


class SupabaseService:
    """
    Gateway to Supabase Auth and the PostgREST tables used by the backend.

    Two clients are held:
    - ``client`` uses the anon key and only verifies access tokens
    - ``admin_client`` uses the service-role key (bypasses RLS) for table
      access and admin auth operations

    The SDK is synchronous, so every network call runs in a worker thread.
    """

    def __init__(
        self,
        settings: Settings,
        client: Optional[Client] = None,
        admin_client: Optional[Client] = None,
    ):
        self.settings = settings
        self.client = client
        self.admin_client = admin_client
        self._pending_tasks: Set[asyncio.Task] = set()

        if self.client is None and settings.supabase_url and settings.supabase_anon_key:
            self.client = create_client(settings.supabase_url, settings.supabase_anon_key)
        if (
            self.admin_client is None
            and settings.supabase_url
            and settings.supabase_service_role_key
        ):
            self.admin_client = create_client(
                settings.supabase_url, settings.supabase_service_role_key
            )

        if self.client is None:
            logger.critical("❌ Missing Supabase environment variables (URL or anon key)")
        if self.admin_client is None:
            logger.critical("❌ Missing SUPABASE_SERVICE_ROLE_KEY. Admin operations will fail!")

    def _require(self, client: Optional[Client], name: str) -> Client:
        if client is None:
            raise RuntimeError(f"Supabase {name} client is not configured")
        return client

    @property
    def _admin(self) -> Client:
        return self._require(self.admin_client, "admin")

    async def _execute(self, query) -> List[Dict[str, Any]]:
        response = await asyncio.to_thread(query.execute)
        return response.data or []

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def get_user(self, token: str) -> Optional[Dict[str, Any]]:
        """Verify an access token; raises the SDK's auth error when it is rejected."""
        client = self._require(self.client, "anon")
        response = await asyncio.to_thread(client.auth.get_user, token)
        if response is None or response.user is None:
            return None
        return response.user.model_dump()

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._execute(
            self._admin.table(PROFILES_TABLE).select("*").eq("id", user_id).limit(1)
        )
        return rows[0] if rows else None

    async def update_user_metadata(self, user_id: str, metadata: Dict[str, Any]) -> None:
        admin = self._admin
        await asyncio.to_thread(
            admin.auth.admin.update_user_by_id, user_id, {"user_metadata": metadata}
        )

    def schedule_metadata_sync(self, user_id: str, metadata: Dict[str, Any]) -> asyncio.Task:
        """Start a detached metadata write. Callers never await the returned task."""
        task = asyncio.create_task(self.update_user_metadata(user_id, metadata))
        self._pending_tasks.add(task)
        task.add_done_callback(self._finish_metadata_sync)
        return task

    def _finish_metadata_sync(self, task: asyncio.Task) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.debug(f"Metadata sync failed (ignored): {exc}")

    async def wait_for_pending(self) -> None:
        """Drain detached tasks, used on shutdown."""
        if self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    async def insert_issue(self, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self._execute(self._admin.table(ISSUES_TABLE).insert(data))

    async def list_issues(
        self, citizen_id: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        query = self._admin.table(ISSUES_TABLE).select("*")
        if citizen_id is not None:
            query = query.eq("citizen_id", citizen_id)
        query = query.order("created_at", desc=True)
        if limit is not None:
            query = query.limit(limit)
        return await self._execute(query)

    async def get_issue(self, issue_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._execute(
            self._admin.table(ISSUES_TABLE).select("*").eq("id", issue_id)
        )
        return rows[0] if rows else None

    async def update_issue(self, issue_id: str, data: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self._execute(
            self._admin.table(ISSUES_TABLE).update(data).eq("id", issue_id)
        )

    async def delete_issue(self, issue_id: str) -> None:
        await self._execute(self._admin.table(ISSUES_TABLE).delete().eq("id", issue_id))

    async def delete_issues(self, issue_ids: List[str]) -> None:
        await self._execute(self._admin.table(ISSUES_TABLE).delete().in_("id", issue_ids))

    async def insert_issue_log(self, entry: Dict[str, Any]) -> None:
        await self._execute(self._admin.table(ISSUE_LOGS_TABLE).insert(entry))
