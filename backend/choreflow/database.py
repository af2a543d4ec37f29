"""Document store collaborator and its Supabase implementation"""
import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from supabase import create_client, Client

from choreflow.config import settings
from choreflow.utils.monitoring import StructuredLogger

# Lazy initialization - client will be created on first access
_supabase_client: Optional[Client] = None


class DocumentStoreError(Exception):
    """Raised when the document store cannot be reached or rejects a call"""
    pass


class DocumentStore(ABC):
    """Narrow async interface to the family/task/user document store.

    Records are plain dicts with an ``id`` key. ``query`` takes equality
    filters only; range filtering is done by callers on the returned records.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def query(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def add(self, collection: str, record: Dict[str, Any]) -> str:
        pass

    @abstractmethod
    async def update(self, collection: str, doc_id: str, patch: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def set(self, collection: str, doc_id: str, record: Dict[str, Any]) -> None:
        """Create or replace a record under a known id"""
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        pass


def _validate_supabase_config():
    """Validate that Supabase configuration is present"""
    errors = []

    if not settings.SUPABASE_URL.startswith(("http://", "https://")):
        errors.append("SUPABASE_URL")

    if len(settings.SUPABASE_SERVICE_ROLE_KEY) < 20:
        errors.append("SUPABASE_SERVICE_ROLE_KEY")

    if errors:
        raise ValueError(
            "Supabase configuration is incomplete. The following environment variables need to be configured:\n"
            f"  - {', '.join(errors)}"
        )


def get_supabase_client() -> Client:
    """Get or create the Supabase service role client"""
    global _supabase_client
    if _supabase_client is None:
        _validate_supabase_config()
        _supabase_client = create_client(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_ROLE_KEY
        )
    return _supabase_client


class SupabaseDocumentStore(DocumentStore):
    """DocumentStore backed by Supabase tables (one table per collection)"""

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    async def _execute(self, builder, operation: str, collection: str):
        try:
            return await asyncio.to_thread(builder.execute)
        except Exception as e:
            StructuredLogger.log_error(
                e,
                context={"function": f"SupabaseDocumentStore.{operation}", "collection": collection},
            )
            raise DocumentStoreError(f"{operation} on {collection} failed: {str(e)}") from e

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        response = await self._execute(
            self.client.table(collection).select("*").eq("id", doc_id).limit(1),
            "get",
            collection,
        )
        return response.data[0] if response.data else None

    async def query(self, collection: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        builder = self.client.table(collection).select("*")
        for column, value in (filters or {}).items():
            if value is None:
                builder = builder.is_(column, "null")
            else:
                builder = builder.eq(column, value)
        response = await self._execute(builder, "query", collection)
        return list(response.data or [])

    async def add(self, collection: str, record: Dict[str, Any]) -> str:
        data = dict(record)
        data.setdefault("id", str(uuid.uuid4()))
        response = await self._execute(self.client.table(collection).insert(data), "add", collection)
        if not response.data:
            raise DocumentStoreError(f"add on {collection} returned no rows")
        return str(response.data[0]["id"])

    async def update(self, collection: str, doc_id: str, patch: Dict[str, Any]) -> None:
        await self._execute(
            self.client.table(collection).update(patch).eq("id", doc_id),
            "update",
            collection,
        )

    async def set(self, collection: str, doc_id: str, record: Dict[str, Any]) -> None:
        await self._execute(
            self.client.table(collection).upsert({**record, "id": doc_id}),
            "set",
            collection,
        )

    async def delete(self, collection: str, doc_id: str) -> None:
        await self._execute(
            self.client.table(collection).delete().eq("id", doc_id),
            "delete",
            collection,
        )
