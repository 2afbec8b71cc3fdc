"""
Tenant record persistence.

The lifecycle manager only talks to the abstract TenantStore. Production uses
MongoTenantStore on motor; every owner-scoped operation filters on owner_id so
a caller can never read or modify another identity's tenant.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument

from tenant_stack.models.tenant import TenantRecord, utcnow
from tenant_stack.utils.logging import get_logger

logger = get_logger(__name__, prefix="Store")


class TenantStore(ABC):
    """Storage operations the lifecycle manager needs."""

    async def initialize(self) -> None:
        """Prepare the backing store (indexes etc.)."""

    @abstractmethod
    async def create(self, record: TenantRecord) -> TenantRecord:
        ...

    @abstractmethod
    async def get(self, tenant_id: str, owner_id: str) -> Optional[TenantRecord]:
        """Fetch a tenant only if it belongs to owner_id."""

    @abstractmethod
    async def list_for_owner(self, owner_id: str) -> List[TenantRecord]:
        ...

    @abstractmethod
    async def update(self, tenant_id: str, owner_id: str, **fields: Any) -> Optional[TenantRecord]:
        """Set fields (and updated_at) on an owned tenant; None if not found."""

    @abstractmethod
    async def delete(self, tenant_id: str, owner_id: str) -> bool:
        ...


class MongoTenantStore(TenantStore):
    """Tenant records in the ``tenants`` collection."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.collection = db.tenants

    async def initialize(self) -> None:
        await self.collection.create_index("tenant_id", unique=True)
        await self.collection.create_index("owner_id")
        logger.info("MongoTenantStore initialized")

    @staticmethod
    def _to_doc(record: TenantRecord) -> Dict[str, Any]:
        doc = record.model_dump(mode="python")
        doc["tenant_id"] = doc.pop("id")
        doc["status"] = record.status.value
        return doc

    @staticmethod
    def _from_doc(doc: Dict[str, Any]) -> TenantRecord:
        doc = dict(doc)
        doc.pop("_id", None)
        doc["id"] = doc.pop("tenant_id")
        return TenantRecord(**doc)

    async def create(self, record: TenantRecord) -> TenantRecord:
        await self.collection.insert_one(self._to_doc(record))
        logger.info(f"Stored tenant {record.id} ({record.name})")
        return record

    async def get(self, tenant_id: str, owner_id: str) -> Optional[TenantRecord]:
        doc = await self.collection.find_one({"tenant_id": tenant_id, "owner_id": owner_id})
        return self._from_doc(doc) if doc else None

    async def list_for_owner(self, owner_id: str) -> List[TenantRecord]:
        records = []
        async for doc in self.collection.find({"owner_id": owner_id}).sort("created_at", 1):
            records.append(self._from_doc(doc))
        return records

    async def update(self, tenant_id: str, owner_id: str, **fields: Any) -> Optional[TenantRecord]:
        fields = {key: value.value if isinstance(value, Enum) else value for key, value in fields.items()}
        fields["updated_at"] = utcnow()
        doc = await self.collection.find_one_and_update(
            {"tenant_id": tenant_id, "owner_id": owner_id},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        return self._from_doc(doc) if doc else None

    async def delete(self, tenant_id: str, owner_id: str) -> bool:
        result = await self.collection.delete_one({"tenant_id": tenant_id, "owner_id": owner_id})
        return result.deleted_count > 0
