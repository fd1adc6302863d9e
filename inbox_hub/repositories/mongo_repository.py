"""
MongoDB Repository Implementation
=================================

Motor-backed repositories. Uniqueness is enforced by the indexes created
in ``inbox_hub.database.mongodb``; DuplicateKeyError is translated into
DuplicateEntityError so services can re-read the winning row. Platform
access tokens are encrypted at rest when a TokenCipher key is configured.
"""

from datetime import datetime
from typing import Optional, List, Dict, Any

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ReturnDocument, ASCENDING, DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError
import structlog

from inbox_hub.models.entities import Platform, Customer, Conversation, Message
from inbox_hub.models.types import (
    PlatformType, ConversationStatus, DeliveryStatus, MessageDirection
)
from inbox_hub.repositories.base_repository import (
    PlatformRepository, CustomerRepository, ConversationRepository, MessageRepository,
    Repositories
)
from inbox_hub.repositories.exceptions import (
    RepositoryError, DuplicateEntityError, EntityNotFoundError
)
from inbox_hub.utils.date_utils import now_utc
from inbox_hub.utils.encryption import TokenCipher

HISTORY_SORT = [("occurred_at", ASCENDING), ("platform_message_id", ASCENDING), ("_id", ASCENDING)]


class MongoRepositoryBase:
    """Shared collection handle and logging helpers."""

    collection_name: str = ""

    def __init__(self, database: AsyncIOMotorDatabase):
        self.database = database
        self.collection = database[self.collection_name]
        self.logger = structlog.get_logger(self.__class__.__name__)

    def _log_operation(self, operation: str, **kwargs) -> None:
        self.logger.debug("Repository operation", operation=operation, collection=self.collection_name, **kwargs)

    def _wrap_error(self, operation: str, error: PyMongoError) -> RepositoryError:
        self.logger.error(
            "Repository operation failed",
            operation=operation,
            collection=self.collection_name,
            error=str(error)
        )
        return RepositoryError(f"{operation} failed: {error}", original_error=error)


class MongoPlatformRepository(MongoRepositoryBase, PlatformRepository):
    collection_name = "platforms"

    def __init__(self, database: AsyncIOMotorDatabase, cipher: Optional[TokenCipher] = None):
        super().__init__(database)
        self.cipher = cipher or TokenCipher()

    def _to_document(self, platform: Platform) -> Dict[str, Any]:
        document = platform.to_document()
        document["access_token"] = self.cipher.encrypt(platform.access_token)
        return document

    def _from_document(self, document: Optional[Dict[str, Any]]) -> Optional[Platform]:
        if document is None:
            return None
        data = dict(document)
        data["access_token"] = self.cipher.decrypt(data.get("access_token", ""))
        return Platform.from_document(data)

    async def get(self, platform_id: str) -> Optional[Platform]:
        try:
            return self._from_document(await self.collection.find_one({"_id": platform_id}))
        except PyMongoError as e:
            raise self._wrap_error("get_platform", e)

    async def find_active_by_external(self, platform_type: PlatformType, external_id: str) -> Optional[Platform]:
        try:
            document = await self.collection.find_one({
                "type": platform_type.value, "external_id": external_id, "is_active": True
            })
            return self._from_document(document)
        except PyMongoError as e:
            raise self._wrap_error("find_active_platform", e)

    async def find_by_tenant_external(self, tenant_id, platform_type, external_id):
        try:
            document = await self.collection.find_one(
                {"tenant_id": tenant_id, "type": platform_type.value, "external_id": external_id},
                sort=[("updated_at", DESCENDING)]
            )
            return self._from_document(document)
        except PyMongoError as e:
            raise self._wrap_error("find_tenant_platform", e)

    async def list_active(self, platform_type: Optional[PlatformType] = None) -> List[Platform]:
        query: Dict[str, Any] = {"is_active": True}
        if platform_type is not None:
            query["type"] = platform_type.value
        try:
            documents = await self.collection.find(query).to_list(length=None)
            return [self._from_document(document) for document in documents]
        except PyMongoError as e:
            raise self._wrap_error("list_active_platforms", e)

    async def insert(self, platform: Platform) -> Platform:
        try:
            await self.collection.insert_one(self._to_document(platform))
            self._log_operation("insert_platform", platform_id=platform.id, platform_type=platform.type.value)
            return platform
        except DuplicateKeyError as e:
            raise DuplicateEntityError(
                "Platform",
                {"type": platform.type.value, "external_id": platform.external_id},
                original_error=e
            )
        except PyMongoError as e:
            raise self._wrap_error("insert_platform", e)

    async def activate(self, platform_id: str, access_token: str, credentials: Dict[str, Any]) -> Platform:
        update: Dict[str, Any] = {
            "access_token": self.cipher.encrypt(access_token),
            "is_active": True,
            "updated_at": now_utc(),
        }
        for key, value in credentials.items():
            update[f"credentials.{key}"] = value

        try:
            document = await self.collection.find_one_and_update(
                {"_id": platform_id},
                {"$set": update, "$unset": {"credentials.deactivation_reason": ""}},
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError as e:
            raise DuplicateEntityError("Platform", {"platform_id": platform_id}, original_error=e)
        except PyMongoError as e:
            raise self._wrap_error("activate_platform", e)

        if document is None:
            raise EntityNotFoundError("Platform", platform_id)
        return self._from_document(document)

    async def deactivate_if_current(self, platform_id: str, expected_token: str, reason: str) -> bool:
        try:
            document = await self.collection.find_one({"_id": platform_id, "is_active": True})
            if document is None:
                return False

            stored = document.get("access_token", "")
            if self.cipher.decrypt(stored) != expected_token:
                return False

            result = await self.collection.update_one(
                {"_id": platform_id, "is_active": True, "access_token": stored},
                {"$set": {
                    "is_active": False,
                    "credentials.deactivation_reason": reason,
                    "updated_at": now_utc(),
                }}
            )
            return result.modified_count == 1
        except PyMongoError as e:
            raise self._wrap_error("deactivate_platform", e)

    async def update_credentials(self, platform_id: str, credentials: Dict[str, Any]) -> Optional[Platform]:
        update: Dict[str, Any] = {f"credentials.{key}": value for key, value in credentials.items()}
        update["updated_at"] = now_utc()
        try:
            document = await self.collection.find_one_and_update(
                {"_id": platform_id},
                {"$set": update},
                return_document=ReturnDocument.AFTER
            )
            return self._from_document(document)
        except PyMongoError as e:
            raise self._wrap_error("update_platform_credentials", e)


class MongoCustomerRepository(MongoRepositoryBase, CustomerRepository):
    collection_name = "customers"

    async def get(self, customer_id: str) -> Optional[Customer]:
        try:
            document = await self.collection.find_one({"_id": customer_id})
            return Customer.from_document(document) if document else None
        except PyMongoError as e:
            raise self._wrap_error("get_customer", e)

    async def get_by_external(self, platform_id: str, external_id: str) -> Optional[Customer]:
        try:
            document = await self.collection.find_one({"platform_id": platform_id, "external_id": external_id})
            return Customer.from_document(document) if document else None
        except PyMongoError as e:
            raise self._wrap_error("get_customer_by_external", e)

    async def insert(self, customer: Customer) -> Customer:
        try:
            await self.collection.insert_one(customer.to_document())
            self._log_operation("insert_customer", customer_id=customer.id)
            return customer
        except DuplicateKeyError as e:
            raise DuplicateEntityError(
                "Customer",
                {"platform_id": customer.platform_id, "external_id": customer.external_id},
                original_error=e
            )
        except PyMongoError as e:
            raise self._wrap_error("insert_customer", e)

    async def update_profile(self, customer_id, display_name, profile):
        update: Dict[str, Any] = {f"profile.{key}": value for key, value in profile.items()}
        if display_name:
            update["display_name"] = display_name
        update["updated_at"] = now_utc()
        try:
            document = await self.collection.find_one_and_update(
                {"_id": customer_id},
                {"$set": update},
                return_document=ReturnDocument.AFTER
            )
            return Customer.from_document(document) if document else None
        except PyMongoError as e:
            raise self._wrap_error("update_customer_profile", e)


class MongoConversationRepository(MongoRepositoryBase, ConversationRepository):
    collection_name = "conversations"

    async def get(self, conversation_id: str) -> Optional[Conversation]:
        try:
            document = await self.collection.find_one({"_id": conversation_id})
            return Conversation.from_document(document) if document else None
        except PyMongoError as e:
            raise self._wrap_error("get_conversation", e)

    async def get_by_customer(self, platform_id: str, customer_id: str) -> Optional[Conversation]:
        try:
            document = await self.collection.find_one({"platform_id": platform_id, "customer_id": customer_id})
            return Conversation.from_document(document) if document else None
        except PyMongoError as e:
            raise self._wrap_error("get_conversation_by_customer", e)

    async def insert(self, conversation: Conversation) -> Conversation:
        try:
            await self.collection.insert_one(conversation.to_document())
            self._log_operation("insert_conversation", conversation_id=conversation.id)
            return conversation
        except DuplicateKeyError as e:
            raise DuplicateEntityError(
                "Conversation",
                {"platform_id": conversation.platform_id, "customer_id": conversation.customer_id},
                original_error=e
            )
        except PyMongoError as e:
            raise self._wrap_error("insert_conversation", e)

    async def touch(self, conversation_id: str, occurred_at: datetime, inbound: bool) -> Optional[Conversation]:
        latest: Dict[str, Any] = {"last_activity_at": occurred_at}
        if inbound:
            latest["last_inbound_at"] = occurred_at
        try:
            document = await self.collection.find_one_and_update(
                {"_id": conversation_id},
                {"$max": latest, "$set": {"updated_at": now_utc()}},
                return_document=ReturnDocument.AFTER
            )
            return Conversation.from_document(document) if document else None
        except PyMongoError as e:
            raise self._wrap_error("touch_conversation", e)

    async def update_status(self, conversation_id: str, status: ConversationStatus) -> Optional[Conversation]:
        try:
            document = await self.collection.find_one_and_update(
                {"_id": conversation_id},
                {"$set": {"status": status.value, "updated_at": now_utc()}},
                return_document=ReturnDocument.AFTER
            )
            return Conversation.from_document(document) if document else None
        except PyMongoError as e:
            raise self._wrap_error("update_conversation_status", e)

    async def list_by_tenant(self, tenant_id: str, limit: int = 50) -> List[Conversation]:
        try:
            cursor = self.collection.find({"tenant_id": tenant_id}).sort("last_activity_at", DESCENDING).limit(limit)
            return [Conversation.from_document(document) async for document in cursor]
        except PyMongoError as e:
            raise self._wrap_error("list_conversations", e)


class MongoMessageRepository(MongoRepositoryBase, MessageRepository):
    collection_name = "messages"

    async def get(self, message_id: str) -> Optional[Message]:
        try:
            document = await self.collection.find_one({"_id": message_id})
            return Message.from_document(document) if document else None
        except PyMongoError as e:
            raise self._wrap_error("get_message", e)

    async def find_by_platform_message_id(self, platform_id: str, platform_message_id: str) -> Optional[Message]:
        try:
            document = await self.collection.find_one({
                "platform_id": platform_id, "platform_message_id": platform_message_id
            })
            return Message.from_document(document) if document else None
        except PyMongoError as e:
            raise self._wrap_error("find_message_by_platform_id", e)

    async def insert(self, message: Message) -> Message:
        try:
            await self.collection.insert_one(message.to_document())
            self._log_operation("insert_message", message_id=message.id, direction=message.direction.value)
            return message
        except DuplicateKeyError as e:
            raise DuplicateEntityError(
                "Message",
                {"platform_id": message.platform_id, "platform_message_id": message.platform_message_id},
                original_error=e
            )
        except PyMongoError as e:
            raise self._wrap_error("insert_message", e)

    async def update(self, message_id: str, **fields: Any) -> Message:
        update = Message.model_validate(
            {**(await self._require(message_id)).model_dump(), **fields}
        ).to_document()
        update.pop("_id")
        update["updated_at"] = now_utc()
        try:
            document = await self.collection.find_one_and_update(
                {"_id": message_id},
                {"$set": {key: update[key] for key in list(fields) + ["updated_at"]}},
                return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError as e:
            raise DuplicateEntityError(
                "Message",
                {"platform_message_id": fields.get("platform_message_id")},
                original_error=e
            )
        except PyMongoError as e:
            raise self._wrap_error("update_message", e)

        if document is None:
            raise EntityNotFoundError("Message", message_id)
        return Message.from_document(document)

    async def _require(self, message_id: str) -> Message:
        message = await self.get(message_id)
        if message is None:
            raise EntityNotFoundError("Message", message_id)
        return message

    async def advance_status(self, message_id, status, failure_code=None, failure_reason=None):
        allowed_from = [s.value for s in DeliveryStatus if s.can_advance_to(status)]
        update: Dict[str, Any] = {"status": status.value, "updated_at": now_utc()}
        if status == DeliveryStatus.FAILED:
            update["failure_code"] = failure_code
            update["failure_reason"] = failure_reason
        try:
            document = await self.collection.find_one_and_update(
                {"_id": message_id, "status": {"$in": allowed_from}},
                {"$set": update},
                return_document=ReturnDocument.AFTER
            )
            return Message.from_document(document) if document else None
        except PyMongoError as e:
            raise self._wrap_error("advance_message_status", e)

    async def list_for_conversation(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        try:
            if limit is None:
                cursor = self.collection.find({"conversation_id": conversation_id}).sort(HISTORY_SORT)
                return [Message.from_document(document) async for document in cursor]

            newest_first = [(field, -direction) for field, direction in HISTORY_SORT]
            cursor = self.collection.find({"conversation_id": conversation_id}).sort(newest_first).limit(limit)
            messages = [Message.from_document(document) async for document in cursor]
            messages.reverse()
            return messages
        except PyMongoError as e:
            raise self._wrap_error("list_conversation_messages", e)

    async def latest_inbound(self, conversation_id: str) -> Optional[Message]:
        try:
            document = await self.collection.find_one(
                {"conversation_id": conversation_id, "direction": MessageDirection.INBOUND.value},
                sort=[("occurred_at", DESCENDING), ("platform_message_id", DESCENDING)]
            )
            return Message.from_document(document) if document else None
        except PyMongoError as e:
            raise self._wrap_error("latest_inbound_message", e)

    async def list_outbound_unread(self, conversation_id: str, until: datetime) -> List[Message]:
        try:
            cursor = self.collection.find({
                "conversation_id": conversation_id,
                "direction": MessageDirection.OUTBOUND.value,
                "occurred_at": {"$lte": until},
                "status": {"$nin": [DeliveryStatus.READ.value, DeliveryStatus.FAILED.value]},
            }).sort(HISTORY_SORT)
            return [Message.from_document(document) async for document in cursor]
        except PyMongoError as e:
            raise self._wrap_error("list_outbound_unread", e)


def create_mongo_repositories(database: AsyncIOMotorDatabase, cipher: Optional[TokenCipher] = None) -> Repositories:
    """Build the MongoDB repository bundle over one database handle."""
    return Repositories(
        platforms=MongoPlatformRepository(database, cipher=cipher),
        customers=MongoCustomerRepository(database),
        conversations=MongoConversationRepository(database),
        messages=MongoMessageRepository(database),
    )
