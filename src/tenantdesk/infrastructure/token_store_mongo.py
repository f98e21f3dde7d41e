from __future__ import annotations

import logging
import os
from datetime import UTC, datetime, timedelta
from typing import Any, Dict, Optional

from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from ..domain.tokens import TokenKind, TokenRecord, TokenTarget
from .token_store import (
    Clock,
    TokenConfig,
    TokenStoreUnavailable,
    build_record,
    classify_rejection,
    short_id,
    utc_now,
)

logger = logging.getLogger("tenantdesk.tokens")

_ISSUE_ATTEMPTS = 3


class MongoTokenStore:
    """Mongo-backed capability token store.

    ``consume`` is a single ``find_one_and_update`` whose filter requires
    ``used == False`` and ``expires_at > now``; the server applies it atomically,
    so among concurrent consumers of one token only one gets a document back.
    A TTL index on ``expires_at`` lets Mongo delete expired tokens on its own.
    """

    def __init__(
        self,
        collection: Optional[Collection] = None,
        config: Optional[TokenConfig] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._config = config or TokenConfig.from_env()
        self._clock = clock or utc_now
        self._collection = collection if collection is not None else self._connect()
        self._ensure_indexes()

    def _connect(self) -> Collection:
        mongo_url = os.getenv("MONGO_URL", "mongodb://localhost:27017")
        mongo_db = os.getenv("MONGO_DB", "tenantdesk")
        try:
            client: MongoClient = MongoClient(mongo_url, serverSelectionTimeoutMS=2000, tz_aware=True)
            client.server_info()
        except PyMongoError as exc:
            raise TokenStoreUnavailable(f"Mongo token store unreachable at {mongo_url}") from exc
        return client[mongo_db]["capability_tokens"]

    def _ensure_indexes(self) -> None:
        try:
            self._collection.create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)
            self._collection.create_index([("recipient", ASCENDING), ("kind", ASCENDING)])
        except PyMongoError:
            logger.warning("token_index_creation_failed", exc_info=True)

    def issue(
        self,
        recipient: str,
        kind: TokenKind,
        target: Optional[TokenTarget] = None,
        ttl: Optional[timedelta] = None,
    ) -> TokenRecord:
        ttl = ttl or self._config.ttl_for(kind)
        for _ in range(_ISSUE_ATTEMPTS):
            record = build_record(recipient, kind, target, ttl, self._clock())
            try:
                self._collection.insert_one(self._to_doc(record))
            except DuplicateKeyError:
                # 128-bit collision; draw again.
                continue
            except PyMongoError as exc:
                raise TokenStoreUnavailable("Failed to persist token") from exc
            logger.info(
                "token_issued",
                extra={"token": short_id(record.token), "kind": kind.value, "expires_at": record.expires_at.isoformat()},
            )
            return record
        raise TokenStoreUnavailable("Could not allocate a unique token id")

    def consume(self, token_id: str) -> TokenRecord:
        now = self._clock()
        try:
            prior = self._collection.find_one_and_update(
                {"_id": token_id, "used": False, "expires_at": {"$gt": now}},
                {"$set": {"used": True, "used_at": now}},
                return_document=ReturnDocument.BEFORE,
            )
            if prior is None:
                existing = self._collection.find_one({"_id": token_id})
        except PyMongoError as exc:
            raise TokenStoreUnavailable("Token lookup failed") from exc
        if prior is None:
            record = self._to_record(existing) if existing else None
            raise classify_rejection(record, token_id, now)
        logger.info("token_consumed", extra={"token": short_id(token_id), "kind": prior.get("kind")})
        return self._to_record(prior)

    def peek(self, token_id: str) -> Optional[TokenRecord]:
        try:
            doc = self._collection.find_one({"_id": token_id})
        except PyMongoError as exc:
            raise TokenStoreUnavailable("Token lookup failed") from exc
        return self._to_record(doc) if doc else None

    def now(self) -> datetime:
        return self._clock()

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        try:
            res = self._collection.delete_many({"expires_at": {"$lte": now}})
        except PyMongoError as exc:
            raise TokenStoreUnavailable("Token purge failed") from exc
        return int(getattr(res, "deleted_count", 0) or 0)

    def _to_doc(self, record: TokenRecord) -> Dict[str, Any]:
        data = record.model_dump(mode="python")
        data["_id"] = data.pop("token")
        for key in ("kind", "entity_type", "action"):
            if data.get(key) is not None:
                data[key] = getattr(data[key], "value", data[key])
        return data

    def _to_record(self, doc: Dict[str, Any]) -> TokenRecord:
        doc = dict(doc)
        doc["token"] = doc.pop("_id")
        for key in ("created_at", "expires_at", "used_at"):
            value = doc.get(key)
            if isinstance(value, datetime) and value.tzinfo is None:
                doc[key] = value.replace(tzinfo=UTC)
        return TokenRecord(**doc)
