"""
MongoDB access layer.

`Repository` wraps one collection and converts between stored documents and the
pydantic models in schemas.py. `Store` bundles one repository per collection
together with the clock used for every created_at/updated_at stamp.

Updates are compare-and-swap on the document `version`: a write based on a stale
read raises `StaleWrite`, and engines re-fetch and re-apply via `retry_on_stale`.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from errors import Conflict, Internal
from schemas import Comment, Document, Notification, Task, Team, User, UserPublic
from time_utils import utc_now

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=Document)

MAX_WRITE_ATTEMPTS = 3


class StaleWrite(Exception):
    """The document changed (or vanished) between read and write."""


def oid(value: Any) -> Optional[ObjectId]:
    if value is None:
        return None
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


def to_storage(value: Any) -> Any:
    """Recursively convert aware datetimes to the naive UTC form Mongo stores."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, dict):
        return {k: to_storage(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_storage(v) for v in value]
    return value


@contextmanager
def storage_errors(action: str):
    try:
        yield
    except DuplicateKeyError as exc:
        raise Conflict("A record with the same unique value already exists") from exc
    except PyMongoError as exc:
        raise Internal(f"Storage failure during {action}") from exc


def retry_on_stale(operation: Callable[[], Any], attempts: int = MAX_WRITE_ATTEMPTS) -> Any:
    """Run a read-modify-write operation, re-running it when its write lost a race."""
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except StaleWrite as exc:
            logger.info("Retrying after stale write (%d/%d): %s", attempt, attempts, exc)
    raise Conflict("The record was modified concurrently, please retry")


class Repository(Generic[M]):
    def __init__(self, db: Database, model: Type[M]):
        self.model = model
        self.collection = db[model.__name__.lower()]

    def _load(self, doc: Optional[Dict[str, Any]]) -> Optional[M]:
        if doc is None:
            return None
        d = dict(doc)
        d["id"] = str(d.pop("_id"))
        return self.model.model_validate(d)

    def _dump(self, model: M) -> Dict[str, Any]:
        return to_storage(model.model_dump(exclude={"id"}))

    def find(self, id: Any) -> Optional[M]:
        _id = oid(id)
        if _id is None:
            return None
        with storage_errors(f"{self.collection.name} lookup"):
            doc = self.collection.find_one({"_id": _id})
        return self._load(doc)

    def find_one(self, query: Dict[str, Any]) -> Optional[M]:
        with storage_errors(f"{self.collection.name} lookup"):
            doc = self.collection.find_one(to_storage(query))
        return self._load(doc)

    def find_many(
        self,
        query: Dict[str, Any],
        sort: Optional[Sequence[Tuple[str, int]]] = None,
        limit: int = 0,
    ) -> List[M]:
        with storage_errors(f"{self.collection.name} query"):
            cursor = self.collection.find(to_storage(query))
            if sort:
                cursor = cursor.sort(list(sort))
            if limit:
                cursor = cursor.limit(limit)
            docs = list(cursor)
        return [self._load(d) for d in docs]

    def insert(self, model: M) -> M:
        doc = self._dump(model)
        doc["version"] = 0
        with storage_errors(f"{self.collection.name} insert"):
            res = self.collection.insert_one(doc)
        return model.model_copy(update={"id": str(res.inserted_id), "version": 0})

    def update(self, model: M) -> M:
        doc = self._dump(model)
        doc["version"] = model.version + 1
        with storage_errors(f"{self.collection.name} update"):
            res = self.collection.update_one(
                {"_id": oid(model.id), "version": model.version},
                {"$set": doc},
            )
        if res.matched_count == 0:
            raise StaleWrite(f"{self.model.__name__} {model.id} changed since version {model.version}")
        return model.model_copy(update={"version": model.version + 1})

    def update_many(self, query: Dict[str, Any], changes: Dict[str, Any]) -> int:
        with storage_errors(f"{self.collection.name} bulk update"):
            res = self.collection.update_many(
                to_storage(query),
                {"$set": to_storage(changes), "$inc": {"version": 1}},
            )
        return res.modified_count

    def delete(self, id: Any) -> bool:
        _id = oid(id)
        if _id is None:
            return False
        with storage_errors(f"{self.collection.name} delete"):
            res = self.collection.delete_one({"_id": _id})
        return res.deleted_count == 1


class Store:
    def __init__(self, db: Database, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock
        self.users: Repository[User] = Repository(db, User)
        self.teams: Repository[Team] = Repository(db, Team)
        self.tasks: Repository[Task] = Repository(db, Task)
        self.comments: Repository[Comment] = Repository(db, Comment)
        self.notifications: Repository[Notification] = Repository(db, Notification)

    def ensure_indexes(self) -> None:
        with storage_errors("index creation"):
            self.users.collection.create_index("username", unique=True)
            self.users.collection.create_index("email", unique=True)
            self.teams.collection.create_index("members.user_id")
            self.tasks.collection.create_index([("team_id", ASCENDING), ("created_at", DESCENDING)])
            self.tasks.collection.create_index("assigned_members.user_id")
            self.comments.collection.create_index([("task_id", ASCENDING), ("created_at", DESCENDING)])
            self.notifications.collection.create_index([("recipient_id", ASCENDING), ("created_at", DESCENDING)])

    def public_users(self, user_ids: Iterable[str]) -> Dict[str, UserPublic]:
        """Resolve user ids to their public view in one query; unknown ids are left out."""
        ids = [i for i in (oid(u) for u in set(user_ids)) if i is not None]
        if not ids:
            return {}
        return {u.id: UserPublic.from_user(u) for u in self.users.find_many({"_id": {"$in": ids}})}


_client: Optional[MongoClient] = None


def get_database() -> Database:
    global _client
    if _client is None:
        _client = MongoClient(config.DATABASE_URL, timeoutMS=config.MONGO_TIMEOUT_MS)
        logger.info("Connected Mongo client for database %s", config.DATABASE_NAME)
    return _client[config.DATABASE_NAME]
