"""
Access-scoped task store.

Every read and write goes through the same ownership rule: an admin sees and
changes any task, anyone else only the tasks assigned to them. A task the
caller may not see is reported exactly like a task that does not exist, so the
existence of other people's tasks never leaks.
"""
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database

from database import TASKS, USERS, create_document, to_object_id, to_utc_naive, utcnow
from errors import InvalidReference, NotFound, ValidationFailed
from sanitize import sanitize_text
from schemas import PRIORITY_RANK, Principal, Priority, Task, TaskCreate, TaskStatus, TaskUpdate, normalize_status, page_meta
from user_store import UserStore

logger = logging.getLogger(__name__)

# API sort keys -> stored field names
SORT_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "dueDate": "due_date",
    "priority": "priority_rank",
    "status": "status",
    "title": "title",
}

TASK_NOT_FOUND = "Task not found"


@dataclass
class TaskFilters:
    status: Optional[str] = None
    priority: Optional[str] = None
    assigned_user: Optional[str] = None
    search: Optional[str] = None


def access_scope(principal: Principal) -> Dict[str, Any]:
    """Extra match clause restricting a query to what the principal may touch"""
    if principal.is_admin:
        return {}
    return {"assigned_user": principal.id}


def _status_clause(value: str) -> Any:
    try:
        status = TaskStatus(normalize_status(value))
    except ValueError:
        raise ValidationFailed(f"Invalid status '{value}'")
    if status == TaskStatus.TODO:
        # Older documents may still carry the legacy name.
        return {"$in": [TaskStatus.TODO.value, "pending"]}
    return status.value


def build_task_filter(principal: Principal, filters: TaskFilters) -> Dict[str, Any]:
    query: Dict[str, Any] = {}

    if filters.status:
        query["status"] = _status_clause(filters.status)
    if filters.priority:
        try:
            query["priority"] = Priority(filters.priority).value
        except ValueError:
            raise ValidationFailed(f"Invalid priority '{filters.priority}'")

    if filters.search:
        pattern = re.escape(filters.search)
        query["$or"] = [
            {"title": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
        ]

    # Non-admins are pinned to their own tasks whatever they asked for.
    if principal.is_admin:
        if filters.assigned_user:
            query["assigned_user"] = filters.assigned_user
    else:
        query["assigned_user"] = principal.id
    return query


def task_view(doc: Dict[str, Any], people: Dict[str, Dict[str, str]]) -> Dict[str, Any]:
    return {
        "id": str(doc["_id"]),
        "title": doc.get("title"),
        "description": doc.get("description"),
        "priority": doc.get("priority", Priority.MEDIUM.value),
        "status": normalize_status(doc.get("status", TaskStatus.TODO.value)),
        "dueDate": doc.get("due_date"),
        "assignedUser": people.get(doc.get("assigned_user")),
        "createdBy": people.get(doc.get("created_by")),
        "createdAt": doc.get("created_at"),
        "updatedAt": doc.get("updated_at"),
    }


class TaskStore:
    def __init__(self, db: Database):
        self.db = db
        self.tasks = db[TASKS]
        self.users = db[USERS]
        self.accounts = UserStore(db)

    # Helpers

    def _people(self, docs: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, str]]:
        """Display fields for every user referenced by docs, keyed by id string"""
        ids = set()
        for doc in docs:
            ids.update(filter(None, (doc.get("assigned_user"), doc.get("created_by"))))
        oids = [oid for oid in (to_object_id(i) for i in ids) if oid is not None]
        if not oids:
            return {}
        return {
            str(u["_id"]): {"id": str(u["_id"]), "name": u.get("name"), "email": u.get("email")}
            for u in self.users.find({"_id": {"$in": oids}}, {"name": 1, "email": 1})
        }

    def _views(self, docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        people = self._people(docs)
        return [task_view(d, people) for d in docs]

    def _view(self, doc: Dict[str, Any]) -> Dict[str, Any]:
        return self._views([doc])[0]

    def _load(self, principal: Principal, task_id: str) -> Dict[str, Any]:
        oid = to_object_id(task_id)
        doc = self.tasks.find_one({"_id": oid, **access_scope(principal)}) if oid else None
        if not doc:
            raise NotFound(TASK_NOT_FOUND)
        return doc

    def _resolve_assignee(self, user_id: str) -> str:
        if not self.accounts.exists(user_id):
            raise InvalidReference()
        return str(to_object_id(user_id))

    # Operations

    def list_tasks(self, principal: Principal, filters: TaskFilters, page: int = 1, limit: int = 10,
                   sort_by: str = "createdAt", sort_order: str = "desc") -> Dict[str, Any]:
        if page < 1 or limit < 1:
            raise ValidationFailed("page and limit must be positive")
        field = SORT_FIELDS.get(sort_by)
        if field is None:
            raise ValidationFailed(f"Cannot sort by '{sort_by}'")
        direction = 1 if sort_order == "asc" else -1

        query = build_task_filter(principal, filters)
        total = self.tasks.count_documents(query)
        docs = list(
            self.tasks.find(query)
            # _id breaks ties so pages never overlap or skip.
            .sort([(field, direction), ("_id", direction)])
            .skip((page - 1) * limit)
            .limit(limit)
        )
        pagination = page_meta(page, limit, total, len(docs))
        pagination["totalTasks"] = total
        return {"tasks": self._views(docs), "pagination": pagination}

    def get(self, principal: Principal, task_id: str) -> Dict[str, Any]:
        return self._view(self._load(principal, task_id))

    def create(self, principal: Principal, payload: TaskCreate) -> Dict[str, Any]:
        title = sanitize_text(payload.title)
        if not title:
            raise ValidationFailed("Validation error", errors=[{"field": "title", "message": "Title is required"}])
        description = sanitize_text(payload.description) if payload.description else None

        if principal.is_admin and payload.assigned_user:
            assignee = self._resolve_assignee(payload.assigned_user)
        else:
            assignee = principal.id

        task = Task(
            title=title,
            description=description or None,
            assigned_user=assignee,
            created_by=principal.id,
            priority=payload.priority,
            status=payload.status,
            due_date=to_utc_naive(payload.due_date),
        )
        task_id = create_document(self.db, TASKS, task)
        logger.info("Task %s created by %s for %s", task_id, principal.id, assignee)
        return self._view(self.tasks.find_one({"_id": to_object_id(task_id)}))

    def update(self, principal: Principal, task_id: str, payload: TaskUpdate) -> Tuple[Dict[str, Any], Optional[str]]:
        """
        Apply the fields present in payload.

        Returns the updated task and, when an admin moved it to someone else,
        the id of the previous assignee.
        """
        doc = self._load(principal, task_id)
        fields = payload.model_dump(exclude_unset=True)
        updates: Dict[str, Any] = {}

        if "title" in fields:
            title = sanitize_text(fields["title"]) if fields["title"] else ""
            if not title:
                raise ValidationFailed("Validation error", errors=[{"field": "title", "message": "Title cannot be empty"}])
            updates["title"] = title
        if "description" in fields:
            updates["description"] = (sanitize_text(fields["description"]) if fields["description"] else "") or None
        if fields.get("priority") is not None:
            updates["priority"] = Priority(fields["priority"]).value
            updates["priority_rank"] = PRIORITY_RANK[updates["priority"]]
        if fields.get("status") is not None:
            updates["status"] = TaskStatus(fields["status"]).value
        if "due_date" in fields:
            updates["due_date"] = to_utc_naive(fields["due_date"])

        previous_assignee = None
        if fields.get("assigned_user"):
            if principal.is_admin:
                assignee = self._resolve_assignee(fields["assigned_user"])
                if assignee != doc.get("assigned_user"):
                    updates["assigned_user"] = assignee
                    previous_assignee = doc.get("assigned_user")
            else:
                logger.debug("Ignoring assignedUser from non-admin %s on task %s", principal.id, task_id)

        updates["updated_at"] = utcnow()
        updated = self.tasks.find_one_and_update(
            {"_id": doc["_id"], **access_scope(principal)},
            {"$set": updates},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            # Deleted or reassigned away between the load and the write.
            raise NotFound(TASK_NOT_FOUND)
        return self._view(updated), previous_assignee

    def delete(self, principal: Principal, task_id: str) -> Dict[str, Any]:
        oid = to_object_id(task_id)
        doc = self.tasks.find_one_and_delete({"_id": oid, **access_scope(principal)}) if oid else None
        if doc is None:
            raise NotFound(TASK_NOT_FOUND)
        logger.info("Task %s deleted by %s", task_id, principal.id)
        return self._view(doc)

    # Unscoped queries for background jobs and admin reporting

    def due_between(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """Open tasks with a due date in [start, end)"""
        query = {"due_date": {"$gte": start, "$lt": end}, "status": {"$ne": TaskStatus.COMPLETED.value}}
        return self._views(list(self.tasks.find(query).sort("due_date", 1)))

    def overdue_before(self, cutoff: datetime) -> List[Dict[str, Any]]:
        query = {"due_date": {"$lt": cutoff}, "status": {"$ne": TaskStatus.COMPLETED.value}}
        return self._views(list(self.tasks.find(query).sort("due_date", 1)))

    def summary(self, now: datetime) -> Dict[str, Any]:
        open_clause = {"status": {"$ne": TaskStatus.COMPLETED.value}}

        by_status = {s.value: 0 for s in TaskStatus}
        for row in self.tasks.aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}]):
            key = normalize_status(row["_id"])
            if key in by_status:
                by_status[key] += row["count"]

        by_priority = {p.value: 0 for p in Priority}
        for row in self.tasks.aggregate([{"$group": {"_id": "$priority", "count": {"$sum": 1}}}]):
            if row["_id"] in by_priority:
                by_priority[row["_id"]] = row["count"]

        return {
            "stats": {
                "totalTasks": self.tasks.count_documents({}),
                "completedTasks": by_status[TaskStatus.COMPLETED.value],
                "overdueTasks": self.tasks.count_documents({"due_date": {"$lt": now}, **open_clause}),
                "activeUsers": len([u for u in self.tasks.distinct("assigned_user", open_clause) if u]),
                "totalUsers": self.users.count_documents({}),
            },
            "byStatus": by_status,
            "byPriority": by_priority,
        }
