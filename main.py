import asyncio
import contextlib
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Literal, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from starlette.exceptions import HTTPException as StarletteHTTPException

from auth import create_access_token, get_current_principal, principal_from_token, require_admin
from config import settings
from database import ensure_indexes, get_db, utcnow
from email_service import EmailService, get_mailer
from errors import ManageEaseError, NotFound, Unauthenticated
from logging_setup import setup_logging
from notifications import ADMIN_TOPIC, Broker, TaskNotifier, get_broker, get_notifier, task_topic, user_topic
from reminders import ReminderService, default_jobs, run_reminder_scheduler
from schemas import (
    LoginRequest, PasswordChange, Principal, ProfileUpdate, RegisterRequest, Role, RoleUpdate,
    TaskCreate, TaskUpdate,
)
from task_store import TaskFilters, TaskStore
from user_store import UserStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    db = get_db()
    try:
        await run_in_threadpool(ensure_indexes, db)
    except Exception as e:
        logger.error("Could not ensure database indexes: %s", e)

    scheduler = None
    if settings.REMINDERS_ENABLED:
        service = ReminderService(TaskStore(db), get_mailer())
        scheduler = asyncio.create_task(run_reminder_scheduler(default_jobs(service, settings)))
    logger.info("%s started (%s)", settings.APP_NAME, settings.ENVIRONMENT)
    try:
        yield
    finally:
        if scheduler is not None:
            scheduler.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await scheduler


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error envelope
@app.exception_handler(ManageEaseError)
async def manageease_error_handler(request: Request, exc: ManageEaseError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")),
            "message": err.get("msg", "Invalid value"),
        }
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"success": False, "message": "Validation error", "errors": errors})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "message": "Internal server error"})


# Helpers
def ok(data: Any = None, message: Optional[str] = None) -> dict:
    body: dict = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


def get_task_store(db: Database = Depends(get_db)) -> TaskStore:
    return TaskStore(db)


def get_user_store(db: Database = Depends(get_db)) -> UserStore:
    return UserStore(db)


def token_payload(user: dict) -> dict:
    return {
        "token": create_access_token(user["id"], user["role"]),
        "tokenType": "bearer",
        "user": user,
    }


@app.get("/")
def read_root():
    return ok({"service": settings.APP_NAME}, "ManageEase API")


@app.get("/health")
def health(db: Database = Depends(get_db)):
    try:
        db.command("ping")
        database = "connected"
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        database = "unavailable"
    return ok({"backend": "running", "database": database})


# User routes
@app.post("/users/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, users: UserStore = Depends(get_user_store)):
    user = users.register(payload)
    return ok(token_payload(user), "User registered successfully")


@app.post("/users/login")
def login(payload: LoginRequest, users: UserStore = Depends(get_user_store)):
    user = users.authenticate(payload.email, payload.password)
    return ok(token_payload(user), "Login successful")


@app.get("/users/profile")
def get_profile(principal: Principal = Depends(get_current_principal), users: UserStore = Depends(get_user_store)):
    return ok(users.get(principal.id))


@app.put("/users/profile")
def update_profile(
    payload: ProfileUpdate,
    principal: Principal = Depends(get_current_principal),
    users: UserStore = Depends(get_user_store),
):
    return ok(users.update_profile(principal.id, payload), "Profile updated successfully")


@app.put("/users/change-password")
def change_password(
    payload: PasswordChange,
    principal: Principal = Depends(get_current_principal),
    users: UserStore = Depends(get_user_store),
):
    users.change_password(principal.id, payload)
    return ok(message="Password changed successfully")


@app.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    role: Optional[Role] = None,
    search: Optional[str] = None,
    admin: Principal = Depends(require_admin),
    users: UserStore = Depends(get_user_store),
):
    return ok(users.list_users(page=page, limit=limit, role=role, search=search))


@app.get("/users/{user_id}")
def get_user(user_id: str, admin: Principal = Depends(require_admin), users: UserStore = Depends(get_user_store)):
    return ok(users.get(user_id))


@app.put("/users/{user_id}/role")
def update_user_role(
    user_id: str,
    payload: RoleUpdate,
    admin: Principal = Depends(require_admin),
    users: UserStore = Depends(get_user_store),
):
    return ok(users.set_role(admin, user_id, payload.role), "User role updated successfully")


@app.delete("/users/{user_id}")
def delete_user(user_id: str, admin: Principal = Depends(require_admin), users: UserStore = Depends(get_user_store)):
    users.delete(admin, user_id)
    return ok(message="User deleted successfully")


# Task routes
@app.post("/tasks", status_code=status.HTTP_201_CREATED)
def create_task(
    payload: TaskCreate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
    tasks: TaskStore = Depends(get_task_store),
    notifier: TaskNotifier = Depends(get_notifier),
    mailer: EmailService = Depends(get_mailer),
):
    task = tasks.create(principal, payload)
    background_tasks.add_task(notifier.task_changed, task, "created")
    if task["assignedUser"] and task["assignedUser"]["id"] != principal.id:
        background_tasks.add_task(mailer.send_task_assignment, task)
    return ok(task, "Task created successfully")


@app.get("/tasks")
def list_tasks(
    status_filter: Optional[str] = Query(None, alias="status"),
    priority: Optional[str] = None,
    assigned_user: Optional[str] = Query(None, alias="assignedUser"),
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    sort_by: str = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
    principal: Principal = Depends(get_current_principal),
    tasks: TaskStore = Depends(get_task_store),
):
    filters = TaskFilters(status=status_filter, priority=priority, assigned_user=assigned_user, search=search)
    return ok(tasks.list_tasks(principal, filters, page=page, limit=limit, sort_by=sort_by, sort_order=sort_order))


@app.get("/tasks/{task_id}")
def get_task(task_id: str, principal: Principal = Depends(get_current_principal),
             tasks: TaskStore = Depends(get_task_store)):
    return ok(tasks.get(principal, task_id))


@app.put("/tasks/{task_id}")
def update_task(
    task_id: str,
    payload: TaskUpdate,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
    tasks: TaskStore = Depends(get_task_store),
    notifier: TaskNotifier = Depends(get_notifier),
    mailer: EmailService = Depends(get_mailer),
):
    task, previous_assignee = tasks.update(principal, task_id, payload)
    background_tasks.add_task(notifier.task_changed, task, "updated", previous_assignee)
    if previous_assignee and task["assignedUser"] and task["assignedUser"]["id"] != principal.id:
        background_tasks.add_task(mailer.send_task_assignment, task)
    return ok(task, "Task updated successfully")


@app.delete("/tasks/{task_id}")
def delete_task(
    task_id: str,
    background_tasks: BackgroundTasks,
    principal: Principal = Depends(get_current_principal),
    tasks: TaskStore = Depends(get_task_store),
    notifier: TaskNotifier = Depends(get_notifier),
):
    task = tasks.delete(principal, task_id)
    background_tasks.add_task(notifier.task_changed, task, "deleted")
    return ok(message="Task deleted successfully")


@app.get("/analytics/dashboard")
def analytics_dashboard(admin: Principal = Depends(require_admin), tasks: TaskStore = Depends(get_task_store)):
    return ok(tasks.summary(utcnow()))


# Live task notifications
@app.websocket("/ws")
async def notifications_ws(
    websocket: WebSocket,
    token: Optional[str] = None,
    db: Database = Depends(get_db),
    broker: Broker = Depends(get_broker),
):
    try:
        principal = await run_in_threadpool(principal_from_token, db, token)
    except Unauthenticated:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    broker.subscribe(user_topic(principal.id), websocket)
    if principal.is_admin:
        broker.subscribe(ADMIN_TOPIC, websocket)
    logger.info("User %s connected", principal.id)

    tasks = TaskStore(db)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                message = None
            if not isinstance(message, dict):
                await websocket.send_json({"event": "error", "message": "Messages must be JSON objects"})
                continue

            action = message.get("action")
            task_id = str(message.get("taskId") or "")
            if action == "join_task":
                try:
                    await run_in_threadpool(tasks.get, principal, task_id)
                except NotFound as e:
                    await websocket.send_json({"event": "error", "message": e.message, "taskId": task_id})
                    continue
                broker.subscribe(task_topic(task_id), websocket)
                await websocket.send_json({"event": "joined_task", "taskId": task_id})
            elif action == "leave_task":
                broker.unsubscribe(task_topic(task_id), websocket)
                await websocket.send_json({"event": "left_task", "taskId": task_id})
            else:
                await websocket.send_json({"event": "error", "message": f"Unknown action '{action}'"})
    except WebSocketDisconnect:
        logger.info("User %s disconnected", principal.id)
    finally:
        broker.unsubscribe_all(websocket)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
