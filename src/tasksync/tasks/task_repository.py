# src/tasksync/tasks/task_repository.py

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..core.errors import NetworkError, NotFoundError, ServerError, TaskSyncError, ValidationError
from .query_engine import query_params
from .task_models import QuerySpec, Task, TaskDraft, TaskId, TaskPatch

logger = logging.getLogger(__name__)

TASKS_PATH = "/api/tasks"


def _task_path(task_id: TaskId) -> str:
    return f"{TASKS_PATH}/{task_id}"


def _json_or_none(resp: httpx.Response) -> Any:
    if not resp.content:
        return None
    try:
        return resp.json()
    except ValueError:
        return None


def _field_from_loc(loc: Any) -> str | None:
    if isinstance(loc, (list, tuple)) and loc:
        last = loc[-1]
        return str(last) if last not in ("body", "query", "path") else None
    return None


def _describe(body: Any) -> tuple[str | None, str | None]:
    """
    Pull (message, field) out of the error payload shapes we know about:
    {"error": ...}, {"message": ...}, {"detail": "..."},
    FastAPI {"detail": [{"loc": [...], "msg": ...}]}, {"errors": {field: msg}}.
    """
    if isinstance(body, str):
        return (body.strip() or None), None
    if not isinstance(body, dict):
        return None, None

    field = body.get("field") if isinstance(body.get("field"), str) else None

    detail = body.get("detail")
    if isinstance(detail, list) and detail and isinstance(detail[0], dict):
        first = detail[0]
        return str(first.get("msg") or "invalid request"), field or _field_from_loc(first.get("loc"))

    errors = body.get("errors")
    if isinstance(errors, dict) and errors:
        name, msg = next(iter(errors.items()))
        if isinstance(msg, list):
            msg = msg[0] if msg else ""
        return str(msg or "invalid value"), field or str(name)

    for key in ("error", "message", "detail"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip(), field
    return None, field


def error_from_response(resp: httpx.Response, *, task_id: TaskId | None = None) -> TaskSyncError:
    status = resp.status_code
    message, field = _describe(_json_or_none(resp))
    try:
        method = resp.request.method
    except RuntimeError:
        method = "request"

    if status == 404:
        return NotFoundError(message or f"task {task_id} not found", task_id=task_id)
    if 400 <= status < 500:
        if field is None and message and "title" in message.lower():
            field = "title"
        return ValidationError(message or f"request rejected ({status})", field=field, status_code=status)
    return ServerError(message or f"{method} failed with status {status}", status_code=status)


class HttpTaskRepository:
    """
    TaskRepo over the REST API with httpx.

    Thin boundary: one request per call, no retries, no caching.
    Every failure is raised as a TaskSyncError subclass.
    """

    def __init__(
        self,
        base_url: str = "",
        *,
        timeout: float = 10.0,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if client is None:
            headers = {"Accept": "application/json"}
            if token:
                headers["Authorization"] = f"Bearer {token}"
            client = httpx.AsyncClient(base_url=base_url, timeout=timeout, headers=headers)
            self._owns_client = True
        else:
            self._owns_client = False
        self._client = client

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        task_id: TaskId | None = None,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as exc:
            raise NetworkError(f"{method} {path} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        logger.debug("%s %s -> %s", method, path, resp.status_code)
        if resp.status_code >= 400:
            raise error_from_response(resp, task_id=task_id)
        return resp

    @staticmethod
    def _task_from(resp: httpx.Response) -> Task:
        body = _json_or_none(resp)
        if body is None:
            raise ServerError(f"empty or invalid JSON body (status {resp.status_code})")
        return Task.from_api(body)

    async def list(self, query: QuerySpec | None = None) -> list[Task]:
        params = query_params(query) if query is not None else None
        resp = await self._request("GET", TASKS_PATH, params=params)
        body = _json_or_none(resp)
        if isinstance(body, dict) and isinstance(body.get("items"), list):
            body = body["items"]
        if not isinstance(body, list):
            raise ServerError("expected a JSON list of tasks")
        return [Task.from_api(item) for item in body]

    async def create(self, draft: TaskDraft) -> Task:
        resp = await self._request("POST", TASKS_PATH, json=draft.to_payload())
        return self._task_from(resp)

    async def update(self, task_id: TaskId, patch: TaskPatch) -> Task:
        resp = await self._request("PATCH", _task_path(task_id), task_id=task_id, json=patch.to_payload())
        return self._task_from(resp)

    async def toggle_complete(self, task_id: TaskId, completed: bool) -> Task:
        resp = await self._request(
            "PATCH",
            _task_path(task_id),
            task_id=task_id,
            json={"completed": bool(completed)},
        )
        return self._task_from(resp)

    async def remove(self, task_id: TaskId) -> None:
        await self._request("DELETE", _task_path(task_id), task_id=task_id)
