"""Boundary to the document store and the recovery-score provider.

The engine only reads. Anything offering "filter by user, optional status
filter, cap, order by date" can back a ``DocumentSource``; two backends ship
here: an in-memory one and a PostgreSQL JSONB one (psycopg async).
"""

import logging
from collections.abc import Mapping
from typing import Any, Protocol

import httpx
import psycopg
from psycopg.rows import dict_row

from .models import RecoveryAverages, RecoveryLatest, RecoveryScores
from .reducer import round_half_up

logger = logging.getLogger(__name__)

WORKOUTS = "workouts"
GROUP_WORKOUTS = "groupWorkouts"
GOALS = "goals"
SCHEDULES = "schedules"
FORM_CHECKS = "formCheckJobs"
USERS = "users"

Document = dict[str, Any]


class DocumentSource(Protocol):
    async def fetch_workouts(self, user_id: str, *, limit: int) -> list[Document]: ...

    async def fetch_group_workouts(self, user_id: str, *, limit: int) -> list[Document]: ...

    async def fetch_goals(self, user_id: str) -> list[Document]: ...

    async def fetch_schedules(self, user_id: str) -> list[Document]: ...

    async def fetch_form_checks(self, user_id: str, *, limit: int) -> list[Document]: ...

    async def fetch_profile(self, user_id: str) -> Document | None: ...


class RecoveryScoreProvider(Protocol):
    async def latest_scores(self, user_id: str) -> RecoveryScores | None: ...


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class InMemoryDocumentSource:
    """Dict-backed source: ``{collection: {user_id: [documents]}}``.

    Documents are returned in stored order; callers sort. ``users`` holds one
    profile document per user.
    """

    def __init__(self, collections: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self._collections = {name: dict(docs) for name, docs in (collections or {}).items()}

    def _list(self, collection: str, user_id: str, limit: int | None = None) -> list[Document]:
        documents = [dict(doc) for doc in self._collections.get(collection, {}).get(user_id, [])]
        return documents[:limit] if limit is not None else documents

    async def fetch_workouts(self, user_id: str, *, limit: int) -> list[Document]:
        return self._list(WORKOUTS, user_id, limit)

    async def fetch_group_workouts(self, user_id: str, *, limit: int) -> list[Document]:
        return self._list(GROUP_WORKOUTS, user_id, limit)

    async def fetch_goals(self, user_id: str) -> list[Document]:
        return self._list(GOALS, user_id)

    async def fetch_schedules(self, user_id: str) -> list[Document]:
        return self._list(SCHEDULES, user_id)

    async def fetch_form_checks(self, user_id: str, *, limit: int) -> list[Document]:
        return [
            doc for doc in self._list(FORM_CHECKS, user_id)
            if doc.get("status") == "complete"
        ][:limit]

    async def fetch_profile(self, user_id: str) -> Document | None:
        profile = self._collections.get(USERS, {}).get(user_id)
        return dict(profile) if isinstance(profile, Mapping) else None


# ---------------------------------------------------------------------------
# PostgreSQL backend
# ---------------------------------------------------------------------------


class PostgresDocumentSource:
    """Reads JSONB documents from ``documents(id, collection, user_id, data, created_at)``.

    Each fetch opens its own connection so the fan-out batch really runs
    concurrently instead of queueing on a shared connection.
    Rows come back newest-stored first; stored ``date`` values mix formats, so
    ordering by them is left to the normalizer.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = database_url

    async def _query(
        self,
        collection: str,
        user_id: str,
        *,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[Document]:
        async with await psycopg.AsyncConnection.connect(self.database_url) as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(
                    """
                    SELECT id, data
                    FROM documents
                    WHERE collection = %s
                      AND user_id = %s
                      AND (%s::text IS NULL OR data->>'status' = %s::text)
                    ORDER BY created_at DESC, id DESC
                    LIMIT %s
                    """,
                    (collection, user_id, status, status, limit),
                )
                rows = await cur.fetchall()

        return [{**(row["data"] or {}), "id": str(row["id"])} for row in rows]

    async def fetch_workouts(self, user_id: str, *, limit: int) -> list[Document]:
        return await self._query(WORKOUTS, user_id, limit=limit)

    async def fetch_group_workouts(self, user_id: str, *, limit: int) -> list[Document]:
        return await self._query(GROUP_WORKOUTS, user_id, limit=limit)

    async def fetch_goals(self, user_id: str) -> list[Document]:
        return await self._query(GOALS, user_id)

    async def fetch_schedules(self, user_id: str) -> list[Document]:
        return await self._query(SCHEDULES, user_id)

    async def fetch_form_checks(self, user_id: str, *, limit: int) -> list[Document]:
        return await self._query(FORM_CHECKS, user_id, status="complete", limit=limit)

    async def fetch_profile(self, user_id: str) -> Document | None:
        rows = await self._query(USERS, user_id, limit=1)
        return rows[0] if rows else None


# ---------------------------------------------------------------------------
# Recovery scores
# ---------------------------------------------------------------------------


def _average_score(entries: list[Any]) -> int | None:
    if not entries:
        return None
    scores = [
        entry.get("score") or 0 if isinstance(entry, Mapping) else 0
        for entry in entries
    ]
    return int(round_half_up(sum(scores) / len(scores)))


def _latest(entries: list[Any]) -> dict[str, Any] | None:
    if not entries or not isinstance(entries[-1], Mapping):
        return None
    return dict(entries[-1])


def summarize_recovery(integration: Mapping[str, Any] | None) -> RecoveryScores | None:
    """Reduce a stored device integration document to latest + averages.

    Daily series are stored oldest-first, so the last entry is the latest day.
    Returns None unless the integration is connected and has synced data.
    """
    if not integration or integration.get("status") != "connected":
        return None
    data = integration.get("data")
    if not isinstance(data, Mapping):
        return None

    series = {
        name: value if isinstance(value, list) else []
        for name, value in ((key, data.get(key)) for key in ("sleep", "readiness", "activity"))
    }
    return RecoveryScores(
        latest=RecoveryLatest(
            sleep=_latest(series["sleep"]),
            readiness=_latest(series["readiness"]),
            activity=_latest(series["activity"]),
        ),
        averages=RecoveryAverages(
            sleep_score=_average_score(series["sleep"]),
            readiness_score=_average_score(series["readiness"]),
        ),
    )


class HttpRecoveryProvider:
    """Fetch the recovery-device integration document over HTTP.

    ``GET {base_url}/users/{user_id}/integrations/oura``; 404 means the user
    never connected a device. Other HTTP errors propagate to the caller's
    fallback.
    """

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
        )

    async def latest_scores(self, user_id: str) -> RecoveryScores | None:
        response = await self._client.get(f"/users/{user_id}/integrations/oura")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return summarize_recovery(response.json())

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
