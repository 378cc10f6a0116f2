import asyncio
from collections.abc import Iterable, Sequence
from typing import Any

import httpx

from app.core.base_client import BaseClient
from app.core.version import __version__

Filter = tuple[str, str]


def eq(value: Any) -> str:
    return f"eq.{value}"


def neq(value: Any) -> str:
    return f"neq.{value}"


def gte(value: Any) -> str:
    return f"gte.{value}"


def in_(values: Iterable[Any]) -> str:
    """Build a PostgREST `in` operator. Values are double-quoted so commas in ids stay literal."""
    quoted = ",".join('"{}"'.format(str(v).replace('"', '\\"')) for v in values)
    return f"in.({quoted})"


class PostgrestClient(BaseClient):
    """
    Client for the Supabase REST (PostgREST) API of the My10 database.
    """

    def __init__(
        self,
        url: str,
        api_key: str,
        timeout: float = 10.0,
        max_retries: int = 3,
        batch_size: int = 200,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {
            "User-Agent": f"My10-Recommendations/{__version__}",
            "Accept": "application/json",
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
        }
        super().__init__(
            base_url=f"{url.rstrip('/')}/rest/v1",
            timeout=timeout,
            max_retries=max_retries,
            headers=headers,
            transport=transport,
        )
        self.batch_size = max(1, batch_size)

    async def select(
        self,
        table: str,
        columns: str = "*",
        filters: Sequence[Filter] = (),
        order: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Run a single `GET /{table}` query and return the rows."""
        params: list[tuple[str, str]] = [("select", columns.replace(" ", ""))]
        params.extend(filters)
        if order:
            params.append(("order", order))
        if limit is not None:
            params.append(("limit", str(limit)))

        data = await self.get(f"/{table}", params=params)
        if data is None:
            return []
        if not isinstance(data, list):
            raise RuntimeError(f"Unexpected PostgREST response shape for {table}: {type(data)}")
        return data

    async def select_in(
        self,
        table: str,
        columns: str,
        column: str,
        values: Iterable[Any],
        filters: Sequence[Filter] = (),
    ) -> list[dict[str, Any]]:
        """
        Select rows whose `column` is in `values`.

        Values are split into chunks of `batch_size` and the chunks are fetched
        concurrently, so large id lists cost a handful of round trips instead of one per id.
        """
        unique = list(dict.fromkeys(values))
        if not unique:
            return []

        chunks = [unique[i : i + self.batch_size] for i in range(0, len(unique), self.batch_size)]
        tasks = [self.select(table, columns, [(column, in_(chunk)), *filters]) for chunk in chunks]
        batches = await asyncio.gather(*tasks)
        return [row for batch in batches for row in batch]

    async def upsert(self, table: str, row: dict[str, Any], on_conflict: str) -> None:
        headers = {"Prefer": "resolution=merge-duplicates,return=minimal"}
        await self.post(f"/{table}", json=row, params={"on_conflict": on_conflict}, headers=headers)

    async def delete_where(self, table: str, filters: Sequence[Filter]) -> None:
        if not filters:
            raise ValueError("Refusing to delete without filters")
        await self.delete(f"/{table}", params=list(filters), headers={"Prefer": "return=minimal"})
