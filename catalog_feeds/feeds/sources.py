"""Record sources that feed generators pull batches from."""

import asyncio
import itertools
import json
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

import httpx

from catalog_feeds.api.http_client import AsyncHTTPClient
from catalog_feeds.feeds.errors import RecordSourceError
from catalog_feeds.models.config import SourceConfig


@runtime_checkable
class RecordSource(Protocol):
    """Yields the records of one feed type, a slice at a time."""

    async def fetch(self, offset: int, limit: Optional[int]) -> Sequence[Mapping[str, Any]]:
        """
        Records ``offset`` to ``offset + limit``; every record from
        ``offset`` on when ``limit`` is None.
        """
        ...


class MemoryRecordSource:
    """Records held in a list."""

    def __init__(self, records: Sequence[Mapping[str, Any]]):
        self.records = list(records)

    async def fetch(self, offset: int, limit: Optional[int]) -> Sequence[Mapping[str, Any]]:
        end = None if limit is None else offset + limit
        return self.records[offset:end]


class JsonFileRecordSource:
    """
    Records stored in a file.

    ``.jsonl`` / ``.ndjson`` files hold one JSON object per line and are
    streamed, so a batch only reads the lines it needs. Any other file is
    parsed as a single JSON array.
    """

    STREAMED_SUFFIXES = (".jsonl", ".ndjson")

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read(self, offset: int, limit: Optional[int]) -> List[Dict[str, Any]]:
        end = None if limit is None else offset + limit

        if self.path.suffix.lower() in self.STREAMED_SUFFIXES:
            with open(self.path, 'r', encoding='utf-8') as f:
                lines = (line for line in f if line.strip())
                return [json.loads(line) for line in itertools.islice(lines, offset, end)]

        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, list):
            raise ValueError(f"{self.path} must contain a JSON array of records")
        return data[offset:end]

    async def fetch(self, offset: int, limit: Optional[int]) -> Sequence[Mapping[str, Any]]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._read, offset, limit)
        except (OSError, ValueError) as e:
            raise RecordSourceError(f"Could not read records from {self.path}: {e}") from e


class HttpRecordSource:
    """
    Paginated JSON collection, e.g. a store REST API.

    Requests ``?page=N&per_page=M``; a 204 or an empty list ends the
    collection. Unbounded fetches request the collection once without
    pagination parameters.
    """

    COLLECTION_KEYS = ("items", "data", "records", "products")

    def __init__(
        self,
        url: str,
        page_param: str = "page",
        per_page_param: str = "per_page",
        connect_timeout: float = 3.0,
        read_timeout: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.url = url
        self.page_param = page_param
        self.per_page_param = per_page_param
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.transport = transport

    def _extract_records(self, body: Any) -> List[Mapping[str, Any]]:
        if isinstance(body, list):
            return body
        if isinstance(body, dict):
            for key in self.COLLECTION_KEYS:
                if isinstance(body.get(key), list):
                    return body[key]
        raise RecordSourceError(f"Unexpected response shape from {self.url}")

    async def fetch(self, offset: int, limit: Optional[int]) -> Sequence[Mapping[str, Any]]:
        params = None
        if limit is not None:
            if offset % limit:
                raise RecordSourceError(f"Offset {offset} is not aligned to page size {limit}")
            params = {self.page_param: offset // limit + 1, self.per_page_param: limit}

        try:
            async with AsyncHTTPClient(
                connect_timeout=self.connect_timeout,
                read_timeout=self.read_timeout,
                transport=self.transport
            ) as client:
                response = await client.get(self.url, params=params)
                if response.status_code == 204:
                    return []
                response.raise_for_status()
                body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RecordSourceError(f"Could not fetch records from {self.url}: {e}") from e

        records = self._extract_records(body)
        if limit is None and offset:
            return records[offset:]
        return records


def build_record_source(config: SourceConfig) -> RecordSource:
    """Record source described by a feed's source configuration."""
    if config.kind == "file":
        return JsonFileRecordSource(Path(config.path))
    if config.kind == "http":
        return HttpRecordSource(config.url, config.page_param, config.per_page_param)
    return MemoryRecordSource(config.records)
