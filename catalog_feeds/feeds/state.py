"""JSON persistence of generation jobs and feed secrets.

One document per feed type lets a build resume in a later process, e.g. when
each batch is driven by a separate cron invocation of the CLI.

Example document (``out/state/products.json``):
{
    "job": {
        "feed_type": "PRODUCTS",
        "job_id": "4f1c...",
        "current_batch_number": 3,
        "cumulative_rows_written": 200,
        "status": "running",
        ...
    },
    "feed_secret": "9b2e..."
}
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from catalog_feeds.models.data_models import FeedType, GenerationJob


class JobStateStore:
    """Reads and atomically rewrites per-feed JSON state documents."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def _path(self, feed_type: FeedType) -> Path:
        return self.directory / f"{feed_type.data_stream_name}.json"

    def _load(self, feed_type: FeedType) -> Dict[str, Any]:
        path = self._path(feed_type)
        if not path.exists():
            return {}
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)

    def _save(self, feed_type: FeedType, document: Dict[str, Any]) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(dir=self.directory, prefix=".state-", suffix=".json")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(document, f, indent=2, ensure_ascii=False)
            os.replace(temp_path, self._path(feed_type))
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def load_job(self, feed_type: FeedType) -> Optional[GenerationJob]:
        data = self._load(feed_type).get("job")
        return GenerationJob.from_dict(data) if data else None

    def save_job(self, job: GenerationJob) -> None:
        document = self._load(job.feed_type)
        document["job"] = job.to_dict()
        self._save(job.feed_type, document)

    def load_secret(self, feed_type: FeedType) -> Optional[str]:
        return self._load(feed_type).get("feed_secret") or None

    def save_secret(self, feed_type: FeedType, secret: str) -> None:
        document = self._load(feed_type)
        document["feed_secret"] = secret
        self._save(feed_type, document)


class MemoryJobStateStore(JobStateStore):
    """Process-local store for tests and one-shot runs."""

    def __init__(self):
        super().__init__(Path("."))
        self._documents: Dict[FeedType, Dict[str, Any]] = {}

    def _load(self, feed_type: FeedType) -> Dict[str, Any]:
        return json.loads(json.dumps(self._documents.get(feed_type, {})))

    def _save(self, feed_type: FeedType, document: Dict[str, Any]) -> None:
        self._documents[feed_type] = json.loads(json.dumps(document))
