"""JSON status report for feeds.

Example output structure:
{
    "generated_at": "2024-01-15T10:30:00+00:00",
    "feeds": [
        {
            "feed_type": "PRODUCTS",
            "data_stream_name": "products",
            "status": "complete",
            "current_batch_number": 4,
            "cumulative_rows_written": 250,
            "skipped_records": 2,
            "last_error": null,
            "started_at": "2024-01-15T10:29:58+00:00",
            "completed_at": "2024-01-15T10:29:59+00:00",
            "published_path": "out/feeds/products_feed.csv",
            "published_size_bytes": 48213,
            "published_at": "2024-01-15T10:29:59+00:00"
        }
    ]
}
"""

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Sequence

from catalog_feeds.models.data_models import FeedStatus, utc_now_iso


class StatusReportFormatter:
    """Formats feed statuses as JSON."""

    def format_status(self, status: FeedStatus) -> Dict[str, Any]:
        data = asdict(status)
        data["feed_type"] = status.feed_type.value
        data["status"] = status.status.value
        return data

    def format(self, statuses: Sequence[FeedStatus]) -> Dict[str, Any]:
        return {
            "generated_at": utc_now_iso(),
            "feeds": [self.format_status(status) for status in statuses],
        }

    def to_json(self, statuses: Sequence[FeedStatus], indent: int = 2) -> str:
        return json.dumps(self.format(statuses), indent=indent, ensure_ascii=False)

    def save(self, statuses: Sequence[FeedStatus], output_path: str) -> None:
        """
        Write the report, creating parent directories as needed.

        Raises:
            IOError: If file cannot be written
        """
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(self.to_json(statuses))
