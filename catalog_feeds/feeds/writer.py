"""Delimited feed file writer.

A generation run writes into a private working file next to the published
one and publishes it with a single ``os.replace``, so readers either see the
previous complete file or the new complete file, never a partial one.
"""

import csv
import json
import logging
import os
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

from catalog_feeds.feeds.errors import FeedFinalizeError, FeedWriteError
from catalog_feeds.models.data_models import FeedDescriptor, PublishedFile, WorkingFile
from catalog_feeds.monitoring.logger import StructuredLogger


def serialize_value(value: Any) -> str:
    """
    Render one field value as feed text.

    None becomes an empty string, booleans become ``true``/``false`` and
    lists or mappings are JSON-encoded. Delimiter and quote escaping is left
    to the csv writer.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


class CsvFeedFileWriter:
    """
    Writes feeds as quoted delimited text (comma or tab).

    Files live in ``output_directory``:
    - ``{data_stream_name}_feed.csv``: published file, served to the platform
    - ``{data_stream_name}_feed_temp.csv``: working file of the running job
    """

    FILE_NAME = "{name}_feed.csv"
    TEMP_FILE_NAME = "{name}_feed_temp.csv"

    def __init__(self, output_directory: Path, logger: Optional[StructuredLogger] = None):
        self.output_directory = Path(output_directory)
        self.logger = logger or StructuredLogger()

    def published_path(self, descriptor: FeedDescriptor) -> Path:
        return self.output_directory / self.FILE_NAME.format(name=descriptor.data_stream_name)

    def working_path(self, descriptor: FeedDescriptor) -> Path:
        return self.output_directory / self.TEMP_FILE_NAME.format(name=descriptor.data_stream_name)

    def _working_file(self, descriptor: FeedDescriptor) -> WorkingFile:
        return WorkingFile(
            descriptor=descriptor,
            path=self.working_path(descriptor),
            published_path=self.published_path(descriptor)
        )

    @staticmethod
    def _csv_writer(handle, descriptor: FeedDescriptor, quoting: int = csv.QUOTE_MINIMAL):
        return csv.writer(
            handle,
            delimiter=descriptor.delimiter,
            quotechar='"',
            quoting=quoting,
            lineterminator="\n"
        )

    def open(self, descriptor: FeedDescriptor) -> WorkingFile:
        """
        Create (or truncate) the working file and write the header row.

        Raises:
            FeedWriteError: If the directory or file cannot be written
        """
        working_file = self._working_file(descriptor)
        try:
            self.output_directory.mkdir(parents=True, exist_ok=True)
            with open(working_file.path, "w", newline="", encoding="utf-8") as handle:
                self._csv_writer(handle, descriptor).writerow(descriptor.header)
        except OSError as e:
            raise FeedWriteError(f"Could not open {working_file.path} for writing: {e}") from e
        return working_file

    def resume(self, descriptor: FeedDescriptor, committed_offset: int) -> WorkingFile:
        """
        Reopen the working file of a running job.

        Bytes past ``committed_offset`` belong to a batch that never
        committed and are cut off, so that batch can be written again.

        Raises:
            FeedWriteError: If the working file is missing or shorter than
                the committed offset
        """
        working_file = self._working_file(descriptor)
        try:
            size = working_file.path.stat().st_size
            if size < committed_offset:
                raise FeedWriteError(
                    f"Working file {working_file.path} is shorter ({size}) than its "
                    f"committed length ({committed_offset})"
                )
            if size > committed_offset:
                os.truncate(working_file.path, committed_offset)
        except FileNotFoundError as e:
            raise FeedWriteError(f"Working file {working_file.path} is missing") from e
        except OSError as e:
            raise FeedWriteError(f"Could not reopen {working_file.path}: {e}") from e
        return working_file

    def append_rows(self, working_file: WorkingFile, rows: Iterable[Mapping[str, Any]]) -> int:
        """
        Append one line per row in header order.

        Missing fields are written as empty strings. Minimal quoting only
        covers characters of the line terminator, so a row holding a bare
        carriage return is written fully quoted.

        Returns:
            Size of the working file in bytes after the append

        Raises:
            FeedWriteError: On any I/O failure
        """
        header = working_file.descriptor.header
        try:
            with open(working_file.path, "a", newline="", encoding="utf-8") as handle:
                writer = self._csv_writer(handle, working_file.descriptor)
                quoted_writer = self._csv_writer(handle, working_file.descriptor, csv.QUOTE_ALL)
                for row in rows:
                    values = [serialize_value(row.get(field)) for field in header]
                    if any("\r" in value for value in values):
                        quoted_writer.writerow(values)
                    else:
                        writer.writerow(values)
            return working_file.path.stat().st_size
        except OSError as e:
            raise FeedWriteError(f"Could not write to {working_file.path}: {e}") from e

    def finalize(self, working_file: WorkingFile) -> PublishedFile:
        """
        Flush the working file and atomically replace the published file.

        On failure the previously published file is left untouched.

        Raises:
            FeedFinalizeError: If the working file cannot be synced or moved
        """
        try:
            with open(working_file.path, "ab") as handle:
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(working_file.path, working_file.published_path)
            size = working_file.published_path.stat().st_size
        except OSError as e:
            raise FeedFinalizeError(
                f"Could not promote {working_file.path} to {working_file.published_path}: {e}"
            ) from e

        return PublishedFile(
            feed_type=working_file.descriptor.feed_type,
            path=working_file.published_path,
            size_bytes=size
        )

    def size(self, working_file: WorkingFile) -> int:
        """Current length of the working file in bytes."""
        try:
            return working_file.path.stat().st_size
        except OSError as e:
            raise FeedWriteError(f"Could not stat {working_file.path}: {e}") from e

    def discard(self, descriptor: FeedDescriptor) -> bool:
        """
        Delete a working file that will not be published.

        A file that cannot be removed is logged and left behind; the next
        ``open`` truncates it.

        Returns:
            False if the file exists but could not be removed
        """
        path = self.working_path(descriptor)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.log(
                "working_file_discard_failed", logging.WARNING,
                feed=descriptor.data_stream_name, path=str(path), error=str(e)
            )
            return False
        return True

    def published_file(self, descriptor: FeedDescriptor) -> Optional[PublishedFile]:
        """The currently published file, if one exists."""
        path = self.published_path(descriptor)
        if not path.is_file():
            return None
        return PublishedFile(feed_type=descriptor.feed_type, path=path, size_bytes=path.stat().st_size)
