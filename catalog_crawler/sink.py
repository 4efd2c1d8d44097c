from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Union

import meilisearch
import requests
from meilisearch.errors import MeilisearchError

from .errors import PayloadError, SinkError
from .models import ProductRecord

logger = logging.getLogger(__name__)


class ResultSink(ABC):
    """Destination for finished sub-category batches.

    accept() is called at most once per successfully crawled sub-category,
    possibly from several worker threads at once.
    """

    @abstractmethod
    def accept(self, subcategory_id: int, records: Sequence[ProductRecord]) -> None:
        """Persist one batch; raise SinkError if it is rejected."""

    def close(self) -> None:
        """Flush pending writes and release resources."""


class JsonDirectorySink(ResultSink):
    """Writes `<directory>/<subcategory_id>.json`, an indented JSON array per batch."""

    def __init__(self, directory: Union[str, Path]) -> None:
        self._dir = Path(directory)

    def path_for(self, subcategory_id: int) -> Path:
        return self._dir / f"{subcategory_id}.json"

    def accept(self, subcategory_id: int, records: Sequence[ProductRecord]) -> None:
        target = self.path_for(subcategory_id)
        tmp = target.with_suffix(".json.tmp")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump([r.to_dict() for r in records], f, indent=4, ensure_ascii=False)
                f.write("\n")
            os.replace(tmp, target)
        except OSError as exc:
            raise SinkError(f"could not write {target}: {exc}") from exc


def to_index_document(record: ProductRecord, updated: _dt.datetime) -> Dict[str, Any]:
    return {
        "ID": record.number,
        "MPN": record.info.number,
        "Weight": record.info.weight,
        "Packaging": record.info.packaging,
        "Title": record.info.title,
        "URL": record.url,
        "Manufacturer": record.manufacturer,
        "Stock": record.stock.total,
        "Datasheet": list(record.datasheet_urls),
        "Package": record.package,
        "Categories": list(record.categories),
        "Status": record.status,
        "StockSZ": record.stock.shenzhen,
        "StockJS": record.stock.jiangsu,
        "StockHK": record.stock.hong_kong,
        "Updated": updated.isoformat(),
    }


class SearchIndexSink(ResultSink):
    """Pushes batches to a MeiliSearch index through the official client.

    The index is created with primary key `ID` on first use; documents are
    added or updated, so re-importing a batch is idempotent.
    """

    def __init__(
        self,
        host: str,
        index_uid: str = "lcsc",
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[meilisearch.Client] = None,
    ) -> None:
        self._uid = index_uid
        self._client = client or meilisearch.Client(host, api_key, timeout=timeout)
        self._index_lock = threading.Lock()
        self._index_ready = False

    def _call(self, what: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (MeilisearchError, requests.RequestException) as exc:
            raise SinkError(f"{what} on index {self._uid}: {exc}") from exc

    def ensure_index(self) -> None:
        with self._index_lock:
            if self._index_ready:
                return
            # creation is asynchronous on the server; an existing index only fails the task
            self._call("create index", self._client.create_index, self._uid, {"primaryKey": "ID"})
            self._index_ready = True

    def accept(self, subcategory_id: int, records: Sequence[ProductRecord]) -> None:
        if not records:
            return
        self.ensure_index()
        updated = _dt.datetime.now(tz=_dt.timezone.utc)
        documents = [to_index_document(r, updated) for r in records]
        index = self._client.index(self._uid)
        self._call("update documents", index.update_documents, documents, primary_key="ID")
        logger.debug("Queued %d documents from sub-category %d for indexing", len(documents), subcategory_id)

    def pending_tasks(self) -> int:
        tasks = self._call(
            "list tasks",
            self._client.get_tasks,
            {"indexUids": [self._uid], "statuses": ["enqueued", "processing"]},
        )
        total = getattr(tasks, "total", None)
        if total is not None:
            return int(total)
        return len(tasks.results or [])

    def wait_idle(self, poll_secs: float = 1.0, timeout: Optional[float] = None) -> bool:
        """Block until the index has no queued updates; False on timeout."""
        deadline = None if timeout is None else time.time() + timeout
        while True:
            pending = self.pending_tasks()
            if pending == 0:
                return True
            if deadline is not None and time.time() >= deadline:
                return False
            logger.info("Waiting for %d index updates to finish...", pending)
            time.sleep(poll_secs)


class MultiSink(ResultSink):
    """Forwards every batch to each sink in order; the first rejection is raised."""

    def __init__(self, sinks: Iterable[ResultSink]) -> None:
        self._sinks: List[ResultSink] = list(sinks)

    def accept(self, subcategory_id: int, records: Sequence[ProductRecord]) -> None:
        for sink in self._sinks:
            sink.accept(subcategory_id, records)

    def close(self) -> None:
        for sink in self._sinks:
            sink.close()


def load_batch(path: Union[str, Path]) -> List[ProductRecord]:
    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except ValueError as exc:
            raise PayloadError(f"{path}: not valid JSON ({exc})") from exc
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise PayloadError(f"{path}: expected a JSON array of products")
    return [ProductRecord.from_dict(item) for item in raw]


def import_directory(directory: Union[str, Path], sink: ResultSink) -> int:
    """Push previously written batch files to a sink without crawling.

    Returns the number of records imported.
    """
    total = 0
    files = sorted(Path(directory).glob("*.json"))
    logger.info("Importing %d batch files from %s", len(files), directory)
    for path in files:
        records = load_batch(path)
        if not records:
            continue
        try:
            subcategory_id = int(path.stem)
        except ValueError:
            subcategory_id = 0
        sink.accept(subcategory_id, records)
        total += len(records)
    return total
