from __future__ import annotations

from pathlib import Path
from threading import Lock
from typing import Iterable, List, Set, Union


class DatasheetCollector:
    """Insert-only, lock-guarded set of datasheet URLs for one crawl run.

    Constructed by the runner and handed to every worker; never module-global.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._urls: Set[str] = set()

    def add(self, url: str) -> bool:
        """Insert one URL; returns True if it was not seen before."""
        if not url:
            return False
        with self._lock:
            if url in self._urls:
                return False
            self._urls.add(url)
            return True

    def add_all(self, urls: Iterable[str]) -> int:
        """Insert many URLs under a single lock; returns the number of new ones."""
        fresh = [u for u in urls if u]
        with self._lock:
            before = len(self._urls)
            self._urls.update(fresh)
            return len(self._urls) - before

    def __len__(self) -> int:
        with self._lock:
            return len(self._urls)

    def __contains__(self, url: object) -> bool:
        with self._lock:
            return url in self._urls

    def sorted_urls(self) -> List[str]:
        """Plain code-point order, so 'Z' sorts before 'a'."""
        with self._lock:
            return sorted(self._urls)

    def write(self, path: Union[str, Path]) -> int:
        urls = self.sorted_urls()
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "w", encoding="utf-8") as f:
            for url in urls:
                f.write(url + "\n")
        return len(urls)
