from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, List, Optional


@dataclass
class CrawlConfig:
    """
    Settings for one crawl run. Plain dataclass; CLI flags are applied on top
    of whatever from_env() or from_file() produced.
    """
    products_url: str = "https://lcsc.com/products"
    search_url: str = "https://lcsc.com/api/products/search"
    workers: int = 4
    page_attempts: int = 5
    first_page_attempts: int = 3
    category_attempts: int = 3
    backoff_base: float = 0.0
    backoff_max: float = 10.0
    request_timeout: float = 30.0
    impersonate: str = "chrome120"
    output_dir: str = "json"
    datasheet_path: str = "pdf/datasheets.txt"
    index_host: Optional[str] = None
    index_uid: str = "lcsc"
    index_api_key: Optional[str] = None
    # Tor instance i listens on socks=base+2i, control=base+2i+1
    tor_port_base: int = 19050
    launch_tor: bool = True
    tor_cmd: str = "tor"
    tor_password: Optional[str] = None
    # When set, proxies replace Tor as the identity source
    proxies: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_env(cls) -> "CrawlConfig":
        """Build config from CRAWLER_* environment variables (all optional)."""
        d = cls()

        def _get(name: str, default: Any) -> str:
            return os.getenv(f"CRAWLER_{name}", str(default) if default is not None else "")

        def _flag(name: str, default: bool) -> bool:
            return _get(name, "1" if default else "0").strip().lower() in ("1", "true", "yes", "on")

        return cls(
            products_url=_get("PRODUCTS_URL", d.products_url),
            search_url=_get("SEARCH_URL", d.search_url),
            workers=int(_get("WORKERS", d.workers)),
            page_attempts=int(_get("PAGE_ATTEMPTS", d.page_attempts)),
            first_page_attempts=int(_get("FIRST_PAGE_ATTEMPTS", d.first_page_attempts)),
            category_attempts=int(_get("CATEGORY_ATTEMPTS", d.category_attempts)),
            backoff_base=float(_get("BACKOFF_BASE", d.backoff_base)),
            backoff_max=float(_get("BACKOFF_MAX", d.backoff_max)),
            request_timeout=float(_get("REQUEST_TIMEOUT", d.request_timeout)),
            impersonate=_get("IMPERSONATE", d.impersonate),
            output_dir=_get("OUTPUT_DIR", d.output_dir),
            datasheet_path=_get("DATASHEET_PATH", d.datasheet_path),
            index_host=_get("INDEX_HOST", None) or None,
            index_uid=_get("INDEX_UID", d.index_uid),
            index_api_key=_get("INDEX_API_KEY", None) or None,
            tor_port_base=int(_get("TOR_PORT_BASE", d.tor_port_base)),
            launch_tor=_flag("LAUNCH_TOR", d.launch_tor),
            tor_cmd=_get("TOR_CMD", d.tor_cmd),
            tor_password=_get("TOR_PASSWORD", None) or None,
            proxies=[p.strip() for p in _get("PROXIES", "").split(",") if p.strip()],
        )

    @classmethod
    def from_file(cls, path: str | os.PathLike[str]) -> "CrawlConfig":
        """Load configuration from a JSON object; unknown keys are rejected."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        known = {fld.name for fld in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"unknown config keys: {', '.join(sorted(unknown))}")
        return cls(**data)

    def validate(self) -> None:
        if self.workers <= 0:
            raise ValueError("workers must be > 0")
        for name in ("page_attempts", "first_page_attempts", "category_attempts"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")
        if not self.products_url or not self.search_url:
            raise ValueError("products_url and search_url are required")
