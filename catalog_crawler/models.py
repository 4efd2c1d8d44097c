from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple

from .errors import PayloadError


def _lookup(data: Mapping[str, Any], key: str, default: Any = None) -> Any:
    """Case-insensitive key lookup; the category payload mixes `ID` and `id`."""
    if key in data:
        return data[key]
    lowered = key.lower()
    for k, v in data.items():
        if isinstance(k, str) and k.lower() == lowered:
            return v
    return default


def _as_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return default


def _as_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _as_flag(value: Any) -> Optional[bool]:
    """Flags such as `success` and `auto_down` arrive as bools, numbers or strings."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ("1", "true", "yes", "y")


@dataclass(frozen=True)
class SubCategory:
    id: int
    name: str = ""
    url: str = ""
    product_num: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SubCategory":
        if not isinstance(data, Mapping) or _lookup(data, "id") is None:
            raise PayloadError(f"sub-category entry without id: {data!r}")
        return cls(
            id=_as_int(_lookup(data, "id")),
            name=_as_str(_lookup(data, "name")),
            url=_as_str(_lookup(data, "url")),
            product_num=_as_int(_lookup(data, "product_num")),
        )


@dataclass(frozen=True)
class Category:
    id: int
    name: str = ""
    url: str = ""
    subs: Tuple[SubCategory, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Category":
        if not isinstance(data, Mapping) or _lookup(data, "id") is None:
            raise PayloadError(f"category entry without id: {data!r}")
        subs = _lookup(data, "subs") or []
        if not isinstance(subs, list):
            raise PayloadError(f"category {_lookup(data, 'id')} has non-list subs")
        return cls(
            id=_as_int(_lookup(data, "id")),
            name=_as_str(_lookup(data, "name")),
            url=_as_str(_lookup(data, "url")),
            subs=tuple(SubCategory.from_dict(s) for s in subs),
        )


@dataclass(frozen=True)
class ProductInfo:
    number: str = ""
    title: str = ""
    unit: str = ""
    packaging: str = ""
    package_method: str = ""
    weight: float = 0.0
    min_quantity: int = 0
    max_quantity: int = 0
    pre_unit: int = 0
    step: int = 0


@dataclass(frozen=True)
class StockLevels:
    total: int = 0
    shenzhen: int = 0
    jiangsu: int = 0
    hong_kong: int = 0


@dataclass(frozen=True)
class PriceTier:
    quantity: int
    unit_price: float

    @classmethod
    def parse(cls, raw: Any) -> Optional["PriceTier"]:
        """Tiers are `[quantity, price, ...]` lists; anything else is dropped."""
        if not isinstance(raw, (list, tuple)) or len(raw) < 2:
            return None
        try:
            return cls(quantity=int(float(raw[0])), unit_price=float(raw[1]))
        except (TypeError, ValueError):
            return None


def _parse_attributes(raw: Any) -> Tuple[Tuple[str, str], ...]:
    """Attributes come either as a map or as a list of `{name, value}` objects."""
    if isinstance(raw, Mapping):
        return tuple((str(k), _as_str(v)) for k, v in raw.items())
    pairs: List[Tuple[str, str]] = []
    if isinstance(raw, list):
        for i, item in enumerate(raw):
            if isinstance(item, Mapping):
                name = _lookup(item, "name", _lookup(item, "key", str(i)))
                pairs.append((_as_str(name), _as_str(_lookup(item, "value"))))
            else:
                pairs.append((str(i), _as_str(item)))
    return tuple(pairs)


@dataclass(frozen=True)
class ProductRecord:
    id: int
    number: str
    info: ProductInfo = field(default_factory=ProductInfo)
    manufacturer: str = ""
    stock: StockLevels = field(default_factory=StockLevels)
    status: str = ""
    categories: Tuple[str, ...] = ()
    url: str = ""
    package: str = ""
    datasheet: Tuple[Tuple[str, str], ...] = ()
    prices: Tuple[PriceTier, ...] = ()
    auto_down: Optional[bool] = None
    attributes: Tuple[Tuple[str, str], ...] = ()

    @property
    def datasheet_urls(self) -> Tuple[str, ...]:
        return tuple(url for _, url in self.datasheet if url)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProductRecord":
        if not isinstance(data, Mapping):
            raise PayloadError(f"product entry is not an object: {type(data).__name__}")
        if "number" not in data and "id" not in data:
            raise PayloadError("product entry has neither id nor number")

        info = data.get("info") or {}
        manufacturer = data.get("manufacturer") or {}
        datasheet = data.get("datasheet") or {}
        if not isinstance(info, Mapping) or not isinstance(manufacturer, Mapping):
            raise PayloadError(f"product {data.get('number')!r} has malformed nested objects")
        if not isinstance(datasheet, Mapping):
            # the API sends [] instead of {} when there is no datasheet
            datasheet = {}

        tiers = (PriceTier.parse(p) for p in (data.get("price") or []))
        return cls(
            id=_as_int(data.get("id")),
            number=_as_str(data.get("number")),
            info=ProductInfo(
                number=_as_str(info.get("number")),
                title=_as_str(info.get("title")),
                unit=_as_str(info.get("unit")),
                packaging=_as_str(info.get("packaging")),
                package_method=_as_str(info.get("packagemethod")),
                weight=_as_float(info.get("weight")),
                min_quantity=_as_int(info.get("min")),
                max_quantity=_as_int(info.get("max")),
                pre_unit=_as_int(info.get("pre_unit")),
                step=_as_int(info.get("step")),
            ),
            manufacturer=_as_str(manufacturer.get("en")),
            stock=StockLevels(
                total=_as_int(data.get("stock")),
                shenzhen=_as_int(data.get("stock_sz")),
                jiangsu=_as_int(data.get("stock_js")),
                hong_kong=_as_int(data.get("stock_hk")),
            ),
            status=_as_str(data.get("status")),
            categories=tuple(_as_str(c) for c in (data.get("categories") or [])),
            url=_as_str(data.get("url")),
            package=_as_str(data.get("package")),
            datasheet=tuple((str(k), _as_str(v)) for k, v in datasheet.items()),
            prices=tuple(t for t in tiers if t is not None),
            auto_down=_as_flag(data.get("auto_down")),
            attributes=_parse_attributes(data.get("attributes")),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Server-shaped representation; round-trips through from_dict()."""
        return {
            "id": self.id,
            "number": self.number,
            "info": {
                "number": self.info.number,
                "title": self.info.title,
                "unit": self.info.unit,
                "packaging": self.info.packaging,
                "packagemethod": self.info.package_method,
                "weight": self.info.weight,
                "min": self.info.min_quantity,
                "max": self.info.max_quantity,
                "pre_unit": self.info.pre_unit,
                "step": self.info.step,
            },
            "url": self.url,
            "manufacturer": {"en": self.manufacturer},
            "stock": self.stock.total,
            "stock_sz": self.stock.shenzhen,
            "stock_js": self.stock.jiangsu,
            "stock_hk": self.stock.hong_kong,
            "status": self.status,
            "categories": list(self.categories),
            "package": self.package,
            "datasheet": dict(self.datasheet),
            "price": [[t.quantity, t.unit_price] for t in self.prices],
            "auto_down": self.auto_down,
            "attributes": dict(self.attributes),
        }


@dataclass(frozen=True)
class PageResult:
    success: bool
    items: Tuple[ProductRecord, ...]
    current_page: int
    last_page: int
    total_page: int
    total: int = 0


@dataclass(frozen=True)
class SearchResponse:
    success: bool
    message: str = ""
    code: int = 0
    page: Optional[PageResult] = None

    @classmethod
    def from_dict(cls, payload: Any) -> "SearchResponse":
        if not isinstance(payload, Mapping) or "success" not in payload:
            raise PayloadError("search response is not an object with a success flag")

        success = bool(_as_flag(payload.get("success")))
        message = _as_str(payload.get("message"))
        code = _as_int(payload.get("code"))
        if not success:
            # blocked responses carry no usable result
            return cls(success=False, message=message, code=code)

        result = payload.get("result")
        if not isinstance(result, Mapping):
            raise PayloadError("successful search response without result object")
        data = result.get("data") or []
        if not isinstance(data, list):
            raise PayloadError("search result data is not a list")

        page = PageResult(
            success=True,
            items=tuple(ProductRecord.from_dict(item) for item in data),
            current_page=_as_int(result.get("current_page"), default=1),
            last_page=_as_int(result.get("last_page"), default=1),
            total_page=_as_int(result.get("total_page")),
            total=_as_int(result.get("total")),
        )
        return cls(success=True, message=message, code=code, page=page)


@dataclass(frozen=True)
class CrawlJob:
    subcategory: SubCategory
    worker: str


@dataclass(frozen=True)
class SubCategoryBatch:
    subcategory: SubCategory
    records: Tuple[ProductRecord, ...]
    datasheets: FrozenSet[str]
    pages: int
    rotations: int = 0


@dataclass(frozen=True)
class CrawlSnapshot:
    pages_fetched: int
    rotations: int
    subcategories_completed: int
    subcategories_aborted: int
    records: int
    sink_failures: int
    elapsed_secs: float
    timestamp: float
