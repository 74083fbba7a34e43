from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass(slots=True)
class ProductRecord:
    name: str
    description: str
    price: str
    url: str
    image_url: str
    store_name: str | None = None
    message_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SourceRecord:
    url: str
    title: str = ""
    answer: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
