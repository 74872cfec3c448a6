"""
외부 카탈로그 서비스가 제공하는 상품 스냅샷 스키마.
동기화 엔진은 읽기만 하며 절대 수정하지 않는다.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MediaItem(BaseModel):
    url: str
    type: str = "image"
    position: int = 0
    alt: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class SeoFields(BaseModel):
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    meta_keywords: Optional[str] = None
    url_key: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class Dimensions(BaseModel):
    length: Optional[Decimal] = None
    width: Optional[Decimal] = None
    height: Optional[Decimal] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_complete(self) -> bool:
        return self.length is not None and self.width is not None and self.height is not None


class AttributeValue(BaseModel):
    """
    EAV 속성값. locale/channel 이 지정된 값은 해당 로케일/채널에서만 유효하다.
    """
    code: str
    value: Any = None
    locale: Optional[str] = None
    channel: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class ProductSnapshot(BaseModel):
    id: str
    sku: str = ""
    name: str = ""
    status: Optional[str] = None
    price: Optional[Decimal] = None
    compare_at_price: Optional[Decimal] = None
    stock: Optional[int] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    family_code: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    media: List[MediaItem] = Field(default_factory=list)
    seo: SeoFields = Field(default_factory=SeoFields)
    attributes: List[AttributeValue] = Field(default_factory=list)
    weight: Optional[Decimal] = None
    dimensions: Optional[Dimensions] = None
    gtin: Optional[str] = None
    mpn: Optional[str] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    def attribute_values(self, code: str, channel_code: Optional[str] = None) -> List[AttributeValue]:
        """채널 스코프를 고려한 속성값 목록 (다른 채널 전용 값은 제외)"""
        return [
            a for a in self.attributes
            if a.code == code and (a.channel is None or a.channel.lower() == (channel_code or "").lower())
        ]

    def to_payload(self) -> dict:
        return self.model_dump(mode="json")
