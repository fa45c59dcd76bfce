"""공통 모델 정의"""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar('T')


class PageResponse(BaseModel, Generic[T]):
    """페이징 응답"""
    items: list[T]
    total: int
    page: int
    size: int
    pages: int

    @classmethod
    def create(cls, items: list[T], total: int, page: int, size: int):
        pages = (total + size - 1) // size if size > 0 else 0
        return cls(items=items, total=total, page=page, size=size, pages=pages)
