from pydantic import BaseModel

DEFAULT_PAGE_SIZE = 10


class Pagination(BaseModel):
    """
    Page/size window over a listing.

    size == 0 means the default size; a negative size means unlimited and
    `page` is taken as a raw offset.
    """

    page: int = 0
    size: int = 0

    @property
    def limit(self) -> int | None:
        if self.size < 0:
            return None
        return self.size or DEFAULT_PAGE_SIZE

    @property
    def offset(self) -> int:
        if self.size < 0:
            return max(self.page, 0)
        return max(self.page, 0) * (self.size or DEFAULT_PAGE_SIZE)

    @classmethod
    def unlimited(cls) -> "Pagination":
        return cls(page=0, size=-1)
