from sqlalchemy.orm import Query

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 200


def paginate_query(query: Query, *, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> tuple[list, int, int, int]:
    safe_page = max(1, page)
    safe_page_size = max(1, min(page_size, MAX_PAGE_SIZE))
    total = query.order_by(None).count()
    items = query.offset((safe_page - 1) * safe_page_size).limit(safe_page_size).all()
    return items, total, safe_page, safe_page_size
