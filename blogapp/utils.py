import math
import re
from typing import Tuple

from slugify import slugify
from sqlalchemy import select
from sqlalchemy.orm import Session

from . import models
from .config import settings

_WHITESPACE = re.compile(r"\s+")


def slugify_title(title: str) -> str:
    return slugify(title or "")


def generate_unique_slug(db: Session, title: str, model=models.Post, exclude_id=None) -> str:
    """Generate a URL-friendly, unique slug for the given title.

    If a slug collision occurs, append a counter until the slug is unique.
    If `exclude_id` is provided, ignore that row when checking collisions.
    """
    base = slugify_title(title) or "untitled"
    slug = base
    counter = 1
    while True:
        stmt = select(model.id).where(model.slug == slug)
        if exclude_id is not None:
            stmt = stmt.where(model.id != exclude_id)
        if db.execute(stmt.limit(1)).first() is None:
            break
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def reading_time(content: str, words_per_minute: int = None) -> int:
    """Estimated minutes to read `content`, never less than one."""
    wpm = words_per_minute or settings.WORDS_PER_MINUTE
    words = len([w for w in _WHITESPACE.split(content or "") if w])
    return max(1, math.ceil(words / wpm))


def normalize_pagination(page=1, page_size=None) -> Tuple[int, int]:
    default_size = settings.DEFAULT_PAGE_SIZE
    try:
        page = int(page)
    except (TypeError, ValueError):
        page = 1
    try:
        page_size = int(page_size)
    except (TypeError, ValueError):
        page_size = default_size
    if page < 1:
        page = 1
    if page_size < 1:
        page_size = default_size
    return page, page_size


def total_pages(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if page_size else 0
