import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Union
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import cache, database, schemas
from .auth import get_current_admin
from .config import settings
from .models import PostStatus, utcnow
from .queries import (
    AnalyticsQueries,
    CategoryQueries,
    PostQueries,
    QueryError,
    TagQueries,
    UserQueries,
)
from .utils import normalize_pagination

# --- LOGGING ---
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    database.init_db()
    yield


app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)


@app.exception_handler(QueryError)
async def query_error_handler(request: Request, exc: QueryError):
    logger.error("%s %s failed in %s", request.method, request.url.path, exc.operation)
    return JSONResponse(status_code=500, content={"detail": "Query failed"})


@app.get("/health")
def health():
    if not database.check_connection():
        return JSONResponse(status_code=503, content={"status": "unavailable", "database": False})
    return {"status": "ok", "database": True}

# ==========================================
# PUBLIC FACING ENDPOINTS (WITH REDIS CACHING)
# ==========================================

@app.get("/posts", response_model=schemas.PaginatedPosts)
def list_published_posts(page: int = 1, page_size: int = settings.POSTS_PER_PAGE, db: Session = Depends(database.get_db)):
    page, page_size = normalize_pagination(page, page_size)
    cache_key = cache.published_list_key(page, page_size)

    cached_data = cache.get_json(cache_key)
    if cached_data:
        return cached_data

    result = PostQueries(db).get_published(page, page_size)
    cache.set_json(cache_key, result.model_dump(mode="json"))
    return result


@app.get("/posts/{slug}", response_model=schemas.PostDetail)
def get_published_post(slug: str, db: Session = Depends(database.get_db)):
    posts = PostQueries(db)

    post = cache.get_json(cache.post_key(slug))
    if post is None:
        detail = posts.get_by_slug(slug)
        if detail is None or detail.status != PostStatus.published:
            raise HTTPException(status_code=404, detail="Published post not found")
        post = detail.model_dump(mode="json")
        cache.set_json(cache.post_key(slug), post)

    view_count = posts.increment_view_count(post["id"])
    if view_count is None:
        # deleted since it was cached
        cache.clear_post_cache(slug)
        raise HTTPException(status_code=404, detail="Published post not found")
    post["view_count"] = view_count
    return post


@app.get("/search", response_model=schemas.SearchResults)
def search_posts(q: str = "", page: int = 1, page_size: int = settings.POSTS_PER_PAGE, db: Session = Depends(database.get_db)):
    return PostQueries(db).search(q, page, page_size)


@app.get("/categories", response_model=List[schemas.CategoryWithCount])
def list_categories(db: Session = Depends(database.get_db)):
    return CategoryQueries(db).get_all()


@app.get("/categories/{slug}/posts", response_model=Union[schemas.CategoryPosts, schemas.PaginatedPosts])
def list_category_posts(
    slug: str,
    page: int = 1,
    page_size: int = settings.POSTS_PER_PAGE,
    fallback: bool = False,
    db: Session = Depends(database.get_db),
):
    """Published posts in a category.

    With ``fallback=true`` an unknown category shows the whole published list
    instead of a 404.
    """
    posts = PostQueries(db)
    if fallback:
        return posts.get_by_category_or_published(slug, page, page_size)
    result = posts.get_by_category(slug, page, page_size)
    if result is None:
        raise HTTPException(status_code=404, detail="Category not found")
    return result


@app.get("/tags", response_model=List[schemas.TagWithCount])
def list_tags(db: Session = Depends(database.get_db)):
    return TagQueries(db).get_all()


@app.get("/tags/popular", response_model=List[schemas.TagWithCount])
def popular_tags(limit: int = 10, db: Session = Depends(database.get_db)):
    return TagQueries(db).get_popular(limit)


@app.get("/tags/{slug}/posts", response_model=schemas.TagPosts)
def list_tag_posts(slug: str, page: int = 1, page_size: int = settings.POSTS_PER_PAGE, db: Session = Depends(database.get_db)):
    result = PostQueries(db).get_by_tag(slug, page, page_size)
    if result is None:
        raise HTTPException(status_code=404, detail="Tag not found")
    return result


@app.get("/stats/most-viewed", response_model=List[schemas.PostHighlight])
def most_viewed_posts(limit: int = 5, db: Session = Depends(database.get_db)):
    return AnalyticsQueries(db).get_most_viewed(limit)


@app.get("/stats/recent", response_model=List[schemas.PostHighlight])
def recent_posts(limit: int = 5, db: Session = Depends(database.get_db)):
    return AnalyticsQueries(db).get_recent_posts(limit)


@app.get("/sitemap", response_model=List[schemas.SitemapEntry])
def sitemap(db: Session = Depends(database.get_db)):
    now = datetime.now(timezone.utc)
    base_url = settings.SITE_URL.rstrip("/")
    entries = [
        schemas.SitemapEntry(url=base_url, last_modified=now, change_frequency="daily", priority=1),
        schemas.SitemapEntry(url=f"{base_url}/blog", last_modified=now, change_frequency="daily", priority=0.8),
        schemas.SitemapEntry(url=f"{base_url}/about", last_modified=now, change_frequency="monthly", priority=0.7),
    ]
    try:
        published = PostQueries(db).get_published(1, 1000)
    except QueryError:
        # static routes are still worth serving
        return entries
    for post in published.posts:
        entries.append(
            schemas.SitemapEntry(
                url=f"{base_url}/blog/{post.slug}",
                last_modified=post.updated_at or post.created_at,
                change_frequency="weekly",
                priority=0.6,
            )
        )
    return entries

# ==========================================
# ADMIN ENDPOINTS
# ==========================================

@app.get("/admin/posts", response_model=schemas.PaginatedPosts)
def admin_list_posts(page: int = 1, page_size: int = settings.DEFAULT_PAGE_SIZE, db: Session = Depends(database.get_db), admin_email: str = Depends(get_current_admin)):
    return PostQueries(db).get_all(page, page_size)


@app.post("/admin/posts", response_model=schemas.PostResponse, status_code=201)
def admin_create_post(post_in: schemas.AdminPostRequest, db: Session = Depends(database.get_db), admin_email: str = Depends(get_current_admin)):
    posts = PostQueries(db)
    if posts.slug_exists(post_in.slug):
        raise HTTPException(status_code=409, detail="Slug already in use")

    author = UserQueries(db).get_by_email(admin_email)
    status = post_in.status or PostStatus.draft
    new_post = posts.create(
        schemas.PostCreate(
            title=post_in.title,
            slug=post_in.slug,
            content=post_in.content,
            excerpt=post_in.summary,
            cover_image=post_in.cover_image,
            seo_title=post_in.seo_title,
            seo_description=post_in.seo_description,
            status=status,
            author_id=author.id if author else None,
            published_at=utcnow() if status == PostStatus.published else None,
            category_ids=post_in.category_ids or [],
            tag_ids=post_in.tag_ids or [],
        )
    )
    cache.clear_post_cache()
    return new_post


@app.get("/admin/posts/{id}", response_model=schemas.PostDetail)
def admin_get_post(id: UUID, db: Session = Depends(database.get_db), admin_email: str = Depends(get_current_admin)):
    post = PostQueries(db).get_by_id(id)
    if not post:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@app.put("/admin/posts/{id}", response_model=schemas.PostResponse)
def admin_update_post(id: UUID, post_in: schemas.AdminPostRequest, db: Session = Depends(database.get_db), admin_email: str = Depends(get_current_admin)):
    posts = PostQueries(db)
    existing = posts.get_by_id(id)
    if not existing:
        raise HTTPException(status_code=404, detail="Post not found")
    if posts.slug_exists(post_in.slug, exclude_id=id):
        raise HTTPException(status_code=409, detail="Slug already in use")

    fields = {
        "title": post_in.title,
        "slug": post_in.slug,
        "content": post_in.content,
        "excerpt": post_in.summary,
    }
    for optional in ("status", "cover_image", "seo_title", "seo_description", "category_ids", "tag_ids"):
        value = getattr(post_in, optional)
        if value is not None:
            fields[optional] = value
    # publishing stamps the date once; later edits keep it
    if post_in.status == PostStatus.published and existing.published_at is None:
        fields["published_at"] = utcnow()

    updated = posts.update(id, schemas.PostUpdate(**fields))
    if not updated:
        raise HTTPException(status_code=404, detail="Post not found")
    cache.clear_post_cache(existing.slug)
    cache.clear_post_cache(updated.slug)
    return updated


@app.delete("/admin/posts/{id}")
def admin_delete_post(id: UUID, db: Session = Depends(database.get_db), admin_email: str = Depends(get_current_admin)):
    posts = PostQueries(db)
    existing = posts.get_by_id(id)
    if not existing or not posts.delete(id):
        raise HTTPException(status_code=404, detail="Post not found")
    cache.clear_post_cache(existing.slug)
    return {"success": True}


@app.get("/admin/stats", response_model=schemas.SiteStats)
def admin_site_stats(db: Session = Depends(database.get_db), admin_email: str = Depends(get_current_admin)):
    return AnalyticsQueries(db).get_site_stats()


@app.get("/admin/users", response_model=schemas.PaginatedUsers)
def admin_list_users(page: int = 1, page_size: int = settings.DEFAULT_PAGE_SIZE, db: Session = Depends(database.get_db), admin_email: str = Depends(get_current_admin)):
    return UserQueries(db).get_all(page, page_size)


@app.post("/admin/categories", response_model=schemas.CategoryResponse, status_code=201)
def admin_create_category(category_in: schemas.CategoryCreate, db: Session = Depends(database.get_db), admin_email: str = Depends(get_current_admin)):
    categories = CategoryQueries(db)
    if categories.exists(name=category_in.name, slug=category_in.slug):
        raise HTTPException(status_code=409, detail="Category name or slug already in use")
    return categories.create(category_in)


@app.post("/admin/tags", response_model=schemas.TagResponse, status_code=201)
def admin_create_tag(tag_in: schemas.TagCreate, db: Session = Depends(database.get_db), admin_email: str = Depends(get_current_admin)):
    tags = TagQueries(db)
    if tags.exists(name=tag_in.name, slug=tag_in.slug):
        raise HTTPException(status_code=409, detail="Tag name or slug already in use")
    return tags.create(tag_in)
