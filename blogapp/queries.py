"""Content query layer.

Query groups are plain classes bound to one SQLAlchemy session. They hold no
state of their own, so a request can build whichever groups it needs:

    posts = PostQueries(db)
    page = posts.get_published(page=2, page_size=9)

Lookups that match nothing return ``None``. Storage failures are logged and
re-raised as :class:`QueryError`; nothing here retries.
"""
import functools
import logging
import uuid
from typing import List, Optional, Union

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import schemas
from .models import Category, Post, PostCategory, PostStatus, PostTag, Tag, User, utcnow
from .utils import generate_unique_slug, normalize_pagination, reading_time, total_pages

logger = logging.getLogger(__name__)


class QueryError(Exception):
    """The store rejected a query or could not be reached."""

    def __init__(self, operation: str, params: dict = None):
        self.operation = operation
        self.params = params or {}
        super().__init__(f"Query failed: {operation}")


def query_operation(name: str):
    def decorator(func):
        @functools.wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except SQLAlchemyError as exc:
                self.db.rollback()
                params = {"args": args, **kwargs}
                logger.exception("Query failed: %s params=%r", name, params)
                raise QueryError(name, params) from exc
        return wrapper
    return decorator


def as_uuid(value) -> Optional[uuid.UUID]:
    """Coerce an id from a URL or caller into a UUID; None if it can't be one."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


def like_pattern(query: str) -> str:
    # Wildcards typed by the user are matched literally
    escaped = query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


_AUTHOR_COLUMNS = (User.id, User.name, User.email)
_PUBLISHED = Post.status == PostStatus.published
_PUBLISHED_ORDER = (Post.published_at.desc(), Post.created_at.desc())


def _author_summary(author_id, name, email) -> Optional[schemas.AuthorSummary]:
    if author_id is None:
        return None
    return schemas.AuthorSummary(id=author_id, name=name, email=email)


def _list_item(post: Post, author_id, name, email) -> schemas.PostListItem:
    fields = schemas.PostResponse.model_validate(post).model_dump()
    return schemas.PostListItem(**fields, author=_author_summary(author_id, name, email))


class _QueryGroup:
    def __init__(self, db: Session):
        self.db = db

    def _count(self, model) -> int:
        return self.db.execute(select(func.count(model.id))).scalar_one()


class UserQueries(_QueryGroup):

    @query_operation("users.get_by_id")
    def get_by_id(self, user_id) -> Optional[schemas.UserResponse]:
        user_id = as_uuid(user_id)
        if user_id is None:
            return None
        user = self.db.get(User, user_id)
        return schemas.UserResponse.model_validate(user) if user else None

    @query_operation("users.get_by_email")
    def get_by_email(self, email: str) -> Optional[schemas.UserResponse]:
        user = self.db.execute(select(User).where(User.email == email).limit(1)).scalar_one_or_none()
        return schemas.UserResponse.model_validate(user) if user else None

    @query_operation("users.get_all")
    def get_all(self, page=1, page_size=None) -> schemas.PaginatedUsers:
        page, page_size = normalize_pagination(page, page_size)
        users = self.db.execute(
            select(User)
            .order_by(User.created_at.desc())
            .limit(page_size)
            .offset((page - 1) * page_size)
        ).scalars().all()
        total = self._count(User)
        return schemas.PaginatedUsers(
            users=[schemas.UserResponse.model_validate(u) for u in users],
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages(total, page_size),
        )

    @query_operation("users.create")
    def create(self, user_in: schemas.UserCreate) -> schemas.UserResponse:
        user = User(**user_in.model_dump(exclude_none=True))
        self.db.add(user)
        self.db.commit()
        self.db.refresh(user)
        return schemas.UserResponse.model_validate(user)

    @query_operation("users.update")
    def update(self, user_id, user_in) -> Optional[schemas.UserResponse]:
        if isinstance(user_in, dict):
            user_in = schemas.UserUpdate(**user_in)
        user_id = as_uuid(user_id)
        user = self.db.get(User, user_id) if user_id else None
        if user is None:
            return None
        for field, value in user_in.model_dump(exclude_unset=True).items():
            setattr(user, field, value)
        user.updated_at = utcnow()
        self.db.commit()
        self.db.refresh(user)
        return schemas.UserResponse.model_validate(user)


class PostQueries(_QueryGroup):

    # --- single posts ---

    def _detail(self, criterion) -> Optional[schemas.PostDetail]:
        row = self.db.execute(
            select(Post, *_AUTHOR_COLUMNS)
            .outerjoin(User, Post.author_id == User.id)
            .where(criterion)
            .limit(1)
            .execution_options(populate_existing=True)
        ).first()
        if row is None:
            return None
        post, author_id, name, email = row

        categories = self.db.execute(
            select(Category)
            .join(PostCategory, PostCategory.category_id == Category.id)
            .where(PostCategory.post_id == post.id)
            .order_by(Category.name)
        ).scalars().all()
        tags = self.db.execute(
            select(Tag)
            .join(PostTag, PostTag.tag_id == Tag.id)
            .where(PostTag.post_id == post.id)
            .order_by(Tag.name)
        ).scalars().all()

        item = _list_item(post, author_id, name, email)
        return schemas.PostDetail(
            **item.model_dump(),
            categories=[schemas.CategoryResponse.model_validate(c) for c in categories],
            tags=[schemas.TagResponse.model_validate(t) for t in tags],
            reading_time=reading_time(post.content),
        )

    @query_operation("posts.get_by_id")
    def get_by_id(self, post_id) -> Optional[schemas.PostDetail]:
        post_id = as_uuid(post_id)
        if post_id is None:
            return None
        return self._detail(Post.id == post_id)

    @query_operation("posts.get_by_slug")
    def get_by_slug(self, slug: str) -> Optional[schemas.PostDetail]:
        return self._detail(Post.slug == slug)

    @query_operation("posts.slug_exists")
    def slug_exists(self, slug: str, exclude_id=None) -> bool:
        stmt = select(Post.id).where(Post.slug == slug)
        exclude_id = as_uuid(exclude_id) if exclude_id is not None else None
        if exclude_id is not None:
            stmt = stmt.where(Post.id != exclude_id)
        return self.db.execute(stmt.limit(1)).first() is not None

    # --- listings ---

    def _page(self, page, page_size, criteria=(), joins=(), order_by=_PUBLISHED_ORDER) -> dict:
        page, page_size = normalize_pagination(page, page_size)

        stmt = select(Post, *_AUTHOR_COLUMNS).outerjoin(User, Post.author_id == User.id)
        count_stmt = select(func.count(Post.id)).select_from(Post)
        for target, onclause in joins:
            stmt = stmt.join(target, onclause)
            count_stmt = count_stmt.join(target, onclause)
        if criteria:
            stmt = stmt.where(*criteria)
            count_stmt = count_stmt.where(*criteria)

        rows = self.db.execute(
            stmt.order_by(*order_by).limit(page_size).offset((page - 1) * page_size)
        ).all()
        total = self.db.execute(count_stmt).scalar_one()

        return {
            "posts": [_list_item(*row) for row in rows],
            "total": total,
            "page": page,
            "page_size": page_size,
            "total_pages": total_pages(total, page_size),
        }

    @query_operation("posts.get_all")
    def get_all(self, page=1, page_size=None) -> schemas.PaginatedPosts:
        """Every post regardless of status, newest first."""
        return schemas.PaginatedPosts(
            **self._page(page, page_size, order_by=(Post.created_at.desc(),))
        )

    @query_operation("posts.get_published")
    def get_published(self, page=1, page_size=None) -> schemas.PaginatedPosts:
        return schemas.PaginatedPosts(**self._page(page, page_size, criteria=(_PUBLISHED,)))

    @query_operation("posts.search")
    def search(self, query: str, page=1, page_size=None) -> schemas.SearchResults:
        """Case-insensitive substring match on title, content or excerpt of published posts."""
        query = query or ""
        pattern = like_pattern(query)
        matches = or_(
            Post.title.ilike(pattern, escape="\\"),
            Post.content.ilike(pattern, escape="\\"),
            Post.excerpt.ilike(pattern, escape="\\"),
        )
        result = self._page(page, page_size, criteria=(_PUBLISHED, matches))
        return schemas.SearchResults(**result, query=query)

    @query_operation("posts.get_by_category")
    def get_by_category(self, category_slug: str, page=1, page_size=None) -> Optional[schemas.CategoryPosts]:
        """Published posts filed under a category.

        Returns None when no category has this slug, which callers must tell
        apart from a category that simply has no published posts yet.
        """
        category = self.db.execute(
            select(Category).where(Category.slug == category_slug).limit(1)
        ).scalar_one_or_none()
        if category is None:
            return None
        result = self._page(
            page,
            page_size,
            criteria=(_PUBLISHED, PostCategory.category_id == category.id),
            joins=((PostCategory, PostCategory.post_id == Post.id),),
        )
        return schemas.CategoryPosts(
            **result, category=schemas.CategoryResponse.model_validate(category)
        )

    def get_by_category_or_published(
        self, category_slug: str, page=1, page_size=None
    ) -> Union[schemas.CategoryPosts, schemas.PaginatedPosts]:
        """Like get_by_category, but an unknown slug yields the unfiltered published list."""
        result = self.get_by_category(category_slug, page, page_size)
        if result is None:
            logger.info("Unknown category %r, falling back to published list", category_slug)
            return self.get_published(page, page_size)
        return result

    @query_operation("posts.get_by_tag")
    def get_by_tag(self, tag_slug: str, page=1, page_size=None) -> Optional[schemas.TagPosts]:
        tag = self.db.execute(select(Tag).where(Tag.slug == tag_slug).limit(1)).scalar_one_or_none()
        if tag is None:
            return None
        result = self._page(
            page,
            page_size,
            criteria=(_PUBLISHED, PostTag.tag_id == tag.id),
            joins=((PostTag, PostTag.post_id == Post.id),),
        )
        return schemas.TagPosts(**result, tag=schemas.TagResponse.model_validate(tag))

    # --- writes ---

    @query_operation("posts.increment_view_count")
    def increment_view_count(self, post_id) -> Optional[int]:
        """Add one to the stored counter and return the new value.

        The increment is evaluated by the database in a single UPDATE, so
        concurrent readers never lose each other's views.
        """
        post_id = as_uuid(post_id)
        if post_id is None:
            return None
        new_count = self.db.execute(
            update(Post)
            .where(Post.id == post_id)
            .values(view_count=Post.view_count + 1)
            .returning(Post.view_count)
        ).scalar_one_or_none()
        self.db.commit()
        return new_count

    def _assign_taxonomy(self, post: Post, category_ids=None, tag_ids=None):
        # dict.fromkeys drops duplicates but keeps order
        if category_ids is not None:
            post.post_categories = [
                PostCategory(category_id=cid) for cid in dict.fromkeys(category_ids)
            ]
        if tag_ids is not None:
            post.post_tags = [PostTag(tag_id=tid) for tid in dict.fromkeys(tag_ids)]

    @query_operation("posts.create")
    def create(self, post_in) -> schemas.PostResponse:
        if isinstance(post_in, dict):
            post_in = schemas.PostCreate(**post_in)
        data = post_in.model_dump(exclude={"category_ids", "tag_ids"}, exclude_none=True)
        if not data.get("slug"):
            data["slug"] = generate_unique_slug(self.db, post_in.title)

        post = Post(**data)
        self._assign_taxonomy(post, post_in.category_ids, post_in.tag_ids)
        self.db.add(post)
        self.db.commit()
        self.db.refresh(post)
        logger.info("Created post %s (%s)", post.id, post.slug)
        return schemas.PostResponse.model_validate(post)

    @query_operation("posts.update")
    def update(self, post_id, post_in) -> Optional[schemas.PostResponse]:
        if isinstance(post_in, dict):
            post_in = schemas.PostUpdate(**post_in)
        post_id = as_uuid(post_id)
        post = self.db.get(Post, post_id) if post_id else None
        if post is None:
            return None

        data = post_in.model_dump(exclude_unset=True)
        category_ids = data.pop("category_ids", None)
        tag_ids = data.pop("tag_ids", None)
        for field, value in data.items():
            setattr(post, field, value)
        self._assign_taxonomy(post, category_ids, tag_ids)
        post.updated_at = utcnow()

        self.db.commit()
        self.db.refresh(post)
        return schemas.PostResponse.model_validate(post)

    @query_operation("posts.delete")
    def delete(self, post_id) -> bool:
        """Remove a post and its category/tag links in one transaction."""
        post_id = as_uuid(post_id)
        post = self.db.get(Post, post_id) if post_id else None
        if post is None:
            return False
        self.db.delete(post)
        self.db.commit()
        logger.info("Deleted post %s", post_id)
        return True


class CategoryQueries(_QueryGroup):

    @query_operation("categories.get_all")
    def get_all(self) -> List[schemas.CategoryWithCount]:
        """All categories A-Z with the number of published posts in each."""
        post_count = func.count(Post.id)
        rows = self.db.execute(
            select(Category, post_count)
            .outerjoin(PostCategory, PostCategory.category_id == Category.id)
            .outerjoin(Post, and_(Post.id == PostCategory.post_id, _PUBLISHED))
            .group_by(Category.id)
            .order_by(Category.name.asc())
        ).all()
        return [
            schemas.CategoryWithCount(
                **schemas.CategoryResponse.model_validate(category).model_dump(),
                post_count=count,
            )
            for category, count in rows
        ]

    @query_operation("categories.get_by_slug")
    def get_by_slug(self, slug: str) -> Optional[schemas.CategoryResponse]:
        category = self.db.execute(
            select(Category).where(Category.slug == slug).limit(1)
        ).scalar_one_or_none()
        return schemas.CategoryResponse.model_validate(category) if category else None

    @query_operation("categories.exists")
    def exists(self, name: str = None, slug: str = None) -> bool:
        """True when a category already uses `name` or `slug`."""
        clauses = []
        if name:
            clauses.append(Category.name == name)
        if slug:
            clauses.append(Category.slug == slug)
        if not clauses:
            return False
        return self.db.execute(select(Category.id).where(or_(*clauses)).limit(1)).first() is not None

    @query_operation("categories.create")
    def create(self, category_in) -> schemas.CategoryResponse:
        if isinstance(category_in, dict):
            category_in = schemas.CategoryCreate(**category_in)
        data = category_in.model_dump(exclude_none=True)
        if not data.get("slug"):
            data["slug"] = generate_unique_slug(self.db, category_in.name, model=Category)
        category = Category(**data)
        self.db.add(category)
        self.db.commit()
        self.db.refresh(category)
        return schemas.CategoryResponse.model_validate(category)


class TagQueries(_QueryGroup):

    def _with_counts(self, popular_only=False, limit=None):
        post_count = func.count(Post.id)
        stmt = (
            select(Tag, post_count)
            .outerjoin(PostTag, PostTag.tag_id == Tag.id)
            .outerjoin(Post, and_(Post.id == PostTag.post_id, _PUBLISHED))
            .group_by(Tag.id)
            .order_by(post_count.desc(), Tag.name.asc())
        )
        if popular_only:
            stmt = stmt.having(post_count > 0)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [
            schemas.TagWithCount(
                **schemas.TagResponse.model_validate(tag).model_dump(), post_count=count
            )
            for tag, count in self.db.execute(stmt).all()
        ]

    @query_operation("tags.get_all")
    def get_all(self) -> List[schemas.TagWithCount]:
        return self._with_counts()

    @query_operation("tags.get_popular")
    def get_popular(self, limit: int = 10) -> List[schemas.TagWithCount]:
        """Tags used by at least one published post, most used first."""
        return self._with_counts(popular_only=True, limit=max(1, limit))

    @query_operation("tags.get_by_slug")
    def get_by_slug(self, slug: str) -> Optional[schemas.TagResponse]:
        tag = self.db.execute(select(Tag).where(Tag.slug == slug).limit(1)).scalar_one_or_none()
        return schemas.TagResponse.model_validate(tag) if tag else None

    @query_operation("tags.exists")
    def exists(self, name: str = None, slug: str = None) -> bool:
        clauses = []
        if name:
            clauses.append(Tag.name == name)
        if slug:
            clauses.append(Tag.slug == slug)
        if not clauses:
            return False
        return self.db.execute(select(Tag.id).where(or_(*clauses)).limit(1)).first() is not None

    @query_operation("tags.create")
    def create(self, tag_in) -> schemas.TagResponse:
        if isinstance(tag_in, dict):
            tag_in = schemas.TagCreate(**tag_in)
        data = tag_in.model_dump(exclude_none=True)
        if not data.get("slug"):
            data["slug"] = generate_unique_slug(self.db, tag_in.name, model=Tag)
        tag = Tag(**data)
        self.db.add(tag)
        self.db.commit()
        self.db.refresh(tag)
        return schemas.TagResponse.model_validate(tag)


class AnalyticsQueries(_QueryGroup):

    def _count_posts(self, status: PostStatus) -> int:
        return self.db.execute(
            select(func.count(Post.id)).where(Post.status == status)
        ).scalar_one()

    @query_operation("analytics.get_site_stats")
    def get_site_stats(self) -> schemas.SiteStats:
        total_views = self.db.execute(
            select(func.coalesce(func.sum(Post.view_count), 0)).where(_PUBLISHED)
        ).scalar_one()
        return schemas.SiteStats(
            total_posts=self._count(Post),
            published_posts=self._count_posts(PostStatus.published),
            draft_posts=self._count_posts(PostStatus.draft),
            archived_posts=self._count_posts(PostStatus.archived),
            total_users=self._count(User),
            total_categories=self._count(Category),
            total_tags=self._count(Tag),
            total_views=int(total_views),
        )

    def _highlights(self, order_by, limit: int) -> List[schemas.PostHighlight]:
        rows = self.db.execute(
            select(Post.id, Post.title, Post.slug, Post.view_count, Post.published_at, User.name)
            .outerjoin(User, Post.author_id == User.id)
            .where(_PUBLISHED)
            .order_by(*order_by)
            .limit(max(1, limit))
        ).all()
        return [
            schemas.PostHighlight(
                id=row.id,
                title=row.title,
                slug=row.slug,
                view_count=row.view_count,
                published_at=row.published_at,
                author_name=row.name,
            )
            for row in rows
        ]

    @query_operation("analytics.get_most_viewed")
    def get_most_viewed(self, limit: int = 5) -> List[schemas.PostHighlight]:
        return self._highlights((Post.view_count.desc(),) + _PUBLISHED_ORDER, limit)

    @query_operation("analytics.get_recent_posts")
    def get_recent_posts(self, limit: int = 5) -> List[schemas.PostHighlight]:
        return self._highlights(_PUBLISHED_ORDER, limit)
