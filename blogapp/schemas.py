from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .models import PostStatus, UserRole

# --- USERS ---

class UserCreate(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    image: Optional[str] = None
    role: UserRole = UserRole.viewer


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = None
    image: Optional[str] = None
    role: Optional[UserRole] = None

    @field_validator("email", "role")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class UserResponse(BaseModel):
    id: UUID
    email: str
    name: Optional[str]
    image: Optional[str] = None
    role: UserRole
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaginatedUsers(BaseModel):
    users: List[UserResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class AuthorSummary(BaseModel):
    id: Optional[UUID] = None
    name: Optional[str] = None
    email: Optional[str] = None

# --- TAXONOMY ---

class CategoryCreate(BaseModel):
    name: str = Field(min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None


class CategoryResponse(BaseModel):
    id: UUID
    name: str
    slug: str
    description: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CategoryWithCount(CategoryResponse):
    post_count: int


class TagCreate(BaseModel):
    name: str = Field(min_length=1)
    slug: Optional[str] = None


class TagResponse(BaseModel):
    id: UUID
    name: str
    slug: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TagWithCount(TagResponse):
    post_count: int

# --- POSTS ---

class PostCreate(BaseModel):
    title: str = Field(min_length=1)
    slug: Optional[str] = None
    content: Optional[str] = None
    excerpt: Optional[str] = None
    cover_image: Optional[str] = None
    status: PostStatus = PostStatus.draft
    author_id: Optional[UUID] = None
    ai_generated: bool = False
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    category_ids: List[UUID] = []
    tag_ids: List[UUID] = []


class PostUpdate(BaseModel):
    """Partial update: only fields that were explicitly set are written."""
    title: Optional[str] = None
    slug: Optional[str] = None
    content: Optional[str] = None
    excerpt: Optional[str] = None
    cover_image: Optional[str] = None
    status: Optional[PostStatus] = None
    author_id: Optional[UUID] = None
    ai_generated: Optional[bool] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    published_at: Optional[datetime] = None
    # None leaves the current assignments alone, [] clears them
    category_ids: Optional[List[UUID]] = None
    tag_ids: Optional[List[UUID]] = None

    @field_validator("title", "slug", "status", "ai_generated")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class PostResponse(BaseModel):
    id: UUID
    title: str
    slug: str
    content: Optional[str]
    excerpt: Optional[str]
    cover_image: Optional[str]
    status: PostStatus
    author_id: Optional[UUID]
    ai_generated: bool
    seo_title: Optional[str]
    seo_description: Optional[str]
    view_count: int
    published_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PostListItem(PostResponse):
    author: Optional[AuthorSummary] = None


class PostDetail(PostListItem):
    categories: List[CategoryResponse] = []
    tags: List[TagResponse] = []
    reading_time: int


class PaginatedPosts(BaseModel):
    posts: List[PostListItem]
    total: int
    page: int
    page_size: int
    total_pages: int


class SearchResults(PaginatedPosts):
    query: str


class CategoryPosts(PaginatedPosts):
    category: CategoryResponse


class TagPosts(PaginatedPosts):
    tag: TagResponse


class AdminPostRequest(BaseModel):
    """Body of the admin post editor; ``summary`` is stored as the excerpt."""
    title: str = Field(min_length=1)
    slug: str = Field(min_length=1)
    content: str = Field(min_length=1)
    summary: Optional[str] = None
    status: Optional[PostStatus] = None
    cover_image: Optional[str] = None
    seo_title: Optional[str] = None
    seo_description: Optional[str] = None
    category_ids: Optional[List[UUID]] = None
    tag_ids: Optional[List[UUID]] = None

# --- ANALYTICS ---

class SiteStats(BaseModel):
    total_posts: int
    published_posts: int
    draft_posts: int
    archived_posts: int
    total_users: int
    total_categories: int
    total_tags: int
    total_views: int


class PostHighlight(BaseModel):
    id: UUID
    title: str
    slug: str
    view_count: int
    published_at: Optional[datetime]
    author_name: Optional[str] = None


class SitemapEntry(BaseModel):
    url: str
    last_modified: datetime
    change_frequency: str
    priority: float
