import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text, Uuid
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


class UserRole(str, enum.Enum):
    admin = "admin"
    author = "author"
    viewer = "viewer"


class PostStatus(str, enum.Enum):
    draft = "draft"
    published = "published"
    archived = "archived"


class User(Base):
    __tablename__ = "users"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    image = Column(String, nullable=True)
    role = Column(Enum(UserRole), default=UserRole.viewer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    posts = relationship("Post", back_populates="author")


class Post(Base):
    __tablename__ = "posts"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    content = Column(Text, nullable=True)
    excerpt = Column(Text, nullable=True)
    cover_image = Column(String, nullable=True)
    status = Column(Enum(PostStatus), default=PostStatus.draft, nullable=False, index=True)
    author_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    ai_generated = Column(Boolean, default=False, nullable=False)
    seo_title = Column(String, nullable=True)
    seo_description = Column(String, nullable=True)
    view_count = Column(Integer, default=0, nullable=False)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    author = relationship("User", back_populates="posts")
    # Junction rows go with the post
    post_categories = relationship(
        "PostCategory", back_populates="post", cascade="all, delete-orphan"
    )
    post_tags = relationship(
        "PostTag", back_populates="post", cascade="all, delete-orphan"
    )


class Category(Base):
    __tablename__ = "categories"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, unique=True, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    post_categories = relationship(
        "PostCategory", back_populates="category", cascade="all, delete-orphan"
    )


class Tag(Base):
    __tablename__ = "tags"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, unique=True, nullable=False)
    slug = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    post_tags = relationship(
        "PostTag", back_populates="tag", cascade="all, delete-orphan"
    )


class PostCategory(Base):
    __tablename__ = "post_categories"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    post_id = Column(Uuid, ForeignKey("posts.id", ondelete="CASCADE"), index=True)
    category_id = Column(Uuid, ForeignKey("categories.id", ondelete="CASCADE"), index=True)

    post = relationship("Post", back_populates="post_categories")
    category = relationship("Category", back_populates="post_categories")


class PostTag(Base):
    __tablename__ = "post_tags"
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    post_id = Column(Uuid, ForeignKey("posts.id", ondelete="CASCADE"), index=True)
    tag_id = Column(Uuid, ForeignKey("tags.id", ondelete="CASCADE"), index=True)

    post = relationship("Post", back_populates="post_tags")
    tag = relationship("Tag", back_populates="post_tags")
