import itertools

import fakeredis
import pytest
from sqlalchemy.orm import sessionmaker

from blogapp import database
from blogapp.models import Base, Category, Post, PostCategory, PostStatus, PostTag, Tag, User, UserRole

# set up an isolated SQLite DB for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = database.make_engine(SQLALCHEMY_DATABASE_URL)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def setup_db(monkeypatch):
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(database, "engine", engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch):
    fake = fakeredis.FakeRedis(decode_responses=True)
    monkeypatch.setattr("blogapp.cache.redis_client", fake)
    return fake


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    counter = itertools.count()

    def _make(email=None, name=None, role=UserRole.viewer):
        n = next(counter)
        user = User(email=email or f"user{n}@example.com", name=name or f"User {n}", role=role)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def make_post(db):
    counter = itertools.count()

    def _make(title=None, slug=None, status=PostStatus.published, published_at=None, categories=(), tags=(), **fields):
        n = next(counter)
        post = Post(
            title=title or f"Post {n}",
            slug=slug or f"post-{n}",
            status=status,
            published_at=published_at,
            **fields,
        )
        post.post_categories = [PostCategory(category_id=c.id) for c in categories]
        post.post_tags = [PostTag(tag_id=t.id) for t in tags]
        db.add(post)
        db.commit()
        db.refresh(post)
        return post
    return _make


@pytest.fixture
def make_category(db):
    def _make(name, slug=None, description=None):
        category = Category(name=name, slug=slug or name.lower(), description=description)
        db.add(category)
        db.commit()
        db.refresh(category)
        return category
    return _make


@pytest.fixture
def make_tag(db):
    def _make(name, slug=None):
        tag = Tag(name=name, slug=slug or name.lower())
        db.add(tag)
        db.commit()
        db.refresh(tag)
        return tag
    return _make


@pytest.fixture
def session_factory():
    return TestingSessionLocal
