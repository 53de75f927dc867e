import logging
from datetime import datetime, timezone

from sqlalchemy import delete
from sqlalchemy.orm import Session

from .database import SessionLocal, init_db
from .models import Category, Post, PostCategory, PostStatus, PostTag, Tag, User, UserRole

logger = logging.getLogger(__name__)

SAMPLE_USERS = [
    {"email": "admin@example.com", "name": "Admin User", "role": UserRole.admin},
    {"email": "author@example.com", "name": "Content Author", "role": UserRole.author},
    {"email": "viewer@example.com", "name": "Blog Reader", "role": UserRole.viewer},
]

SAMPLE_CATEGORIES = [
    {"name": "Technology", "slug": "technology", "description": "Latest trends and insights in technology"},
    {"name": "AI & Machine Learning", "slug": "ai-machine-learning", "description": "Artificial Intelligence and Machine Learning developments"},
    {"name": "Web Development", "slug": "web-development", "description": "Modern web development practices and frameworks"},
    {"name": "Design", "slug": "design", "description": "UI/UX design principles and best practices"},
    {"name": "Productivity", "slug": "productivity", "description": "Tips and tools for improving productivity"},
]

SAMPLE_TAGS = [
    {"name": "Python", "slug": "python"},
    {"name": "FastAPI", "slug": "fastapi"},
    {"name": "SQLAlchemy", "slug": "sqlalchemy"},
    {"name": "AI", "slug": "ai"},
    {"name": "Machine Learning", "slug": "machine-learning"},
    {"name": "GPT", "slug": "gpt"},
    {"name": "Database", "slug": "database"},
    {"name": "PostgreSQL", "slug": "postgresql"},
    {"name": "Redis", "slug": "redis"},
    {"name": "API", "slug": "api"},
    {"name": "Performance", "slug": "performance"},
]

SAMPLE_POSTS = [
    {
        "title": "Building Web APIs with FastAPI",
        "slug": "building-web-apis-fastapi",
        "content": (
            "# Building Web APIs with FastAPI\n\n"
            "FastAPI pairs type hints with automatic validation and interactive docs.\n\n"
            "## Dependency injection\n\n"
            "Sessions, settings and the current user all arrive through `Depends`.\n"
        ),
        "excerpt": "Type hints, validation and dependency injection for modern Python web APIs.",
        "status": PostStatus.published,
        "ai_generated": False,
        "seo_title": "FastAPI Guide: Building Web APIs",
        "seo_description": "Learn how to build web APIs with FastAPI and dependency injection.",
        "published_at": datetime(2025, 1, 15, tzinfo=timezone.utc),
    },
    {
        "title": "The Future of AI-Powered Content Creation",
        "slug": "future-ai-powered-content-creation",
        "content": (
            "# The Future of AI-Powered Content Creation\n\n"
            "AI is changing how we create, edit and distribute content. The best results "
            "still combine model output with human judgment.\n"
        ),
        "excerpt": "How AI is transforming content creation and what comes next.",
        "status": PostStatus.published,
        "ai_generated": True,
        "seo_title": "AI Content Creation: Future Trends",
        "seo_description": "Current tools, their impact on strategy and emerging trends in automated content.",
        "published_at": datetime(2025, 1, 20, tzinfo=timezone.utc),
    },
    {
        "title": "Database Design Best Practices for Modern Applications",
        "slug": "database-design-best-practices-modern-apps",
        "content": (
            "# Database Design Best Practices\n\n"
            "Normalize first, denormalize for read-heavy paths, and index what you filter on.\n\n"
            "## Many-to-many\n\nJunction tables with cascading foreign keys keep links tidy.\n"
        ),
        "excerpt": "Schema design, ORM patterns and performance tips for PostgreSQL.",
        "status": PostStatus.published,
        "ai_generated": False,
        "seo_title": "Database Design Best Practices",
        "seo_description": "Master schema design, relationships and query performance.",
        "published_at": datetime(2025, 1, 25, tzinfo=timezone.utc),
    },
    {
        "title": "Getting Started with Type Hints",
        "slug": "getting-started-type-hints",
        "content": "# Getting Started with Type Hints\n\nDraft notes on gradual typing.\n",
        "excerpt": "Gradual typing from the first annotation to a strict checker.",
        "status": PostStatus.draft,
        "ai_generated": False,
        "seo_title": "Type Hints Tutorial",
        "seo_description": "Setup, core concepts and patterns for typed Python.",
        "published_at": None,
    },
]


def seed_database(db: Session) -> dict:
    logger.info("Starting database seeding...")

    users = [User(**data) for data in SAMPLE_USERS]
    categories = [Category(**data) for data in SAMPLE_CATEGORIES]
    tags = [Tag(**data) for data in SAMPLE_TAGS]
    db.add_all(users + categories + tags)
    db.flush()

    admin = next(u for u in users if u.role == UserRole.admin)
    author = next(u for u in users if u.role == UserRole.author)

    posts = []
    for index, data in enumerate(SAMPLE_POSTS):
        post = Post(**data, author_id=admin.id if index % 2 == 0 else author.id)
        posts.append(post)
    db.add_all(posts)
    db.flush()

    # one category each, round-robin
    post_categories = [
        PostCategory(post_id=post.id, category_id=categories[index % len(categories)].id)
        for index, post in enumerate(posts)
    ]
    # 2, 3 or 4 tags per post
    post_tags = []
    for index, post in enumerate(posts):
        start = (index * 3) % len(tags)
        for offset in range(2 + index % 3):
            post_tags.append(PostTag(post_id=post.id, tag_id=tags[(start + offset) % len(tags)].id))
    db.add_all(post_categories + post_tags)
    db.commit()

    counts = {
        "users": len(users),
        "categories": len(categories),
        "tags": len(tags),
        "posts": len(posts),
        "post_categories": len(post_categories),
        "post_tags": len(post_tags),
    }
    logger.info("Seeding complete: %s", counts)
    return counts


def clear_database(db: Session):
    # reverse dependency order
    for model in (PostTag, PostCategory, Post, Tag, Category, User):
        db.execute(delete(model))
    db.commit()
    logger.info("Database cleared")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_db()
    session = SessionLocal()
    try:
        seed_database(session)
    finally:
        session.close()
