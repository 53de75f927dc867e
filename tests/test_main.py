import pytest
from fastapi.testclient import TestClient

from blogapp import auth, database
from blogapp.config import settings
from blogapp.main import app
from blogapp.models import PostStatus
from blogapp.queries import PostQueries, QueryError


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[database.get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers(db):
    token = auth.sign_in(db, settings.ADMIN_EMAIL, name="Admin")
    return {"Authorization": f"Bearer {token}"}


def create_post(client, headers, **overrides):
    body = {"title": "Hello", "slug": "hello", "content": "World", "summary": "Greeting"}
    body.update(overrides)
    resp = client.post("/admin/posts", json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


# --- admin gate ---

def test_admin_routes_require_admin_token(client):
    assert client.get("/admin/posts").status_code == 401
    assert client.get("/admin/posts", headers={"Authorization": "Bearer nope"}).status_code == 401

    other = auth.create_access_token({"sub": "someone@example.com"})
    resp = client.get("/admin/posts", headers={"Authorization": f"Bearer {other}"})
    assert resp.status_code == 403


# --- admin CRUD ---

def test_create_update_delete_post(client, admin_headers, make_category, make_tag):
    tech = make_category("Technology")
    python = make_tag("Python")

    post = create_post(client, admin_headers, category_ids=[str(tech.id)], tag_ids=[str(python.id)])
    assert post["slug"] == "hello"
    assert post["excerpt"] == "Greeting"
    assert post["status"] == "draft"
    assert post["published_at"] is None
    assert post["author_id"] is not None
    post_id = post["id"]

    resp = client.get(f"/admin/posts/{post_id}", headers=admin_headers)
    assert resp.status_code == 200
    detail = resp.json()
    assert [c["slug"] for c in detail["categories"]] == ["technology"]
    assert [t["slug"] for t in detail["tags"]] == ["python"]
    assert detail["author"]["email"] == settings.ADMIN_EMAIL

    resp = client.put(
        f"/admin/posts/{post_id}",
        json={"title": "Hello again", "slug": "hello-again", "content": "Universe"},
        headers=admin_headers,
    )
    assert resp.status_code == 200
    updated = resp.json()
    assert updated["title"] == "Hello again"
    assert updated["slug"] == "hello-again"

    resp = client.delete(f"/admin/posts/{post_id}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json() == {"success": True}
    assert client.get(f"/admin/posts/{post_id}", headers=admin_headers).status_code == 404
    assert client.delete(f"/admin/posts/{post_id}", headers=admin_headers).status_code == 404


def test_create_requires_title_slug_and_content(client, admin_headers):
    resp = client.post("/admin/posts", json={"title": "No body", "slug": "no-body"}, headers=admin_headers)
    assert resp.status_code == 422


def test_slug_uniqueness(client, admin_headers):
    first = create_post(client, admin_headers, slug="duplicate")
    resp = client.post(
        "/admin/posts",
        json={"title": "Duplicate", "slug": "duplicate", "content": "b"},
        headers=admin_headers,
    )
    assert resp.status_code == 409

    other = create_post(client, admin_headers, slug="other")
    resp = client.put(
        f"/admin/posts/{other['id']}",
        json={"title": "Other", "slug": first["slug"], "content": "c"},
        headers=admin_headers,
    )
    assert resp.status_code == 409


def test_publish_stamps_published_at_once(client, admin_headers):
    post = create_post(client, admin_headers)
    body = {"title": "Hello", "slug": "hello", "content": "World", "status": "published"}

    first = client.put(f"/admin/posts/{post['id']}", json=body, headers=admin_headers).json()
    assert first["status"] == "published"
    assert first["published_at"] is not None

    second = client.put(f"/admin/posts/{post['id']}", json=body, headers=admin_headers).json()
    assert second["published_at"] == first["published_at"]


def test_update_missing_post(client, admin_headers):
    resp = client.put(
        "/admin/posts/00000000-0000-0000-0000-000000000000",
        json={"title": "x", "slug": "x", "content": "x"},
        headers=admin_headers,
    )
    assert resp.status_code == 404


# --- public reads ---

def test_published_listing_is_cached_and_invalidated(client, admin_headers, fake_redis):
    post = create_post(client, admin_headers, status="published")

    resp = client.get("/posts")
    assert resp.status_code == 200
    body = resp.json()
    assert [p["id"] for p in body["posts"]] == [post["id"]]
    assert body["total"] == 1
    assert body["page_size"] == settings.POSTS_PER_PAGE
    assert fake_redis.get(f"published_list_1_{settings.POSTS_PER_PAGE}") is not None

    create_post(client, admin_headers, slug="second")
    assert fake_redis.get(f"published_list_1_{settings.POSTS_PER_PAGE}") is None


def test_public_listing_hides_drafts(client, make_post):
    make_post(slug="visible")
    make_post(slug="hidden", status=PostStatus.draft)

    body = client.get("/posts?page=0&page_size=-1").json()

    assert [p["slug"] for p in body["posts"]] == ["visible"]
    assert body["page"] == 1


def test_post_detail_counts_views(client, make_post, fake_redis):
    make_post(slug="readme", content="one two three", view_count=7)

    first = client.get("/posts/readme")
    assert first.status_code == 200
    assert first.json()["view_count"] == 8
    assert first.json()["reading_time"] == 1
    assert fake_redis.get("post_cache_readme") is not None

    second = client.get("/posts/readme")
    assert second.json()["view_count"] == 9


def test_post_detail_hides_unpublished(client, make_post):
    make_post(slug="secret", status=PostStatus.draft)

    assert client.get("/posts/secret").status_code == 404
    assert client.get("/posts/missing").status_code == 404


def test_search_endpoint(client, make_post):
    make_post(slug="match", title="Find me")
    make_post(slug="draft-match", title="Find me too", status=PostStatus.draft)

    body = client.get("/search?q=find").json()
    assert [p["slug"] for p in body["posts"]] == ["match"]
    assert body["query"] == "find"

    body = client.get("/search?q=xyz123notfound").json()
    assert body["total"] == 0


def test_category_posts_not_found_vs_fallback(client, make_post, make_category):
    tech = make_category("Technology")
    make_post(slug="tech", categories=[tech])
    make_post(slug="general")

    body = client.get("/categories/technology/posts").json()
    assert [p["slug"] for p in body["posts"]] == ["tech"]
    assert body["category"]["name"] == "Technology"

    assert client.get("/categories/nonexistent-slug/posts").status_code == 404

    resp = client.get("/categories/nonexistent-slug/posts?fallback=true")
    assert resp.status_code == 200
    assert resp.json()["total"] == 2
    assert "category" not in resp.json()


def test_taxonomy_listings(client, make_post, make_category, make_tag):
    tech = make_category("Technology")
    python = make_tag("Python")
    make_tag("Unused")
    make_post(slug="p", categories=[tech], tags=[python])

    assert client.get("/categories").json()[0]["post_count"] == 1
    assert [t["name"] for t in client.get("/tags").json()] == ["Python", "Unused"]
    assert [t["name"] for t in client.get("/tags/popular").json()] == ["Python"]
    assert [p["slug"] for p in client.get("/tags/python/posts").json()["posts"]] == ["p"]
    assert client.get("/tags/missing/posts").status_code == 404


def test_stats_endpoints(client, admin_headers, make_post):
    make_post(slug="big", view_count=100)
    make_post(slug="small", view_count=1)
    make_post(slug="draft", status=PostStatus.draft, view_count=1000)

    assert [p["slug"] for p in client.get("/stats/most-viewed").json()] == ["big", "small"]
    assert len(client.get("/stats/recent?limit=1").json()) == 1

    stats = client.get("/admin/stats", headers=admin_headers).json()
    assert stats["total_posts"] == 3
    assert stats["published_posts"] == 2
    assert stats["total_views"] == 101
    assert stats["total_users"] == 1

    users = client.get("/admin/users", headers=admin_headers).json()
    assert users["users"][0]["email"] == settings.ADMIN_EMAIL


def test_admin_creates_taxonomy(client, admin_headers):
    resp = client.post("/admin/categories", json={"name": "Web Development"}, headers=admin_headers)
    assert resp.status_code == 201
    assert resp.json()["slug"] == "web-development"

    resp = client.post("/admin/tags", json={"name": "PostgreSQL"}, headers=admin_headers)
    assert resp.status_code == 201
    assert resp.json()["slug"] == "postgresql"


def test_duplicate_taxonomy_is_a_conflict(client, admin_headers):
    body = {"name": "Tech", "slug": "tech"}
    assert client.post("/admin/categories", json=body, headers=admin_headers).status_code == 201

    resp = client.post("/admin/categories", json=body, headers=admin_headers)
    assert resp.status_code == 409
    resp = client.post("/admin/categories", json={"name": "Other", "slug": "tech"}, headers=admin_headers)
    assert resp.status_code == 409

    assert client.post("/admin/tags", json={"name": "Py"}, headers=admin_headers).status_code == 201
    resp = client.post("/admin/tags", json={"name": "Py"}, headers=admin_headers)
    assert resp.status_code == 409
    assert [t["name"] for t in client.get("/tags").json()] == ["Py"]


def test_unreadable_cache_entry_is_a_miss(client, make_post, fake_redis):
    make_post(slug="cached")
    fake_redis.set(f"published_list_1_{settings.POSTS_PER_PAGE}", "{not json")
    fake_redis.set("post_cache_cached", "{not json")

    resp = client.get("/posts")
    assert resp.status_code == 200
    assert [p["slug"] for p in resp.json()["posts"]] == ["cached"]

    resp = client.get("/posts/cached")
    assert resp.status_code == 200
    assert resp.json()["slug"] == "cached"


def test_sitemap_lists_published_posts(client, make_post):
    make_post(slug="on-the-map")
    make_post(slug="off-the-map", status=PostStatus.draft)

    urls = [entry["url"] for entry in client.get("/sitemap").json()]

    assert any(url.endswith("/blog/on-the-map") for url in urls)
    assert not any(url.endswith("/blog/off-the-map") for url in urls)


def test_query_failure_returns_500(client, monkeypatch):
    def fail(self, *args, **kwargs):
        raise QueryError("posts.search", {"args": args})

    monkeypatch.setattr(PostQueries, "search", fail)

    resp = client.get("/search?q=anything")
    assert resp.status_code == 500
    assert resp.json() == {"detail": "Query failed"}


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["database"] is True
