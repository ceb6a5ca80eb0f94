"""
HTTP tests through FastAPI's TestClient.

The client always connects from host "testclient", which is the IP the
guestbook rate limiter and anonymous likes see.
"""
from bson.objectid import ObjectId

from database import collection

GOOD_MESSAGE = "Loved browsing your projects, the starfield is lovely."


def submit(client, message=GOOD_MESSAGE, name="Ann", **extra):
    return client.post("/guestbook", json={"name": name, "message": message, **extra})


class TestHealth:
    def test_root(self, client):
        assert client.get("/").json() == {"message": "Cosmic DevSpace API running"}

    def test_database_status(self, client):
        body = client.get("/test").json()
        assert body["database"] == "✅ Connected"


class TestGuestbook:
    def test_submit_and_list(self, client):
        response = submit(client, email="ANN@example.com")
        assert response.status_code == 201
        entry = response.json()
        assert entry["status"] == "approved"
        assert entry["spam_score"] == 0
        assert entry["email"] == "ann@example.com"
        assert "ip_address" not in entry

        listing = client.get("/guestbook").json()
        assert [e["id"] for e in listing["entries"]] == [entry["id"]]
        assert listing["pagination"]["total_entries"] == 1

    def test_spam_is_rejected_and_hidden(self, client):
        entry = submit(client, name="Bot", message="WIN A FREE LOTTERY PRIZE NOW!!! http://a http://b http://c").json()

        assert entry["status"] == "rejected"
        assert entry["is_spam"] is True
        assert entry["moderation_reason"] == "Automatically rejected due to high spam score"
        assert client.get("/guestbook").json()["entries"] == []

    def test_message_over_submission_cap(self, client):
        response = submit(client, message="x" * 241)
        assert response.status_code == 400
        assert response.json()["field"] == "message"

    def test_rate_limit(self, client):
        for i in range(5):
            assert submit(client, message=f"{GOOD_MESSAGE} #{i}").status_code == 201

        response = submit(client)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "3600"
        assert response.json()["retry_after"] == 3600

    def test_invalid_submission_does_not_use_quota(self, client, limiter):
        submit(client, message="short")
        assert limiter.remaining("testclient") == 5

    def test_score_preview(self, client):
        body = client.post("/guestbook/score", json={"name": "Ann", "message": "casino casino"}).json()
        assert body == {"score": 25, "is_spam": False, "auto_status": None}

    def test_like_toggle_by_ip(self, client):
        entry_id = submit(client).json()["id"]

        assert client.post(f"/guestbook/{entry_id}/like").json() == {"liked": True, "likes": 1}
        assert client.post(f"/guestbook/{entry_id}/like").json() == {"liked": False, "likes": 0}

    def test_like_missing_entry(self, client):
        assert client.post(f"/guestbook/{ObjectId()}/like").status_code == 404
        response = client.post("/guestbook/nope/like")
        assert response.status_code == 400
        assert response.json()["field"] == "id"

    def test_reply(self, client, auth_headers):
        entry_id = submit(client).json()["id"]

        response = client.post(
            f"/guestbook/{entry_id}/reply",
            json={"name": "Owner", "message": "Thanks!"},
            headers=auth_headers("admin-1", "admin"),
        )
        assert response.status_code == 201
        assert response.json()["is_admin"] is True

        too_long = client.post(f"/guestbook/{entry_id}/reply", json={"name": "Sam", "message": "x" * 501})
        assert too_long.status_code == 400

    def test_flag_once_per_reporter(self, client):
        entry_id = submit(client).json()["id"]

        assert client.post(f"/guestbook/{entry_id}/flag", json={"reason": "spam"}).json() == {"flagged": True}
        assert client.post(f"/guestbook/{entry_id}/flag", json={"reason": "spam"}).json() == {"flagged": False}
        assert client.post(f"/guestbook/{entry_id}/flag", json={"reason": "meh"}).status_code == 400

        listed = client.get("/guestbook").json()["entries"][0]
        assert listed["flags"] == 1

    def test_moderation_requires_role(self, client, auth_headers):
        assert client.get("/guestbook/moderation").status_code == 401
        assert client.get("/guestbook/moderation", headers=auth_headers()).status_code == 403
        response = client.get("/guestbook/moderation", headers=auth_headers("mod-1", "moderator"))
        assert response.status_code == 200
        assert response.json() == {"entries": []}

    def test_moderator_actions(self, client, auth_headers):
        headers = auth_headers("mod-1", "moderator")
        entry_id = submit(client).json()["id"]

        hidden = client.put(f"/guestbook/{entry_id}/status", json={"status": "hidden", "reason": "off topic"}, headers=headers)
        assert hidden.json()["status"] == "hidden"
        assert hidden.json()["moderated_by"] == "mod-1"

        edited = client.put(f"/guestbook/{entry_id}", json={"message": "casino lottery prize all day long"}, headers=headers)
        assert edited.json()["spam_score"] == 75
        assert edited.json()["is_spam"] is True

        queue = client.get("/guestbook/moderation", headers=headers).json()["entries"]
        assert [e["id"] for e in queue] == [entry_id]

        assert client.put(f"/guestbook/{entry_id}/pin", headers=headers).json() == {"pinned": True}
        assert client.delete(f"/guestbook/{entry_id}", headers=headers).status_code == 403
        assert client.delete(f"/guestbook/{entry_id}", headers=auth_headers("admin-1", "admin")).status_code == 200

    def test_project_filter(self, client):
        submit(client, project_id="p1", project_title="Alpha")
        submit(client, message="A general note about the whole site.")

        by_project = client.get("/guestbook", params={"project_id": "p1"}).json()["entries"]
        general = client.get("/guestbook", params={"filter": "general"}).json()["entries"]

        assert [e["project_title"] for e in by_project] == ["Alpha"]
        assert [e["project_id"] for e in general] == [None]


class TestAuth:
    def test_register_login_me(self, client):
        created = client.post("/auth/register", json={
            "username": "stellar",
            "email": "stellar@example.com",
            "password": "supersecret",
        })
        assert created.status_code == 201

        login = client.post("/auth/login", json={"username": "stellar@example.com", "password": "supersecret"})
        assert login.status_code == 200
        token = login.json()["access_token"]

        me = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"}).json()
        assert me["username"] == "stellar"
        assert "password_hash" not in me

    def test_duplicate_username(self, client):
        payload = {"username": "stellar", "email": "a@example.com", "password": "supersecret"}
        client.post("/auth/register", json=payload)
        response = client.post("/auth/register", json={**payload, "email": "b@example.com"})
        assert response.status_code == 409

    def test_short_password(self, client):
        response = client.post("/auth/register", json={"username": "stellar", "email": "a@example.com", "password": "short"})
        assert response.status_code == 400
        assert response.json()["field"] == "password"

    def test_bad_credentials(self, client):
        response = client.post("/auth/login", json={"username": "ghost", "password": "whatever1"})
        assert response.status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/auth/me", headers={"Authorization": "Bearer not.a.token"})
        assert response.status_code == 401

    def _login(self, client):
        client.post("/auth/register", json={"username": "stellar", "email": "stellar@example.com", "password": "supersecret"})
        token = client.post("/auth/login", json={"username": "stellar", "password": "supersecret"}).json()["access_token"]
        return {"Authorization": f"Bearer {token}"}

    def test_profile_update(self, client):
        headers = self._login(client)

        updated = client.put("/auth/profile", json={
            "bio": "Chasing nebulae",
            "location": "Lunar base",
            "website": "https://stellar.dev",
            "username": "hijack",
        }, headers=headers)
        assert updated.status_code == 200

        profile = client.get("/auth/profile", headers=headers).json()
        assert (profile["bio"], profile["location"], profile["website"]) == ("Chasing nebulae", "Lunar base", "https://stellar.dev")
        assert profile["username"] == "stellar"
        assert "password_hash" not in profile

    def test_profile_rejects_bad_website(self, client):
        headers = self._login(client)
        response = client.put("/auth/profile", json={"website": "stellar.dev"}, headers=headers)
        assert response.status_code == 400
        assert response.json()["field"] == "website"

    def test_profile_requires_login(self, client):
        assert client.get("/auth/profile").status_code == 401


class TestPortfolio:
    def test_create_requires_login(self, client):
        assert client.post("/portfolio", json={"title": "Alpha", "description": "x"}).status_code == 401

    def test_create_list_like_comment(self, client, auth_headers):
        headers = auth_headers("U1")
        created = client.post("/portfolio", json={"title": "Alpha", "description": "A cosmic dashboard", "category": "web"}, headers=headers)
        assert created.status_code == 201
        item_id = created.json()["id"]

        listing = client.get("/portfolio", params={"myItems": "true", "sortParam": "az"}, headers=headers).json()
        assert [i["title"] for i in listing["items"]] == ["Alpha"]

        liked = client.post(f"/portfolio/{item_id}/like", headers=auth_headers("U2")).json()
        assert liked == {"liked": True, "likes": 1}

        comment = client.post(f"/portfolio/{item_id}/comment", json={"content": "Neat"}, headers=auth_headers("U2"))
        assert comment.status_code == 201

        detail = client.get(f"/portfolio/{item_id}").json()
        assert detail["metrics"]["views"] == 1
        assert len(detail["comments"]) == 1

    def test_invalid_category(self, client, auth_headers):
        response = client.post("/portfolio", json={"title": "Alpha", "description": "x", "category": "poetry"}, headers=auth_headers())
        assert response.status_code == 400
        assert response.json()["field"] == "category"

    def test_invalid_page(self, client):
        assert client.get("/portfolio", params={"page": "0"}).status_code == 400

    def test_owner_only_delete(self, client, auth_headers):
        item_id = client.post("/portfolio", json={"title": "Alpha", "description": "x"}, headers=auth_headers("U1")).json()["id"]
        assert client.delete(f"/portfolio/{item_id}", headers=auth_headers("U2")).status_code == 403
        assert client.delete(f"/portfolio/{item_id}", headers=auth_headers("U1")).json()["deleted_id"] == item_id

    def test_comment_listing(self, client, auth_headers):
        item_id = client.post("/portfolio", json={"title": "Alpha", "description": "x"}, headers=auth_headers("U1")).json()["id"]
        for text in ("one", "two", "three"):
            client.post(f"/portfolio/{item_id}/comment", json={"content": text}, headers=auth_headers("U2"))

        body = client.get(f"/portfolio/{item_id}/comments", params={"limit": 2}).json()

        assert [c["content"] for c in body["comments"]] == ["three", "two"]
        assert body["pagination"]["total_comments"] == 3
        assert body["pagination"]["total_pages"] == 2

    def test_private_comment_listing(self, client, auth_headers):
        item_id = client.post(
            "/portfolio",
            json={"title": "Secret", "description": "x", "visibility": "private"},
            headers=auth_headers("U1"),
        ).json()["id"]

        assert client.get(f"/portfolio/{item_id}/comments", headers=auth_headers("U2")).status_code == 403
        assert client.get(f"/portfolio/{item_id}/comments", headers=auth_headers("U1")).status_code == 200

    def test_featured_and_categories(self, client, auth_headers):
        client.post("/portfolio", json={"title": "Alpha", "description": "x", "featured": True, "category": "ai"}, headers=auth_headers())
        client.post("/portfolio", json={"title": "Beta", "description": "y", "category": "ai"}, headers=auth_headers())

        assert [i["title"] for i in client.get("/portfolio/featured").json()["items"]] == ["Alpha"]
        assert client.get("/portfolio/categories").json() == {"categories": [{"category": "ai", "count": 2}]}


class TestBlog:
    def _post(self, client, headers, **overrides):
        body = {
            "title": "Hello Cosmos",
            "excerpt": "First post",
            "content": "word " * 450,
            "category": "news",
            "tags": ["Space", " Python "],
            "status": "published",
        }
        body.update(overrides)
        return client.post("/blog", json=body, headers=headers)

    def test_only_staff_can_write(self, client, auth_headers):
        assert self._post(client, auth_headers()).status_code == 403

    def test_publish_read_and_engage(self, client, auth_headers):
        created = self._post(client, auth_headers("mod-1", "moderator"))
        assert created.status_code == 201
        assert created.json()["slug"] == "hello-cosmos"
        blog_id = created.json()["id"]

        listing = client.get("/blog", params={"tag": "space"}).json()
        assert [p["title"] for p in listing["posts"]] == ["Hello Cosmos"]
        assert client.get("/blog", params={"search": "COSMOS"}).json()["total_count"] == 1
        assert client.get("/blog", params={"search": "nebula (draft"}).json()["posts"] == []
        assert "content" not in listing["posts"][0]

        post = client.get("/blog/hello-cosmos").json()
        assert post["views"] == 1
        assert post["read_time"] == 3
        assert post["tags"] == ["space", "python"]

        reader = auth_headers("reader")
        assert client.post(f"/blog/{blog_id}/comment", json={"content": "Great read"}, headers=reader).status_code == 201
        assert client.post(f"/blog/{blog_id}/like", headers=reader).json() == {"liked": True, "likes": 1}

    def test_drafts_are_private(self, client, auth_headers):
        author = auth_headers("mod-1", "moderator")
        blog_id = self._post(client, author, status="draft").json()["id"]

        assert client.get(f"/blog/{blog_id}").status_code == 404
        assert client.get(f"/blog/{blog_id}", headers=author).status_code == 200
        assert client.get("/blog").json()["posts"] == []

        published = client.put(f"/blog/{blog_id}", json={"status": "published"}, headers=author).json()
        assert published["published_at"] is not None

    def test_drafts_take_no_likes_or_comments(self, client, auth_headers):
        blog_id = self._post(client, auth_headers("mod-1", "moderator"), status="draft").json()["id"]
        reader = auth_headers("reader")

        assert client.post(f"/blog/{blog_id}/like", headers=reader).status_code == 403
        assert client.post(f"/blog/{blog_id}/comment", json={"content": "Early"}, headers=reader).status_code == 403
        assert collection("blog").find_one({"_id": ObjectId(blog_id)})["likes"] == 0

    def test_update_by_other_author(self, client, auth_headers):
        blog_id = self._post(client, auth_headers("mod-1", "moderator")).json()["id"]
        response = client.put(f"/blog/{blog_id}", json={"title": "Mine"}, headers=auth_headers("mod-2", "moderator"))
        assert response.status_code == 403


class TestAnalytics:
    def test_summary_counts_events(self, client, auth_headers):
        submit(client)
        assert client.get("/analytics/summary", headers=auth_headers()).status_code == 403

        summary = client.get("/analytics/summary", headers=auth_headers("admin-1", "admin")).json()
        assert summary["events"] == {"guestbook_entry": 1}
        assert summary["guestbook"]["total"] == 1
        assert summary["guestbook"]["approved"] == 1

    def test_summary_totals_engagement(self, client, auth_headers):
        first = submit(client).json()["id"]
        submit(client, name="Bob", message="Another friendly note about the starfield.")
        submit(client, name="Bot", message="WIN A FREE LOTTERY PRIZE NOW!!! http://a http://b http://c")
        client.post(f"/guestbook/{first}/like")
        client.post(f"/guestbook/{first}/reply", json={"name": "Owner", "message": "Thanks!"})
        item_id = client.post("/portfolio", json={"title": "Alpha", "description": "x"}, headers=auth_headers("U1")).json()["id"]
        client.get(f"/portfolio/{item_id}")
        client.post(f"/portfolio/{item_id}/like", headers=auth_headers("U2"))

        summary = client.get("/analytics/summary", headers=auth_headers("admin-1", "admin")).json()

        guestbook = summary["guestbook"]
        assert (guestbook["total"], guestbook["approved"], guestbook["spam"]) == (3, 2, 1)
        assert (guestbook["likes"], guestbook["replies"]) == (1, 1)
        assert guestbook["average_spam_score"] > 0
        assert summary["portfolio"] == {"items": 1, "views": 1, "likes": 1}

    def test_empty_summary(self, client, auth_headers):
        summary = client.get("/analytics/summary", headers=auth_headers("admin-1", "admin")).json()
        assert summary["guestbook"]["total"] == 0
        assert summary["portfolio"] == {"items": 0, "views": 0, "likes": 0}

    def test_track_event(self, client, auth_headers):
        response = client.post(
            "/analytics/track",
            json={"event_type": "page_view", "event_name": "Landing", "path": "/"},
            headers=auth_headers("U1"),
        )
        assert response.status_code == 201
        assert response.json()["tracked"] is True

        event = collection("analytics").find_one({"event_type": "page_view"})
        assert (event["user_id"], event["ip_address"], event["path"]) == ("U1", "testclient", "/")

        summary = client.get("/analytics/summary", headers=auth_headers("admin-1", "admin")).json()
        assert summary["events"]["page_view"] == 1

    def test_track_rejects_unknown_event_type(self, client):
        response = client.post("/analytics/track", json={"event_type": "teleport", "event_name": "x"})
        assert response.status_code == 422

    def test_tracking_never_breaks_requests(self, client, monkeypatch):
        import analytics

        def broken(name, data):
            raise RuntimeError("store down")

        monkeypatch.setattr(analytics, "create_document", broken)
        assert submit(client).status_code == 201
        assert collection("guestbook").count_documents({}) == 1
