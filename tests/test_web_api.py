from __future__ import annotations

import json

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from marknote.services.workspace import NoteWorkspace
from marknote.web import create_app
from marknote.web import server as web_server


def _build_client(config, clock=None) -> tuple[TestClient, NoteWorkspace]:
    workspace = NoteWorkspace(config, clock=clock) if clock else NoteWorkspace(config)
    app = create_app(workspace, config=config)
    return TestClient(app), workspace


def _issue_captcha(client: TestClient, workspace: NoteWorkspace, monkeypatch, code: str = "AbCd") -> str:
    monkeypatch.setattr(workspace.captcha, "generate_code", lambda: code)
    response = client.get("/api/captcha")
    assert response.status_code == 200
    return response.headers["x-captcha-id"]


def _multipart(filename: str, content: bytes, boundary: str = "----marknoteboundary") -> tuple[bytes, dict]:
    body = (
        f"--{boundary}\r\n"
        f'Content-Disposition: form-data; name="file"; filename="{filename}"\r\n'
        "Content-Type: application/octet-stream\r\n\r\n"
    ).encode() + content + f"\r\n--{boundary}--\r\n".encode()
    return body, {"Content-Type": f"multipart/form-data; boundary={boundary}"}


def test_note_lifecycle_end_to_end(temp_config):
    client, _workspace = _build_client(temp_config)

    response = client.post("/api/create", json={"title": "note1"})
    assert response.status_code == 200
    note = response.json()["note"]
    assert note["filename"] == "note1.md"
    assert note["path"] == "/file/note1.md"
    assert note["id"]

    response = client.get("/api/files", params={"page": 1, "pageSize": 20})
    assert response.status_code == 200
    payload = response.json()
    assert [item["filename"] for item in payload["data"]] == ["note1.md"]
    assert payload["total"] == 1
    assert payload["hasMore"] is False

    response = client.post("/api/save", json={"path": "/file/note1.md", "content": "# Hi"})
    assert response.json() == {"success": True}
    assert client.get("/api/file/note1.md").json() == {"content": "# Hi"}
    raw = client.get("/file/note1.md")
    assert raw.status_code == 200
    assert raw.text == "# Hi"

    response = client.post("/api/delete", json={"path": "/file/note1.md"})
    assert response.status_code == 200

    response = client.get("/api/file/note1.md")
    assert response.status_code == 404
    assert "error" in response.json()


def test_list_defaults_and_pagination(temp_config):
    client, workspace = _build_client(temp_config)
    for title in ("a", "b", "c"):
        workspace.notes.create(title)

    payload = client.get("/api/files").json()
    assert payload["page"] == 1
    assert payload["pageSize"] == 20
    assert payload["total"] == 3

    payload = client.get("/api/files", params={"page": 1, "pageSize": 1}).json()
    assert len(payload["data"]) == 1
    assert payload["hasMore"] is True


def test_invalid_pagination_is_bad_request(temp_config):
    client, _workspace = _build_client(temp_config)

    response = client.get("/api/files", params={"page": 0})

    assert response.status_code == 400


@pytest.mark.parametrize(
    ("path", "body"),
    [
        ("/api/create", {}),
        ("/api/create", {"title": ""}),
        ("/api/save", {"path": "/file/x.md"}),
        ("/api/delete", {}),
        ("/api/rename", {"path": "/file/x.md"}),
        ("/api/share", {"expireDays": 1}),
    ],
)
def test_missing_parameters_are_rejected(temp_config, path, body):
    client, _workspace = _build_client(temp_config)

    response = client.post(path, json=body)

    assert response.status_code == 400
    assert response.json() == {"error": "Missing required parameters"}


def test_create_twice_disambiguates(temp_config, clock):
    client, _workspace = _build_client(temp_config, clock)

    first = client.post("/api/create", json={"title": "dup"}).json()["note"]
    clock.advance(1)
    second = client.post("/api/create", json={"title": "dup"}).json()["note"]

    assert first["filename"] == "dup.md"
    assert second["filename"] == f"dup{int(clock() * 1000)}.md"


def test_rename_endpoint(temp_config):
    client, workspace = _build_client(temp_config)
    workspace.notes.save("old.md", "text")

    response = client.post("/api/rename", json={"path": "/file/old.md", "newTitle": "new"})
    assert response.status_code == 200
    assert response.json()["note"]["filename"] == "new.md"

    response = client.post("/api/rename", json={"path": "/file/old.md", "newTitle": "again"})
    assert response.status_code == 404


def test_delete_unknown_note_is_not_found(temp_config):
    client, _workspace = _build_client(temp_config)

    response = client.post("/api/delete", json={"path": "/file/ghost.md"})

    assert response.status_code == 404


def test_upload_note(temp_config):
    client, workspace = _build_client(temp_config)
    body, headers = _multipart("uploaded.md", "# Uploaded\r\nline".encode())

    response = client.post("/api/upload", content=body, headers=headers)
    assert response.status_code == 200, response.text
    assert response.json()["note"]["filename"] == "uploaded.md"
    assert workspace.notes.read("uploaded.md") == "# Uploaded\r\nline"

    response = client.post("/api/upload", content=body, headers=headers)
    assert response.status_code == 400
    assert response.json() == {"error": "File already exists"}


def test_upload_rejects_non_markdown_and_bad_bodies(temp_config):
    client, _workspace = _build_client(temp_config)

    body, headers = _multipart("notes.txt", b"text")
    assert client.post("/api/upload", content=body, headers=headers).status_code == 400

    response = client.post("/api/upload", content=b"garbage", headers={"Content-Type": "text/plain"})
    assert response.status_code == 400

    body, headers = _multipart("empty.md", b"")
    assert client.post("/api/upload", content=body, headers=headers).status_code == 400


def test_upload_respects_size_limit(temp_config, monkeypatch):
    monkeypatch.setattr(web_server, "_MAX_UPLOAD_BYTES", 64)
    client, _workspace = _build_client(temp_config)
    body, headers = _multipart("big.md", b"x" * 200)

    response = client.post("/api/upload", content=body, headers=headers)

    assert response.status_code == 413


def test_image_upload_and_fetch(temp_config):
    client, _workspace = _build_client(temp_config)
    png = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR"
    body, headers = _multipart("shot.PNG", png)

    response = client.post("/api/upload-image", content=body, headers=headers)
    assert response.status_code == 200, response.text
    image_url = response.json()["imageUrl"]
    assert image_url.startswith("/image/") and image_url.endswith(".png")

    fetched = client.get(image_url)
    assert fetched.status_code == 200
    assert fetched.headers["content-type"] == "image/png"
    assert fetched.content == png

    assert client.get("/image/missing.png").status_code == 404


def test_image_upload_rejects_unsupported_type(temp_config):
    client, _workspace = _build_client(temp_config)
    body, headers = _multipart("doc.pdf", b"%PDF")

    response = client.post("/api/upload-image", content=body, headers=headers)

    assert response.status_code == 400


def test_image_upload_requires_file_field(temp_config):
    client, workspace = _build_client(temp_config)

    response = client.post(
        "/api/upload-image", files={"attachment": ("shot.png", b"\x89PNG", "image/png")}
    )

    assert response.status_code == 400
    assert workspace.images.iter_images() == []


def test_image_upload_respects_size_limit(temp_config, monkeypatch):
    monkeypatch.setattr(web_server, "_MAX_UPLOAD_BYTES", 64)
    client, workspace = _build_client(temp_config)

    response = client.post("/api/upload-image", files={"file": ("big.png", b"x" * 200, "image/png")})

    assert response.status_code == 413
    assert workspace.images.iter_images() == []


def test_image_upload_rejects_empty_file(temp_config):
    client, _workspace = _build_client(temp_config)

    response = client.post("/api/upload-image", files={"file": ("blank.png", b"", "image/png")})

    assert response.status_code == 400


def test_delete_cleans_up_embedded_images(temp_config):
    client, workspace = _build_client(temp_config)
    body, headers = _multipart("pic.png", b"png")
    image_url = client.post("/api/upload-image", content=body, headers=headers).json()["imageUrl"]
    workspace.notes.save("gallery.md", f"![pic]({image_url})")

    client.post("/api/delete", json={"path": "/file/gallery.md"})

    assert client.get(image_url).status_code == 404


def test_log_files_are_readable(temp_config):
    client, _workspace = _build_client(temp_config)
    (temp_config.log_root / "notes.log").write_text("entry", encoding="utf-8")

    assert client.get("/log/notes.log").text == "entry"
    assert client.get("/log/absent.log").status_code == 404


def test_log_route_hides_credentials(temp_config):
    client, workspace = _build_client(temp_config)
    workspace.credentials.write("admin", "s3cret")

    response = client.get("/log/login")

    assert response.status_code == 404
    assert "s3cret" not in response.text
    assert client.get("/log/shares.json").status_code == 200


def test_share_lifecycle(temp_config, clock):
    client, workspace = _build_client(temp_config, clock)
    workspace.notes.save("shared.md", "shared body")

    response = client.post(
        "/api/share",
        json={"path": "/file/shared.md", "expireDays": 1},
        headers={"host": "notes.local:3001"},
    )
    assert response.status_code == 200
    payload = response.json()
    assert payload["shareUrl"] == f"http://notes.local:3001/share/{payload['shareId']}"

    response = client.get(f"/api/share/{payload['shareId']}")
    assert response.json() == {"content": "shared body", "filename": "shared.md"}

    clock.advance(24 * 60 * 60 + 1)
    response = client.get(f"/api/share/{payload['shareId']}")
    assert response.status_code == 404
    stored = json.loads(temp_config.shares_file.read_text(encoding="utf-8"))
    assert payload["shareId"] not in stored


def test_share_with_huge_expiry_never_expires(temp_config, clock):
    client, workspace = _build_client(temp_config, clock)
    workspace.notes.save("n.md", "forever")

    response = client.post("/api/share", json={"path": "/file/n.md", "expireDays": 1e305})
    assert response.status_code == 200
    share_id = response.json()["shareId"]
    assert workspace.shares.get(share_id).expires_at is None

    clock.advance(10 * 365 * 24 * 60 * 60)
    assert client.get(f"/api/share/{share_id}").json()["content"] == "forever"


def test_share_unknown_note_is_not_found(temp_config):
    client, _workspace = _build_client(temp_config)

    response = client.post("/api/share", json={"path": "/file/none.md"})

    assert response.status_code == 404


def test_captcha_endpoint_returns_svg(temp_config):
    client, workspace = _build_client(temp_config)

    response = client.get("/api/captcha")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("image/svg+xml")
    assert response.text.startswith("<svg")
    assert response.headers["x-captcha-id"] in workspace.captcha


def test_login_succeeds_with_valid_captcha_and_credentials(temp_config, monkeypatch):
    client, workspace = _build_client(temp_config)
    workspace.credentials.write("admin", "s3cret")
    captcha_id = _issue_captcha(client, workspace, monkeypatch)

    response = client.post(
        "/api/login",
        json={"username": "admin", "password": "s3cret", "captchaId": captcha_id, "captchaCode": "abcd"},
    )

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_login_failures(temp_config, monkeypatch):
    client, workspace = _build_client(temp_config)

    response = client.post("/api/login", json={"username": "admin"})
    assert response.status_code == 400
    assert response.json()["success"] is False

    captcha_id = _issue_captcha(client, workspace, monkeypatch)
    response = client.post(
        "/api/login",
        json={"username": "admin", "password": "pw", "captchaId": captcha_id, "captchaCode": "zzzz"},
    )
    assert response.status_code == 400

    response = client.post(
        "/api/login",
        json={"username": "admin", "password": "pw", "captchaId": captcha_id, "captchaCode": "AbCd"},
    )
    assert response.status_code == 400
    assert response.json()["message"] == "Captcha has expired"

    captcha_id = _issue_captcha(client, workspace, monkeypatch)
    response = client.post(
        "/api/login",
        json={"username": "admin", "password": "pw", "captchaId": captcha_id, "captchaCode": "AbCd"},
    )
    assert response.status_code == 500

    workspace.credentials.write("admin", "s3cret")
    captcha_id = _issue_captcha(client, workspace, monkeypatch)
    response = client.post(
        "/api/login",
        json={"username": "admin", "password": "pw", "captchaId": captcha_id, "captchaCode": "AbCd"},
    )
    assert response.status_code == 401


@pytest.mark.parametrize(
    "body",
    [
        {"username": 123, "password": "pw", "captchaId": "id", "captchaCode": "code"},
        {"username": ["admin"], "password": "pw"},
        [],
    ],
)
def test_login_rejects_malformed_bodies_with_login_shape(temp_config, body):
    client, _workspace = _build_client(temp_config)

    response = client.post("/api/login", json=body)

    assert response.status_code == 400
    assert response.json() == {"success": False, "message": "Missing required parameters"}


def test_login_rejects_invalid_json(temp_config):
    client, _workspace = _build_client(temp_config)

    response = client.post(
        "/api/login", content=b"{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400
    assert response.json()["success"] is False


def test_spa_fallback_serves_index(temp_config):
    client, _workspace = _build_client(temp_config)
    assert client.get("/share/abc").status_code == 404

    temp_config.frontend_root.mkdir()
    (temp_config.frontend_root / "index.html").write_text("<html>app</html>", encoding="utf-8")
    (temp_config.frontend_root / "favicon.ico").write_bytes(b"ico")

    assert client.get("/share/abc").text == "<html>app</html>"
    assert client.get("/").text == "<html>app</html>"
    assert client.get("/favicon.ico").content == b"ico"
    assert client.get("/api/unknown").status_code == 404


def test_lifespan_closes_workspace(temp_config):
    workspace = NoteWorkspace(temp_config)
    app = create_app(workspace, config=temp_config)

    with TestClient(app) as client:
        client.get("/api/captcha")
        assert len(workspace.captcha) == 1

    assert workspace.closed
    assert len(workspace.captcha) == 0
