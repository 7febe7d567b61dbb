"""
HTTP adapter tests.

ASGITransport does not run the lifespan, so the fixture wires the same
state the lifespan would: a service factory and a session factory bound to
the test database.
"""

import httpx
import pytest
import pytest_asyncio
from jose import jwt

from filevault.main import create_app

from .conftest import make_png, png_header


@pytest_asyncio.fixture
async def client(settings, factory, session_factory):
    app = create_app(settings)
    app.state.factory = factory
    app.state.session_factory = session_factory
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth(settings):
    def headers(user_id: str) -> dict:
        token = jwt.encode({"sub": user_id}, settings.secret_key, algorithm=settings.algorithm)
        return {"Authorization": f"Bearer {token}"}

    return headers


async def upload(
    client,
    headers,
    name="report.pdf",
    data=b"%PDF-1.4 body",
    folder_id="null",
    mime_type="application/pdf",
):
    return await client.post(
        "/api/files/upload",
        files={"file": (name, data, mime_type)},
        data={"folderId": folder_id},
        headers=headers,
    )


@pytest.mark.integration
class TestFilesApi:
    """Upload, download and sharing over HTTP."""

    @pytest.mark.asyncio
    async def test_upload_and_download(self, client, auth):
        response = await upload(client, auth("alice"))

        assert response.status_code == 201
        body = response.json()
        assert body["originalName"] == "report.pdf"
        assert body["userId"] == "alice"
        assert body["folderId"] is None

        download = await client.get(f"/api/files/{body['id']}/download", headers=auth("alice"))
        assert download.status_code == 200
        assert download.content == b"%PDF-1.4 body"

    @pytest.mark.asyncio
    async def test_upload_requires_authentication(self, client):
        response = await upload(client, {})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_token(self, client):
        response = await upload(client, {"Authorization": "Bearer not-a-token"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_unknown_file_payload(self, client, auth):
        response = await client.get("/api/files/missing/download", headers=auth("alice"))

        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["error"]["type"] == "FILE_NOT_FOUND"
        assert body["error"]["message"] == "File not found"
        assert "timestamp" in body["error"]

    @pytest.mark.asyncio
    async def test_share_grants_download(self, client, auth):
        file_id = (await upload(client, auth("alice"))).json()["id"]

        denied = await client.get(f"/api/files/{file_id}/download", headers=auth("bob"))
        assert denied.status_code == 400
        assert denied.json()["error"]["type"] == "VALIDATION_ERROR"

        shared = await client.post(
            f"/api/files/{file_id}/shares", json={"userIds": ["bob"]}, headers=auth("alice")
        )
        assert shared.status_code == 201
        assert shared.json()[0]["sharedWithUserId"] == "bob"

        allowed = await client.get(f"/api/files/{file_id}/download", headers=auth("bob"))
        assert allowed.status_code == 200

    @pytest.mark.asyncio
    async def test_rename_and_delete(self, client, auth):
        file_id = (await upload(client, auth("alice"))).json()["id"]

        renamed = await client.patch(
            f"/api/files/{file_id}", json={"name": "Annual Report"}, headers=auth("alice")
        )
        assert renamed.json()["originalName"] == "Annual Report.pdf"

        deleted = await client.delete(f"/api/files/{file_id}", headers=auth("alice"))
        assert deleted.status_code == 204
        missing = await client.get(f"/api/files/{file_id}/download", headers=auth("alice"))
        assert missing.status_code == 404

    @pytest.mark.asyncio
    async def test_extract_requires_a_source(self, client, auth):
        response = await client.post(
            "/api/files/extract-thumbnail", json={"timestamp": 2}, headers=auth("alice")
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_image_upload_exposes_thumbnail_name_only(self, client, auth):
        response = await upload(
            client, auth("alice"), name="photo.png", data=make_png(), mime_type="image/png"
        )

        assert response.status_code == 201
        body = response.json()
        assert "filePath" not in body
        assert body["thumbnailPath"] == f"thumb_{body['filename']}"

        thumbnail = await client.get(f"/api/thumbnails/{body['thumbnailPath']}")
        assert thumbnail.status_code == 200
        assert thumbnail.headers["content-type"] == "image/jpeg"

    @pytest.mark.asyncio
    async def test_unknown_thumbnail(self, client):
        response = await client.get("/api/thumbnails/missing.jpg")

        assert response.status_code == 404
        assert response.json()["error"]["type"] == "FILE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_oversized_image_rejected(self, client, auth):
        response = await upload(
            client,
            auth("alice"),
            name="huge.png",
            data=png_header(20000, 20000),
            mime_type="image/png",
        )

        assert response.status_code == 422
        assert response.json()["error"]["type"] == "THUMBNAIL_ERROR"
        listing = await client.get("/api/files", headers=auth("alice"))
        assert listing.json() == []


@pytest.mark.integration
class TestFoldersApi:
    """Folder endpoints."""

    @pytest.mark.asyncio
    async def test_create_and_list_tree(self, client, auth):
        created = await client.post("/api/folders", json={"name": "Docs"}, headers=auth("alice"))
        assert created.status_code == 201
        folder_id = created.json()["id"]

        await upload(client, auth("alice"), folder_id=folder_id)

        tree = (await client.get("/api/folders", headers=auth("alice"))).json()
        assert [node["name"] for node in tree] == ["Docs"]
        assert tree[0]["subfolders"] == []
        assert [f["originalName"] for f in tree[0]["files"]] == ["report.pdf"]

    @pytest.mark.asyncio
    async def test_duplicate_name(self, client, auth):
        await client.post("/api/folders", json={"name": "Docs"}, headers=auth("alice"))

        response = await client.post("/api/folders", json={"name": "docs"}, headers=auth("alice"))

        assert response.status_code == 400
        assert response.json()["error"]["type"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_missing_parent(self, client, auth):
        response = await client.post(
            "/api/folders", json={"name": "Child", "parentId": "missing"}, headers=auth("alice")
        )

        assert response.status_code == 404
        assert response.json()["error"]["type"] == "FOLDER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_delete_guard_and_delete(self, client, auth):
        folder_id = (
            await client.post("/api/folders", json={"name": "Docs"}, headers=auth("alice"))
        ).json()["id"]
        file_id = (await upload(client, auth("alice"), folder_id=folder_id)).json()["id"]

        blocked = await client.delete(f"/api/folders/{folder_id}", headers=auth("alice"))
        assert blocked.status_code == 400

        await client.delete(f"/api/files/{file_id}", headers=auth("alice"))
        deleted = await client.delete(f"/api/folders/{folder_id}", headers=auth("alice"))
        assert deleted.status_code == 204

    @pytest.mark.asyncio
    async def test_share_folder(self, client, auth):
        folder_id = (
            await client.post("/api/folders", json={"name": "Team"}, headers=auth("alice"))
        ).json()["id"]

        shared = await client.post(
            f"/api/folders/{folder_id}/shares", json={"userIds": ["bob"]}, headers=auth("alice")
        )
        assert shared.status_code == 201
        assert shared.json()[0]["accessLevel"] == "write"

        listing = (await client.get("/api/folders/shared", headers=auth("bob"))).json()
        assert [f["id"] for f in listing] == [folder_id]

    @pytest.mark.asyncio
    async def test_get_folder_checks_access(self, client, auth):
        folder_id = (
            await client.post("/api/folders", json={"name": "Private"}, headers=auth("alice"))
        ).json()["id"]

        owner = await client.get(f"/api/folders/{folder_id}", headers=auth("alice"))
        assert owner.status_code == 200
        assert owner.json()["name"] == "Private"

        denied = await client.get(f"/api/folders/{folder_id}", headers=auth("bob"))
        assert denied.status_code == 400
        assert denied.json()["error"]["type"] == "VALIDATION_ERROR"

        missing = await client.get("/api/folders/does-not-exist", headers=auth("alice"))
        assert missing.status_code == 404
        assert missing.json()["error"]["type"] == "FOLDER_NOT_FOUND"
