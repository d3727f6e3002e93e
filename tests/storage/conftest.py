"""In-memory Google Drive served through httpx.MockTransport."""
import asyncio
import itertools
import json
import re
from typing import Optional

import httpx
import pytest

from infrastructure.external.storage import GoogleDriveOptions, StorageConfig, StorageType

TOKEN_URI = "https://oauth2.googleapis.com/token"
FOLDER = "application/vnd.google-apps.folder"

_QUERY = re.compile(r"name = '(?P<name>[^']+)' and '(?P<parent>[^']+)' in parents")


class FakeDrive:
    def __init__(self):
        self.files: dict[str, dict] = {}
        self._ids = itertools.count(1)
        self.token_requests: list[dict] = []
        self.token_delay = 0.01
        self.token_error: Optional[tuple[int, dict]] = None
        self.rejected_tokens: set[str] = set()
        self.api_error: Optional[tuple[int, dict]] = None
        self.api_exception: Optional[Exception] = None
        self.requests: list[httpx.Request] = []

    def add_file(self, name: str, parent: str, content: bytes = b"", mime: str = "image/jpeg") -> str:
        file_id = f"file{next(self._ids):021d}"
        self.files[file_id] = {"id": file_id, "name": name, "parents": [parent], "mimeType": mime, "content": content}
        return file_id

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url.startswith(TOKEN_URI):
            return await self._token(request)

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if token in self.rejected_tokens:
            return httpx.Response(401, json={"error": {"code": 401, "message": "Invalid Credentials"}})
        if self.api_exception is not None:
            raise self.api_exception
        if self.api_error is not None:
            status, body = self.api_error
            return httpx.Response(status, json=body)

        path = request.url.path
        if request.method == "POST" and path == "/upload/drive/v3/files":
            return self._create_multipart(request)
        if request.method == "POST" and path == "/drive/v3/files":
            meta = json.loads(request.content)
            file_id = self.add_file(meta["name"], meta["parents"][0], mime=meta["mimeType"])
            return httpx.Response(200, json={"id": file_id})
        if request.method == "GET" and path == "/drive/v3/files":
            return self._list(request)

        match = re.match(r"^/(?:upload/)?drive/v3/files/(?P<id>[^/]+)$", path)
        if match is None:
            return httpx.Response(400, json={"error": {"message": f"unexpected {path}"}})
        file = self.files.get(match["id"])
        if file is None:
            return httpx.Response(404, json={"error": {"code": 404, "message": "File not found"}})

        if request.method == "DELETE":
            del self.files[file["id"]]
            return httpx.Response(204)
        if request.method == "PATCH":
            file["content"] = request.content
            return httpx.Response(200, json={"id": file["id"]})
        if request.url.params.get("alt") == "media":
            return httpx.Response(200, content=file["content"])
        return httpx.Response(200, json={
            "id": file["id"],
            "name": file["name"],
            "size": str(len(file["content"])),
            "mimeType": file["mimeType"],
            "modifiedTime": "2024-05-01T10:00:00.000Z",
            "md5Checksum": "d41d8cd98f00b204e9800998ecf8427e",
        })

    async def _token(self, request: httpx.Request) -> httpx.Response:
        form = dict(httpx.QueryParams(request.content.decode()))
        self.token_requests.append(form)
        await asyncio.sleep(self.token_delay)
        if self.token_error is not None:
            status, body = self.token_error
            return httpx.Response(status, json=body)
        payload = {"access_token": f"tok-{len(self.token_requests)}", "expires_in": 3600, "token_type": "Bearer"}
        if form.get("grant_type") == "authorization_code":
            payload["refresh_token"] = "1//new-refresh"
        return httpx.Response(200, json=payload)

    def _list(self, request: httpx.Request) -> httpx.Response:
        query = request.url.params.get("q")
        if not query:
            return httpx.Response(200, json={"files": [{"id": fid} for fid in list(self.files)[:1]]})
        match = _QUERY.search(query)
        folders_only = "mimeType" in query
        found = [
            {"id": f["id"], "name": f["name"]}
            for f in self.files.values()
            if f["name"] == match["name"]
            and match["parent"] in f["parents"]
            and (not folders_only or f["mimeType"] == FOLDER)
        ]
        return httpx.Response(200, json={"files": found[:1]})

    def _create_multipart(self, request: httpx.Request) -> httpx.Response:
        boundary = request.headers["Content-Type"].split("boundary=")[1].encode()
        parts = request.content.split(b"--" + boundary)
        meta = json.loads(parts[1].split(b"\r\n\r\n", 1)[1].strip())
        content = parts[2].split(b"\r\n\r\n", 1)[1][:-2]
        mime = parts[2].split(b"\r\n\r\n", 1)[0].split(b"Content-Type: ")[1].decode()
        file_id = self.add_file(meta["name"], meta["parents"][0], content, mime)
        return httpx.Response(200, json={"id": file_id})


@pytest.fixture
def fake_drive():
    return FakeDrive()


@pytest.fixture
def drive_config():
    return StorageConfig(
        type=StorageType.GOOGLE_DRIVE,
        google_drive=GoogleDriveOptions(
            client_id="client-id.apps.googleusercontent.com",
            client_secret="client-secret",
            refresh_token="1//refresh",
            storage_type="appdata",
            redirect_uri="http://localhost:8000/admin/storage/google-drive/callback",
        ),
    )
