"""
Shared pytest fixtures for goswitch tests.

GOSWITCH_HOME is pointed at a throwaway directory before any goswitch module
is imported, so the module-level logger never writes into the real home.
"""

import hashlib
import io
import json
import os
import tarfile
import tempfile
import zipfile
from typing import Any, Callable, Dict, List, Optional

os.environ["GOSWITCH_HOME"] = tempfile.mkdtemp(prefix="goswitch-test-home-")

import pytest
import requests

from goswitch.core.config_manager import ConfigManager

INDEX_URL = "https://mirror.test/dl/?mode=json&include=all"
BACKUP_INDEX_URL = "https://backup.test/dl/?mode=json&include=all"
DOWNLOAD_MIRROR = "https://mirror.test/dl/"


# ============================================================================
# FAKE HTTP
# ============================================================================


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(
        self,
        body: bytes = b"",
        status_code: int = 200,
        json_data: Any = None,
        chunks: Optional[List[bytes]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.content = body
        self.status_code = status_code
        self._json_data = json_data
        self._chunks = chunks
        self.headers = headers if headers is not None else {"content-length": str(len(body))}
        self.closed = False

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Error", response=self)

    def json(self) -> Any:
        if self._json_data is None:
            return json.loads(self.content.decode("utf-8"))
        return self._json_data

    def iter_content(self, chunk_size: int = 1):
        if self._chunks is not None:
            yield from self._chunks
            return
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeHTTP:
    """
    Routes requests.get calls to canned responses.

    A route value may be a FakeResponse, an exception instance to raise, or a
    callable returning either.
    """

    def __init__(self):
        self.routes: Dict[str, Any] = {}
        self.calls: List[str] = []
        self.responses: List[FakeResponse] = []

    def add(self, url: str, response: Any) -> None:
        self.routes[url] = response

    def get(self, url: str, stream: bool = False, timeout: Any = None, **kwargs) -> FakeResponse:
        self.calls.append(url)
        route = self.routes.get(url)
        if route is None:
            raise requests.exceptions.ConnectionError(f"no route to {url}")
        if callable(route) and not isinstance(route, FakeResponse):
            route = route()
        if isinstance(route, BaseException):
            raise route
        self.responses.append(route)
        return route

    def count(self, url: str) -> int:
        return self.calls.count(url)


@pytest.fixture
def fake_http(monkeypatch):
    """Patch requests.get with an in-process router."""
    http = FakeHTTP()
    monkeypatch.setattr(requests, "get", http.get)
    return http


# ============================================================================
# ARCHIVES AND CATALOG
# ============================================================================


def go_tree_files(version: str, windows: bool = False) -> Dict[str, bytes]:
    exe = "bin/go.exe" if windows else "bin/go"
    return {
        f"go/{exe}": f"#!/bin/sh\necho go version go{version} linux/amd64\n".encode(),
        "go/VERSION": f"go{version}\ntime 2024-01-01T00:00:00Z\n".encode(),
        "go/src/runtime/extern.go": b"package runtime\n",
    }


def make_tar_gz(files: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tf:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o755 if "/bin/" in name else 0o644
            tf.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def make_zip(files: Dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in files.items():
            info = zipfile.ZipInfo(name)
            info.external_attr = (0o755 if "/bin/" in name else 0o644) << 16
            zf.writestr(info, data)
    return buffer.getvalue()


def sha256_of(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def catalog_entry(version: str, archive: bytes, goos: str = "linux", goarch: str = "amd64",
                  sha256: Optional[str] = None) -> Dict[str, Any]:
    filename = f"go{version}.{goos}-{goarch}.tar.gz"
    return {
        "version": f"go{version}",
        "stable": not any(m in version for m in ("rc", "beta")),
        "files": [
            {
                "filename": f"go{version}.src.tar.gz",
                "os": "",
                "arch": "",
                "version": f"go{version}",
                "sha256": "0" * 64,
                "size": 10,
                "kind": "source",
            },
            {
                "filename": filename,
                "os": goos,
                "arch": goarch,
                "version": f"go{version}",
                "sha256": sha256 if sha256 is not None else sha256_of(archive),
                "size": len(archive),
                "kind": "archive",
            },
        ],
    }


class GoRelease:
    """A published release served by FakeHTTP."""

    def __init__(self, version: str):
        self.version = version
        self.archive = make_tar_gz(go_tree_files(version))
        self.filename = f"go{version}.linux-amd64.tar.gz"
        self.url = DOWNLOAD_MIRROR + self.filename


@pytest.fixture
def releases():
    return {v: GoRelease(v) for v in ("1.22.0", "1.21.0")}


@pytest.fixture
def serve_catalog(fake_http, releases):
    """Serve a catalog with 1.22.0, 1.21.0 and 1.23rc1 plus their archives."""

    def _serve(overrides: Optional[Dict[str, Dict[str, Any]]] = None,
               chunks: Optional[Dict[str, List[bytes]]] = None) -> FakeHTTP:
        overrides = overrides or {}
        chunks = chunks or {}
        entries = [
            catalog_entry(v, r.archive, sha256=overrides.get(v, {}).get("sha256"))
            for v, r in releases.items()
        ]
        entries.insert(0, {"version": "go1.23rc1", "stable": False, "files": []})
        fake_http.add(INDEX_URL, FakeResponse(json_data=entries))
        for v, r in releases.items():
            fake_http.add(
                r.url,
                lambda r=r, v=v: FakeResponse(body=r.archive, chunks=chunks.get(v)),
            )
        return fake_http

    return _serve


# ============================================================================
# HOME AND CONFIG
# ============================================================================


@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.delenv("GOROOT", raising=False)
    path = tmp_path / "home"
    path.mkdir()
    return path


@pytest.fixture
def config_manager(home):
    """ConfigManager isolated from host installs and the real network."""
    manager = ConfigManager(home)
    config = manager.get_config()
    config["settings"].update({
        "index_mirrors": [INDEX_URL],
        "download_mirrors": [DOWNLOAD_MIRROR],
        "system_paths": [],
        "pointer_mode": "symlink",
        "platform_os": "linux",
        "platform_arch": "amd64",
        "request_rate_limit": 0,
    })
    manager.save_config(config)
    return manager


def make_go_install(path, version: Optional[str] = None, windows: bool = False) -> str:
    """Create a minimal Go tree on disk and return its path."""
    bin_dir = path / "bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    exe = bin_dir / ("go.exe" if windows else "go")
    exe.write_text("#!/bin/sh\nexit 1\n")
    if version:
        (path / "VERSION").write_text(f"go{version}\n")
    return str(path)


@pytest.fixture
def make_install() -> Callable[..., str]:
    return make_go_install
