"""Articulation-set catalogue: search and load files under one root directory.

:class:`Catalogue` does the filesystem work and backs the bridge server's
HTTP API.  Display clients use one of the async adapters, either
:class:`LocalCatalogue` (same machine) or :class:`RemoteCatalogue` (through
the server's ``/api/articulations`` endpoints).
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import httpx

from ksbridge.errors import CataloguePathError
from ksbridge.models import CatalogueEntry

logger = logging.getLogger(__name__)

SET_SUFFIX = ".plist"
SEARCH_LIMIT = 100


class Catalogue:
    """Articulation-set files below ``root``."""

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser()

    def _scan(self) -> list[Path]:
        try:
            return sorted(p for p in self.root.rglob(f"*{SET_SUFFIX}") if p.is_file())
        except OSError as exc:
            logger.warning("catalogue scan of %s failed: %s", self.root, exc)
            return []

    def _entry(self, path: Path) -> CatalogueEntry:
        relative = path.relative_to(self.root).as_posix()
        return CatalogueEntry(name=path.name[: -len(SET_SUFFIX)], relative_path=relative)

    def total(self) -> int:
        return len(self._scan())

    def search(self, query: str = "", limit: int = SEARCH_LIMIT) -> list[CatalogueEntry]:
        """Entries whose name or relative path contains ``query`` (any case).

        A missing or unreadable root yields an empty list.
        """
        needle = query.strip().lower()
        results = []
        for path in self._scan():
            entry = self._entry(path)
            if needle and needle not in entry.name.lower() \
                    and needle not in entry.relative_path.lower():
                continue
            results.append(entry)
            if len(results) >= limit:
                break
        return results

    def resolve_path(self, relative_path: str) -> Path:
        """Resolve ``relative_path`` inside the root or raise CataloguePathError."""
        if not relative_path:
            raise CataloguePathError("path required")
        if "\x00" in relative_path:
            raise CataloguePathError("path contains a NUL byte")
        root = self.root.resolve()
        try:
            full = (root / relative_path).resolve()
        except ValueError as exc:
            raise CataloguePathError(f"invalid catalogue path: {exc}") from exc
        if not full.is_relative_to(root):
            raise CataloguePathError(f"'{relative_path}' is outside the catalogue")
        return full

    def load(self, relative_path: str) -> bytes:
        return self.resolve_path(relative_path).read_bytes()


# -- async adapters used by display clients ----------------------------------

class LocalCatalogue:
    """Async facade over a :class:`Catalogue` on this machine."""

    def __init__(self, catalogue: Catalogue):
        self.catalogue = catalogue

    async def search(self, query: str) -> list[CatalogueEntry]:
        return self.catalogue.search(query)

    async def load(self, relative_path: str) -> bytes:
        return self.catalogue.load(relative_path)


class RemoteCatalogue:
    """Catalogue served by a bridge server's HTTP API."""

    def __init__(self, base_url: str, timeout: float = 10.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def search(self, query: str) -> list[CatalogueEntry]:
        try:
            resp = await self._client.get("/api/articulations", params={"search": query})
            resp.raise_for_status()
            payload = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("catalogue search for '%s' failed: %s", query, exc)
            return []
        sets = payload.get("sets") if isinstance(payload, dict) else None
        if not isinstance(sets, list):
            logger.warning("catalogue search for '%s' returned no set list", query)
            return []
        return [
            CatalogueEntry(name=item["name"], relative_path=item["path"])
            for item in sets
            if isinstance(item, dict)
            and isinstance(item.get("name"), str) and isinstance(item.get("path"), str)
        ]

    async def load(self, relative_path: str) -> bytes:
        resp = await self._client.post("/api/articulations/load", json={"path": relative_path})
        resp.raise_for_status()
        payload = resp.json()
        content = payload.get("content") if isinstance(payload, dict) else None
        if not isinstance(content, str):
            raise ValueError(f"catalogue returned no content for '{relative_path}'")
        return content.encode("utf-8")

    async def aclose(self):
        await self._client.aclose()
