"""
web/resources.py -- Allow-list mapping from logical page names to static files.

The set of names is fixed when the resolver is built at startup. Nothing taken
from a request ever reaches the filesystem: a route looks up its own logical
name here and gets back a path that was validated at construction time.

Construction rejects (ConfigurationFatal):
  - names outside [a-z0-9-]+ (no dots, slashes, or traversal fragments)
  - targets that resolve outside their configured root (symlink escapes)

resolve() raises NotFound for unknown names, for names from the other
namespace, and for allow-listed files missing on disk.

Layer rule: no imports from api/, auth/, or activity/.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

from core.errors import ConfigurationFatal, NotFound

_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9-]*$")

DEFAULT_PUBLIC_PAGES = {"index": "index.html"}


@dataclass(frozen=True)
class Resource:
    name: str
    path: Path
    protected: bool


class ResourceResolver:
    """Resolve public and protected page names to files under fixed roots.

    Usage:
        resolver = ResourceResolver(Path("public"), Path("private-views"), {"index": "index.html"}, ["dashboard"])
        resolver.resolve("index", protected=False).path
        resolver.resolve("dashboard", protected=True).path
    """

    def __init__(
        self,
        public_root: Path,
        protected_root: Path,
        public_pages: Mapping[str, str] = DEFAULT_PUBLIC_PAGES,
        protected_names: Iterable[str] = (),
    ) -> None:
        self._public_root = Path(public_root).resolve()
        self._protected_root = Path(protected_root).resolve()
        resources: dict[tuple[str, bool], Resource] = {}
        for name, filename in public_pages.items():
            resources[(name, False)] = self._build(name, filename, self._public_root, protected=False)
        for name in protected_names:
            resources[(name, True)] = self._build(name, f"{name}.html", self._protected_root, protected=True)
        self._resources = resources

    @staticmethod
    def _build(name: str, filename: str, root: Path, protected: bool) -> Resource:
        if not _NAME_RE.match(name):
            raise ConfigurationFatal(f"Invalid page name in allow-list: {name!r}")
        path = (root / filename).resolve()
        if not path.is_relative_to(root):
            raise ConfigurationFatal(f"Page {name!r} resolves outside its root")
        return Resource(name=name, path=path, protected=protected)

    @property
    def public_names(self) -> list[str]:
        return sorted(name for name, protected in self._resources if not protected)

    @property
    def protected_names(self) -> list[str]:
        return sorted(name for name, protected in self._resources if protected)

    def resolve(self, name: str, *, protected: bool) -> Resource:
        resource = self._resources.get((name, protected))
        if resource is None or not resource.path.is_file():
            raise NotFound()
        return resource
