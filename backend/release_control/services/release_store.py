from __future__ import annotations

import logging
from pathlib import Path

from pydantic import ValidationError

from release_control.core.files import atomic_write_text
from release_control.domain.errors import InvalidTagError
from release_control.domain.release import Release
from release_control.services.observability import emit_structured_log


class ReleaseStore:
    """Release records keyed by tag: a dict cache plus one JSON file per release.

    With ``persist=False`` nothing touches disk. Records handed out are deep
    copies; only ``save`` changes what the store holds.
    """

    def __init__(self, releases_dir: str | Path | None = None, *, persist: bool = True) -> None:
        if persist and releases_dir is None:
            raise ValueError("releases_dir is required when persistence is enabled")
        self.persist = persist
        self.releases_dir = Path(releases_dir).expanduser() if releases_dir is not None else None
        self._cache: dict[str, Release] = {}

    @staticmethod
    def is_valid_key(tag: str) -> bool:
        return bool(tag) and "/" not in tag and "\\" not in tag and not tag.startswith(".")

    def path_for(self, tag: str) -> Path:
        if not self.is_valid_key(tag):
            raise InvalidTagError(tag)
        if self.releases_dir is None:
            raise RuntimeError("release store has no releases_dir")
        return self.releases_dir / f"{tag}.json"

    def save(self, release: Release) -> Release:
        release.touch()
        stored = release.copy_out()
        if self.persist:
            atomic_write_text(self.path_for(release.tag), stored.model_dump_json(indent=2) + "\n")
        self._cache[release.tag] = stored
        return stored.copy_out()

    def load(self, tag: str) -> Release | None:
        cached = self._cache.get(tag)
        if cached is not None:
            return cached.copy_out()
        if not self.persist or not self.is_valid_key(tag):
            return None

        loaded = self._read_file(self.path_for(tag))
        if loaded is None:
            return None
        self._cache[tag] = loaded
        return loaded.copy_out()

    def exists(self, tag: str) -> bool:
        return self.load(tag) is not None

    def list_all(self) -> list[Release]:
        if self.persist and self.releases_dir is not None and self.releases_dir.is_dir():
            for path in sorted(self.releases_dir.glob("*.json")):
                tag = path.name[: -len(".json")]
                if tag in self._cache:
                    continue
                loaded = self._read_file(path)
                if loaded is not None:
                    self._cache[loaded.tag] = loaded

        releases = [release.copy_out() for release in self._cache.values()]
        releases.sort(key=lambda item: item.created_at)
        return releases

    def _read_file(self, path: Path) -> Release | None:
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            emit_structured_log(
                component="release.store",
                event="release_file_unreadable",
                level=logging.WARNING,
                path=str(path),
                error=str(exc),
            )
            return None

        try:
            return Release.model_validate_json(text)
        except ValidationError as exc:
            emit_structured_log(
                component="release.store",
                event="release_file_invalid",
                level=logging.WARNING,
                path=str(path),
                error_count=exc.error_count(),
            )
            return None
