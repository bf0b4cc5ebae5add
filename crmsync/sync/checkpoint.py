"""
Versioned checkpoint for resumable imports.

A checkpoint is the durable cursor of a sync job. It is serialized with a
version tag so that jobs written by an older release can still be resumed
after a format change.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Any

# Version written by this release
CHECKPOINT_VERSION = 1

# Contacts requested per page
DEFAULT_PAGE_SIZE = 200


class CheckpointError(Exception):
    """Raised when a stored checkpoint cannot be decoded."""

    pass


@dataclass(frozen=True)
class Checkpoint:
    """
    Cursor state persisted after every page.

    Attributes:
        next_page_token: Token for the next page, None before the first page
                         and after the last one
        page_size: Page size the job was started with
        run_id: Generated once per job; identifies the run across workers
        last_external_id: Resource name of the last record on the last page
    """

    next_page_token: str | None = None
    page_size: int = DEFAULT_PAGE_SIZE
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    last_external_id: str | None = None

    @classmethod
    def new(cls, page_size: int = DEFAULT_PAGE_SIZE) -> Checkpoint:
        """Empty checkpoint with a fresh run id."""
        return cls(page_size=page_size)

    def advance(
        self, next_page_token: str | None, last_external_id: str | None
    ) -> Checkpoint:
        """
        Return the checkpoint after a page has been applied.

        The last external id is kept when the page was empty.
        """
        return replace(
            self,
            next_page_token=next_page_token,
            last_external_id=last_external_id or self.last_external_id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": CHECKPOINT_VERSION,
            "next_page_token": self.next_page_token,
            "page_size": self.page_size,
            "run_id": self.run_id,
            "last_external_id": self.last_external_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Checkpoint:
        """
        Decode a stored checkpoint.

        Untagged blobs are treated as the legacy camelCase format
        (nextPageToken, pageSize, runId, lastPerson).

        Raises:
            CheckpointError: If the blob is not a dict or has an unknown version
        """
        if data is None:
            return cls.new()
        if not isinstance(data, dict):
            raise CheckpointError(
                f"Checkpoint must be an object, got {type(data).__name__}"
            )

        version = data.get("version")
        if version is None:
            return cls._from_legacy(data)
        if version == 1:
            return cls._from_v1(data)
        raise CheckpointError(f"Unsupported checkpoint version: {version!r}")

    @classmethod
    def _from_v1(cls, data: dict[str, Any]) -> Checkpoint:
        return cls(
            next_page_token=data.get("next_page_token"),
            page_size=int(data.get("page_size") or DEFAULT_PAGE_SIZE),
            run_id=data.get("run_id") or str(uuid.uuid4()),
            last_external_id=data.get("last_external_id"),
        )

    @classmethod
    def _from_legacy(cls, data: dict[str, Any]) -> Checkpoint:
        return cls(
            next_page_token=data.get("nextPageToken"),
            page_size=int(data.get("pageSize") or DEFAULT_PAGE_SIZE),
            run_id=data.get("runId") or str(uuid.uuid4()),
            last_external_id=data.get("lastPerson"),
        )
