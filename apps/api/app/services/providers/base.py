from __future__ import annotations

from typing import Any, Protocol

from app.services.profiles.sources import SourceKind


class SourceProvider(Protocol):
    """Pull interface every upstream provider adapter implements.

    ``fetch`` returns the raw payload for one entity, ``None`` when the
    upstream has nothing for it, and raises ``UpstreamUnavailable`` when the
    upstream could not be reached.
    """

    kind: SourceKind

    def fetch(self, entity_key: str) -> dict[str, Any] | None: ...
