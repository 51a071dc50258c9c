"""JSON snapshots of CLI results."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Mapping

from flight_booking.storage.sqlite_store import utc_now


class JsonStore:
    def __init__(self, root: Path) -> None:
        self.root = root

    async def write(
        self,
        result: Mapping[str, Any],
        *,
        kind: str,
        filename: str | None = None,
    ) -> Path:
        """Write ``result`` under ``<root>/<kind>/`` wrapped with a generation timestamp."""
        generated_at = utc_now()
        target_dir = self.root / kind
        path = target_dir / (filename or f"{kind}_{generated_at.replace(':', '').replace('.', '')}.json")
        document = {
            "generated_at": generated_at,
            "kind": kind,
            "result": dict(result),
        }

        def _op() -> Path:
            target_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(document, indent=2, default=str))
            return path

        return await asyncio.to_thread(_op)
