# gs_platform/engine/_logging.py
# progress event emitter for engine callers.
# Copyright (c) 2025-2026 CrossWatch / Cenodude (https://github.com/cenodude/CrossWatch)
from __future__ import annotations

import json
from typing import Any, Callable

from .._logging import log as _root_log

log = _root_log.child("engine")


class Emitter:
    def __init__(self, cb: Callable[[str], None] | None):
        self.cb = cb

    def emit(self, event: str, **data: Any) -> None:
        if not self.cb:
            return
        payload = {"event": event}
        payload.update(data)
        try:
            self.cb(json.dumps(payload, separators=(",", ":"), default=str))
        except Exception as e:
            log.debug(f"progress callback failed for {event}: {e}")
