"""Default cancel message, error factory and error transformer."""

import time

from tracked_http.core.errors import UnknownApiError, passthrough_transformer


def default_cancel_message(action: str, created_at: float) -> str:
    elapsed = time.time() - created_at
    return f"action {action} cancelled after {elapsed:.3f} seconds"


def default_error() -> BaseException:
    return UnknownApiError("Unknown API error occurred")


error_transformer = passthrough_transformer
