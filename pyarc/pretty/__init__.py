"""Pretty formatting utilities for CLI output."""

import json
import sys
from typing import IO, Optional


def pretty_json(data: object, prefix: str = "") -> str:
    """Format JSON data with optional prefix."""
    raw = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    if prefix:
        return "\n".join(f"{prefix}{line}" for line in raw.split("\n"))
    return raw


def print_json(data: object, prefix: str = "", file: Optional[IO[str]] = None) -> None:
    """Print JSON data to file (default stdout)."""
    if file is None:
        file = sys.stdout
    print(pretty_json(data, prefix), file=file)
