"""Load JSON or YAML documents used for policies, rules and snapshots."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

_YAML_SUFFIXES = {'.yaml', '.yml'}


class DocumentError(ValueError):
    """Raised when a document is unreadable, malformed or not a mapping."""

    def __init__(self, path: Path, message: str) -> None:
        super().__init__(f'{path}: {message}')
        self.path = path
        self.detail = message


def load_document(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_text(encoding='utf-8')
    except OSError as exc:
        raise DocumentError(path, f'unreadable ({exc.strerror or exc})') from exc

    try:
        if path.suffix.lower() in _YAML_SUFFIXES:
            payload = yaml.safe_load(raw)
        else:
            payload = json.loads(raw)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise DocumentError(path, f'malformed document ({exc})') from exc

    if not isinstance(payload, dict):
        raise DocumentError(path, 'expected a mapping at the document root')
    return payload


__all__ = ['DocumentError', 'load_document']
