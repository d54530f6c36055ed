"""Template declaration loader for peerkeeper.

Reads the package declarations of feature templates from a JSON file.
Either a bare list or an object with a ``templates`` list is accepted::

    {
      "templates": [
        {
          "id": "ui",
          "packages": [{"name": "react", "version": "^18.2.0"}],
          "devPackages": [{"name": "@types/react", "version": "^18.2.0"}],
          "peerDependencies": []
        }
      ]
    }

``template`` is accepted as an alias of ``id``, and each package list
may also be given as a ``{name: version}`` object.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

from peerkeeper.exceptions import TemplateFormatError
from peerkeeper.utils.filesystem import safe_read_file
from peerkeeper.utils.logger import get_logger
from peerkeeper.models.manifest import PackageRef
from peerkeeper.models.template import TemplateDeclaration

logger = get_logger("templates")

__all__ = ["load_templates", "parse_templates"]

_PACKAGE_FIELDS = ("packages", "devPackages", "peerDependencies")


def load_templates(file_path: Union[str, Path]) -> List[TemplateDeclaration]:
    """Read template declarations from ``file_path``.

    Raises:
        FileOperationError: The file is missing, too large or unreadable.
        TemplateFormatError: The content is not valid JSON or does not
            follow the declaration format.
    """
    path = Path(file_path)
    text = safe_read_file(path)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise TemplateFormatError(
            f"Invalid JSON in template file: {exc}", file_path=str(path)
        ) from exc

    templates = parse_templates(data, file_path=str(path))
    logger.debug("Loaded %d templates from %s", len(templates), path)
    return templates


def parse_templates(data: Any, *, file_path: Optional[str] = None) -> List[TemplateDeclaration]:
    """Build declarations from already decoded JSON ``data``."""
    if isinstance(data, Mapping):
        if "templates" not in data:
            raise TemplateFormatError(
                "Template file must be a list or contain a 'templates' list",
                file_path=file_path,
                field="templates",
            )
        data = data["templates"]

    if not isinstance(data, list):
        raise TemplateFormatError(
            "Templates must be a list", file_path=file_path, field="templates"
        )

    return [_parse_template(entry, index, file_path) for index, entry in enumerate(data)]


def _parse_template(entry: Any, index: int, file_path: Optional[str]) -> TemplateDeclaration:
    if not isinstance(entry, Mapping):
        raise TemplateFormatError(
            "Template entry must be an object", file_path=file_path, index=index
        )

    template_id = entry.get("id", entry.get("template"))
    if not isinstance(template_id, str) or not template_id:
        raise TemplateFormatError(
            "Template entry needs a non-empty 'id'",
            file_path=file_path,
            index=index,
            field="id",
        )

    packages, dev_packages, peer_dependencies = (
        _parse_refs(entry.get(name), index, name, file_path) for name in _PACKAGE_FIELDS
    )
    return TemplateDeclaration(template_id, packages, dev_packages, peer_dependencies)


def _parse_refs(value: Any, index: int, field: str, file_path: Optional[str]) -> List[PackageRef]:
    if value is None:
        return []

    if isinstance(value, Mapping):
        value = [{"name": name, "version": version} for name, version in value.items()]

    if not isinstance(value, list):
        raise TemplateFormatError(
            f"'{field}' must be a list of {{name, version}} objects",
            file_path=file_path,
            index=index,
            field=field,
        )

    refs: List[PackageRef] = []
    for item in value:
        name = item.get("name") if isinstance(item, Mapping) else None
        version = item.get("version") if isinstance(item, Mapping) else None
        if not isinstance(name, str) or not name or not isinstance(version, str) or not version:
            raise TemplateFormatError(
                f"Every entry of '{field}' needs a string 'name' and 'version'",
                file_path=file_path,
                index=index,
                field=field,
            )
        refs.append(PackageRef(name, version))
    return refs
