from __future__ import annotations

import re
from pathlib import Path
from typing import Union

PathLike = Union[str, Path]

_XML_SUFFIX = re.compile(r"\.xml$", re.IGNORECASE)


def merge_paths(base: PathLike, relative: PathLike) -> Path:
    """Resolve ``relative`` against ``base`` and keep the result inside ``base``.

    Security notes:
    - Raises ValueError on traversal (``..`` segments or absolute paths that
      leave ``base``).

    """

    base_path = Path(base).resolve()
    merged = (base_path / relative).resolve()
    if merged != base_path and base_path not in merged.parents:
        raise ValueError("Path traversal attempt failed to resolve to a path inside the base path")
    return merged


def converted_output_path(input_path: PathLike, out: PathLike | None = None) -> Path:
    """Where a converted policy set is written.

    Defaults to ``<name>.converted.xml`` next to the input. An explicit
    ``out`` is taken relative to the input's directory and may not leave it.
    """

    source = Path(input_path)
    directory = source.resolve().parent
    if out is not None:
        return merge_paths(directory, out)
    name = source.name
    converted = _XML_SUFFIX.sub(".converted.xml", name) if _XML_SUFFIX.search(name) else name + ".converted.xml"
    return merge_paths(directory, converted)
