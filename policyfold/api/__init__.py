"""policyfold API package.

A FastAPI service layer around the conversion pipeline: upload an exported
policy set, get the converted custom policy set back.
"""

from .server import create_app  # noqa: F401
