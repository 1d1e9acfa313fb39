"""Top-level package initializer for pemgpg.

Exposes the Flask app factory, the default WSGI app and the two core
operations so that ``from pemgpg import decompose_chain`` works without
reaching into ``pemgpg.src``.

Exports:
- create_app: the Flask application factory
- app: the default WSGI application instance
- decompose_chain: split a concatenated PEM chain
- convert_private_key: PKCS8 private key -> armored OpenPGP keys
"""

from __future__ import annotations

from .src.gpg_armor import convert_private_key  # noqa: F401
from .src.pem_chain import decompose_chain  # noqa: F401
from .src.server import app, create_app  # noqa: F401

__all__ = ["create_app", "app", "decompose_chain", "convert_private_key"]
