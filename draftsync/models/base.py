"""Declarative base for ledger models."""

from __future__ import annotations

import uuid

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all ledger tables."""


def new_id() -> str:
    """Generate an opaque record identifier."""
    return uuid.uuid4().hex
