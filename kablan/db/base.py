"""Declarative base for ORM tables."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
