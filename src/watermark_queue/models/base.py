"""Declarative base shared by all queue tables."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
