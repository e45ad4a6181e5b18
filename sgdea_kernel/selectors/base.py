"""
Module: sgdea_kernel.selectors.base
Responsibility: base class for read-only queries over workflow tables.

Selectors never add, delete, flush or commit, and hand back DTOs rather
than ORM rows.  The session and its transaction belong to the caller.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from sgdea_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    def __init__(self, session: Session):
        self.session = session
