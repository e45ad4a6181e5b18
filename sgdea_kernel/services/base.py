"""
BaseService -- shared constructor for services that write through a Session.

Services flush and leave commit or rollback to whoever opened the
transaction: the orchestrator's unit of work, the CLI, or a test.  A
mutation and the revision bumps it causes therefore land together or
not at all.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from sgdea_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """Write service over one aggregate root (``ModelType``)."""

    def __init__(self, session: Session):
        self.session = session
