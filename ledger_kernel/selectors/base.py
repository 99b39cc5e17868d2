"""
BaseSelector -- read-only query base.

Selectors accept a Session from the caller, run queries and return DTOs.
They never add, delete, flush or commit.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """Abstract base class for all selectors."""

    def __init__(self, session: Session):
        self.session = session
