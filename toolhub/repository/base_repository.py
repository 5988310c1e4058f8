"""
Base Repository - Shared functionality for all repository modules
"""
from abc import ABC


class BaseRepository(ABC):
    """Base repository class with shared functionality"""

    def __init__(self, db, logger):
        self.db = db
        self.logger = logger

    @staticmethod
    def _strip_id(document):
        """Drop Mongo's internal _id so documents serialize as plain JSON"""
        if document is None:
            return None
        document = dict(document)
        document.pop("_id", None)
        return document
