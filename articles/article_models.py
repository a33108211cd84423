"""
Read operations on the articles collection.
Articles are schemaless; documents come back exactly as stored.
"""
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from .exceptions import ArticleNotFound, ArticleQueryError, InvalidArticleId

logger = logging.getLogger(__name__)


def is_valid_article_id(article_id: Any) -> bool:
    """True for a 24-character hex string, the canonical ObjectId text form."""
    return isinstance(article_id, str) and ObjectId.is_valid(article_id)


class ArticleModel:
    """Article queries against a connected collection."""

    def __init__(self, collection: Collection):
        self.collection = collection

    def find_all(self) -> List[Dict[str, Any]]:
        """Every document in the collection, materialised as a list."""
        try:
            return list(self.collection.find())
        except PyMongoError as e:
            logger.error("Error loading articles: %s", e)
            raise ArticleQueryError('Failed to load articles') from e

    def find_by_id(self, article_id: str) -> Dict[str, Any]:
        """Find an article by its ObjectId string.

        Raises InvalidArticleId before touching the database when the id is
        malformed, and ArticleNotFound when nothing matches.
        """
        if not is_valid_article_id(article_id):
            raise InvalidArticleId()

        try:
            article: Optional[Dict[str, Any]] = self.collection.find_one({'_id': ObjectId(article_id)})
        except PyMongoError as e:
            logger.error("Error loading article %s: %s", article_id, e)
            raise ArticleQueryError() from e

        if article is None:
            raise ArticleNotFound()
        return article
