"""
Error types for the articles API and the DRF exception handler that
turns them into ``{"error": ...}`` responses.
"""
import logging

from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException, NotFound
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class ArticleAPIError(APIException):
    """Base class for every error the article endpoints raise."""


class InvalidArticleId(ArticleAPIError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid ID format'
    default_code = 'invalid_id'


class ArticleNotFound(ArticleAPIError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Article not found'
    default_code = 'not_found'


class DatabaseConnectionError(ArticleAPIError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Database connection failed'
    default_code = 'connection_failed'


class ArticleQueryError(ArticleAPIError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Internal Server Error'
    default_code = 'query_failed'


def status_for(exc: Exception) -> int:
    """HTTP status for any exception raised while serving a request."""
    if isinstance(exc, APIException):
        return exc.status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(exc: Exception) -> dict:
    if isinstance(exc, APIException) and isinstance(exc.detail, str):
        return {'error': str(exc.detail)}
    if isinstance(exc, APIException):
        return {'error': str(exc.default_detail)}
    return {'error': ArticleQueryError.default_detail}


def article_exception_handler(exc, context):
    """DRF ``EXCEPTION_HANDLER``: every error leaves as a JSON error body."""
    if isinstance(exc, Http404):
        exc = NotFound()

    view = context.get('view')
    view_name = view.__class__.__name__ if view is not None else 'unknown'
    code = status_for(exc)

    if not isinstance(exc, APIException):
        logger.exception("Unhandled error in %s", view_name)
    elif code >= 500:
        logger.error("%s failed: %s (cause: %r)", view_name, exc.detail, exc.__cause__)
    else:
        logger.warning("%s rejected request: %s", view_name, exc.detail)

    headers = {}
    if getattr(exc, 'auth_header', None):
        headers['WWW-Authenticate'] = exc.auth_header
    if getattr(exc, 'wait', None):
        headers['Retry-After'] = '%d' % exc.wait

    return Response(error_body(exc), status=code, headers=headers)
