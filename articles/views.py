"""
Article endpoints - read-only REST API over the articles collection.
"""
from rest_framework.views import APIView
from rest_framework.response import Response
from rest_framework import status

from .article_models import ArticleModel
from .mongodb import get_connection
from .utils import serialize_document


class ArticleConnectedView(APIView):
    """Base view that opens the MongoDB connection before any handler runs.

    Pass ``connection=`` to ``as_view()`` to use something other than the
    app-owned connection.
    """
    authentication_classes: list = []
    permission_classes: list = []
    connection = None

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        connection = self.connection or get_connection()
        self.articles = ArticleModel(connection.ensure_connected())


class ArticleListView(ArticleConnectedView):
    """GET: List every article"""

    def get(self, request):
        documents = self.articles.find_all()
        return Response([serialize_document(doc) for doc in documents], status=status.HTTP_200_OK)


class ArticleDetailView(ArticleConnectedView):
    """GET: Retrieve a single article by its ObjectId"""

    def get(self, request, article_id):
        document = self.articles.find_by_id(article_id)
        return Response(serialize_document(document), status=status.HTTP_200_OK)
