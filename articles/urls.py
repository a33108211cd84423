from django.urls import re_path

from .views import ArticleListView, ArticleDetailView

urlpatterns = [
    re_path(r'^api/articles/?$', ArticleListView.as_view(), name='article-list'),
    re_path(r'^api/articles/(?P<article_id>.+?)/?$', ArticleDetailView.as_view(), name='article-detail'),
]
