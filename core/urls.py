from django.urls import path, include
from django.http import HttpResponse


def root_status(request):
    return HttpResponse("artical nest Server is running!", content_type="text/plain")


def health_check(request):
    return HttpResponse("OK", content_type="text/plain")


urlpatterns = [
    path('', root_status, name='root'),
    path('health/', health_check, name='health_check'),
    path('', include('articles.urls')),
]
