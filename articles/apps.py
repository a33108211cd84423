from django.apps import AppConfig


class ArticlesConfig(AppConfig):
    name = 'articles'

    def ready(self):
        from .mongodb import MongoConnection

        # One connection per process, opened on the first article request
        self.connection = MongoConnection()
