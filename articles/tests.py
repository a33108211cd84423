"""
Tests for the article nest API.

Covers:
1. Liveness and health routes
2. Article list and detail endpoints against a mocked collection
3. Identifier validation (400 without a query)
4. Database failures (connection and query) mapped to JSON 500s
5. Lazy, single-attempt MongoDB connection
6. Document serialization and error mapping
7. CORS and runserver port defaults
"""

from __future__ import annotations

import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

from bson import Binary, Decimal128, ObjectId, Regex, Timestamp
from django.apps import apps
from django.test import SimpleTestCase, override_settings
from pymongo.errors import OperationFailure, ServerSelectionTimeoutError
from rest_framework.exceptions import MethodNotAllowed
from rest_framework.test import APIClient

from .article_models import ArticleModel, is_valid_article_id
from .exceptions import (
    ArticleNotFound,
    ArticleQueryError,
    DatabaseConnectionError,
    InvalidArticleId,
    status_for,
)
from .management.commands.runserver import Command as RunserverCommand
from .mongodb import MongoConnection, get_connection
from .utils import format_datetime, serialize_document


INVALID_IDS = [
    'not-an-id',
    '123',
    'abcdefghijkl',
    'g' * 24,
    'a' * 23,
    'a' * 25,
    '507f1f77bcf86cd79943901',
    '507f1f77-bcf8-6cd7-9943-9011',
    'a%2Fb',
    '65a1b2c3d4e5f60718293a4b/extra',
]

ABSENT_IDS = [
    'aaaaaaaaaaaaaaaaaaaaaaaa',
    '507f1f77bcf86cd799439011',
    'ABCDEF0123456789abcdef01',
]


def make_collection(documents):
    """MagicMock collection serving ``documents`` from find/find_one."""
    collection = MagicMock()
    collection.find.side_effect = lambda *args, **kwargs: iter([dict(doc) for doc in documents])

    def find_one(query):
        for doc in documents:
            if doc['_id'] == query['_id']:
                return dict(doc)
        return None

    collection.find_one.side_effect = find_one
    return collection


def make_connection(collection):
    connection = MagicMock(spec=MongoConnection)
    connection.ensure_connected.return_value = collection
    return connection


class ArticleAPITestCase(SimpleTestCase):
    """Runs requests through the URLconf with the app connection replaced."""

    documents: list = []

    def setUp(self):
        self.client = APIClient()
        self.collection = make_collection(self.documents)
        self.connection = make_connection(self.collection)
        patcher = patch.object(apps.get_app_config('articles'), 'connection', self.connection)
        patcher.start()
        self.addCleanup(patcher.stop)


# =============================================================================
# Routing
# =============================================================================


class RootRouteTest(ArticleAPITestCase):

    def test_root_returns_liveness_text(self):
        response = self.client.get('/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content.decode(), 'artical nest Server is running!')
        self.connection.ensure_connected.assert_not_called()

    def test_health_check(self):
        response = self.client.get('/health/')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content.decode(), 'OK')

    def test_root_does_not_need_database(self):
        self.connection.ensure_connected.side_effect = DatabaseConnectionError()
        response = self.client.get('/')
        self.assertEqual(response.status_code, 200)

    def test_unknown_route_is_404(self):
        response = self.client.get('/api/authors')
        self.assertEqual(response.status_code, 404)

    def test_post_to_articles_is_not_allowed(self):
        response = self.client.post('/api/articles', {'title': 'x'}, format='json')
        self.assertEqual(response.status_code, 405)
        self.assertIn('error', response.json())


# =============================================================================
# Concrete scenario: one seeded article
# =============================================================================


class SingleArticleScenarioTest(ArticleAPITestCase):

    article_id = ObjectId()
    documents = [{'_id': article_id, 'title': 'Hello'}]

    def test_list_returns_the_article(self):
        response = self.client.get('/api/articles')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), [{'_id': str(self.article_id), 'title': 'Hello'}])

    def test_get_by_id_returns_the_article(self):
        response = self.client.get(f'/api/articles/{self.article_id}')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'_id': str(self.article_id), 'title': 'Hello'})

    def test_get_invalid_id_is_400(self):
        response = self.client.get('/api/articles/not-an-id')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json(), {'error': 'Invalid ID format'})

    def test_get_absent_well_formed_id_is_404(self):
        response = self.client.get('/api/articles/aaaaaaaaaaaaaaaaaaaaaaaa')
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {'error': 'Article not found'})

    def test_trailing_slash_is_tolerated(self):
        self.assertEqual(self.client.get('/api/articles/').status_code, 200)
        self.assertEqual(self.client.get(f'/api/articles/{self.article_id}/').status_code, 200)


# =============================================================================
# Article endpoints
# =============================================================================


class ArticleListViewTest(ArticleAPITestCase):

    documents = [
        {'_id': ObjectId(), 'title': 'First', 'author': 'Ada'},
        {'_id': ObjectId(), 'title': 'Second', 'tags': ['a', 'b']},
        {'_id': ObjectId(), 'body': 'No title at all'},
    ]

    def test_length_matches_collection(self):
        response = self.client.get('/api/articles')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()), len(self.documents))

    def test_repeated_calls_are_identical(self):
        first = self.client.get('/api/articles').json()
        second = self.client.get('/api/articles').json()
        self.assertEqual(first, second)

    def test_fields_are_passed_through_untouched(self):
        body = self.client.get('/api/articles').json()
        self.assertEqual(body[1]['tags'], ['a', 'b'])
        self.assertEqual(body[2], {'_id': str(self.documents[2]['_id']), 'body': 'No title at all'})

    def test_empty_collection_returns_empty_array(self):
        self.collection.find.side_effect = lambda *args, **kwargs: iter([])
        response = self.client.get('/api/articles')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), [])

    def test_query_failure_is_500_with_generic_body(self):
        self.collection.find.side_effect = OperationFailure('secret driver detail')
        with self.assertLogs('articles', level='ERROR') as logs:
            response = self.client.get('/api/articles')
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'error': 'Failed to load articles'})
        self.assertNotIn('secret', response.content.decode())
        self.assertTrue(any('Error loading articles' in line for line in logs.output))

    def test_connection_gate_runs_once_per_request(self):
        self.client.get('/api/articles')
        self.client.get('/api/articles')
        self.assertEqual(self.connection.ensure_connected.call_count, 2)


class ArticleDetailViewTest(ArticleAPITestCase):

    documents = [
        {
            '_id': ObjectId('65a1b2c3d4e5f60718293a4b'),
            'title': 'Stored',
            'published_at': datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
            'meta': {'related': [ObjectId('65a1b2c3d4e5f60718293a4c')]},
        },
    ]

    def test_known_id_returns_matching_identifier(self):
        article_id = '65a1b2c3d4e5f60718293a4b'
        response = self.client.get(f'/api/articles/{article_id}')
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['_id'], article_id)
        self.assertEqual(body['published_at'], '2024-01-02T03:04:05.000Z')
        self.assertEqual(body['meta'], {'related': ['65a1b2c3d4e5f60718293a4c']})

    def test_lookup_uses_object_id(self):
        self.client.get('/api/articles/65a1b2c3d4e5f60718293a4b')
        self.collection.find_one.assert_called_once_with({'_id': ObjectId('65a1b2c3d4e5f60718293a4b')})

    def test_absent_ids_are_404(self):
        for article_id in ABSENT_IDS:
            with self.subTest(article_id=article_id):
                response = self.client.get(f'/api/articles/{article_id}')
                self.assertEqual(response.status_code, 404)
                self.assertEqual(response.json(), {'error': 'Article not found'})

    def test_invalid_ids_are_400_without_query(self):
        for article_id in INVALID_IDS:
            with self.subTest(article_id=article_id):
                response = self.client.get(f'/api/articles/{article_id}')
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json(), {'error': 'Invalid ID format'})
        self.collection.find_one.assert_not_called()
        self.collection.find.assert_not_called()

    def test_query_failure_is_500_with_generic_body(self):
        self.collection.find_one.side_effect = OperationFailure('boom')
        response = self.client.get('/api/articles/65a1b2c3d4e5f60718293a4b')
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'error': 'Internal Server Error'})

    def test_unexpected_error_is_500_json(self):
        self.collection.find_one.side_effect = RuntimeError('unexpected')
        with self.assertLogs('articles', level='ERROR'):
            response = self.client.get('/api/articles/65a1b2c3d4e5f60718293a4b')
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'error': 'Internal Server Error'})

    def test_encoded_slash_in_id_is_400_json(self):
        response = self.client.get('/api/articles/a%2Fb')
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response['Content-Type'], 'application/json')
        self.assertEqual(response.json(), {'error': 'Invalid ID format'})


class StoredBsonValuesTest(ArticleAPITestCase):
    """Documents holding values JSON has no native form for still render as JSON."""

    article_id = ObjectId('65a1b2c3d4e5f60718293a4d')
    documents = [
        {
            '_id': article_id,
            'price': Decimal128('9.99'),
            'score': float('nan'),
            'ratio': float('inf'),
            'checksum': Binary(b'\xff\x00', 5),
            'synced': Timestamp(1700000000, 1),
            'pattern': Regex('^news', 'i'),
            'edited_at': datetime(2024, 3, 4, 5, 6, 7, 890000),
        },
    ]

    def assert_converted(self, body):
        self.assertEqual(body['_id'], str(self.article_id))
        self.assertEqual(body['price'], {'$numberDecimal': '9.99'})
        self.assertIsNone(body['score'])
        self.assertIsNone(body['ratio'])
        self.assertIn('$binary', body['checksum'])
        self.assertEqual(body['synced'], {'$timestamp': {'t': 1700000000, 'i': 1}})
        self.assertIn('$regularExpression', body['pattern'])
        self.assertEqual(body['edited_at'], '2024-03-04T05:06:07.890Z')

    def test_list_renders_json(self):
        response = self.client.get('/api/articles')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/json')
        self.assert_converted(response.json()[0])

    def test_detail_renders_json(self):
        response = self.client.get(f'/api/articles/{self.article_id}')
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'application/json')
        self.assert_converted(response.json())


class DatabaseUnavailableTest(ArticleAPITestCase):

    def setUp(self):
        super().setUp()
        self.connection.ensure_connected.side_effect = DatabaseConnectionError()

    def test_list_is_500(self):
        response = self.client.get('/api/articles')
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'error': 'Database connection failed'})

    def test_detail_is_500(self):
        response = self.client.get('/api/articles/65a1b2c3d4e5f60718293a4b')
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'error': 'Database connection failed'})
        self.collection.find_one.assert_not_called()


@override_settings(MONGODB_URI='mongodb://db.example.invalid:27017')
class UnreachableServerEndToEndTest(SimpleTestCase):
    """Real MongoConnection with a client whose ping times out."""

    def setUp(self):
        self.client = APIClient()
        patcher = patch('articles.mongodb.MongoClient')
        self.mongo_client_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.mongo_client_cls.return_value.admin.command.side_effect = ServerSelectionTimeoutError('timed out')
        self.connection = MongoConnection()
        app_patcher = patch.object(apps.get_app_config('articles'), 'connection', self.connection)
        app_patcher.start()
        self.addCleanup(app_patcher.stop)

    def test_both_endpoints_return_500_json(self):
        for url in ('/api/articles', '/api/articles/65a1b2c3d4e5f60718293a4b'):
            with self.subTest(url=url):
                response = self.client.get(url)
                self.assertEqual(response.status_code, 500)
                self.assertEqual(response.json(), {'error': 'Database connection failed'})
        self.assertFalse(self.connection.is_connected)

    def test_each_request_retries_the_connection(self):
        self.client.get('/api/articles')
        self.client.get('/api/articles')
        self.assertEqual(self.mongo_client_cls.call_count, 2)
        self.assertEqual(self.mongo_client_cls.return_value.close.call_count, 2)


class ViewInjectionTest(SimpleTestCase):

    def test_view_uses_injected_connection(self):
        from rest_framework.test import APIRequestFactory
        from .views import ArticleListView

        article_id = ObjectId()
        connection = make_connection(make_collection([{'_id': article_id, 'title': 'Injected'}]))
        view = ArticleListView.as_view(connection=connection)
        response = view(APIRequestFactory().get('/api/articles'))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data, [{'_id': str(article_id), 'title': 'Injected'}])
        connection.ensure_connected.assert_called_once_with()


# =============================================================================
# Connection manager
# =============================================================================


@override_settings(MONGODB_URI='mongodb://db.example.invalid:27017')
class MongoConnectionTest(SimpleTestCase):

    def setUp(self):
        patcher = patch('articles.mongodb.MongoClient')
        self.mongo_client_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.client = self.mongo_client_cls.return_value

    def test_connects_lazily(self):
        connection = MongoConnection()
        self.mongo_client_cls.assert_not_called()
        self.assertFalse(connection.is_connected)

    def test_client_options(self):
        MongoConnection().ensure_connected()
        args, kwargs = self.mongo_client_cls.call_args
        self.assertEqual(args, ('mongodb://db.example.invalid:27017',))
        self.assertEqual(kwargs['serverSelectionTimeoutMS'], 5000)
        self.assertEqual(kwargs['maxPoolSize'], 10)
        self.assertEqual(kwargs['server_api'].version, '1')
        self.assertTrue(kwargs['server_api'].strict)
        self.assertTrue(kwargs['server_api'].deprecation_errors)
        self.client.admin.command.assert_called_once_with('ping')

    def test_targets_fixed_database_and_collection(self):
        collection = MongoConnection().ensure_connected()
        self.client.__getitem__.assert_called_once_with('article_nest_db')
        self.client.__getitem__.return_value.__getitem__.assert_called_once_with('articles_collections')
        self.assertIs(collection, self.client['article_nest_db']['articles_collections'])

    def test_ensure_connected_is_idempotent(self):
        connection = MongoConnection()
        first = connection.ensure_connected()
        second = connection.ensure_connected()
        self.assertIs(first, second)
        self.mongo_client_cls.assert_called_once()
        self.assertTrue(connection.is_connected)

    def test_logs_success(self):
        with self.assertLogs('articles.mongodb', level='INFO') as logs:
            MongoConnection().ensure_connected()
        self.assertTrue(any('MongoDB connected' in line for line in logs.output))

    def test_ping_failure_raises_connection_error(self):
        cause = ServerSelectionTimeoutError('no servers')
        self.client.admin.command.side_effect = cause
        connection = MongoConnection()
        with self.assertLogs('articles.mongodb', level='ERROR'):
            with self.assertRaises(DatabaseConnectionError) as ctx:
                connection.ensure_connected()
        self.assertIs(ctx.exception.__cause__, cause)
        self.assertFalse(connection.is_connected)
        self.client.close.assert_called_once()

    def test_recovers_after_failed_attempt(self):
        self.client.admin.command.side_effect = [ServerSelectionTimeoutError('down'), {'ok': 1}]
        connection = MongoConnection()
        with self.assertLogs('articles.mongodb', level='ERROR'):
            with self.assertRaises(DatabaseConnectionError):
                connection.ensure_connected()
        connection.ensure_connected()
        self.assertTrue(connection.is_connected)
        self.assertEqual(self.mongo_client_cls.call_count, 2)

    @override_settings(MONGODB_URI='')
    def test_missing_uri_raises_connection_error(self):
        with self.assertLogs('articles.mongodb', level='ERROR'):
            with self.assertRaises(DatabaseConnectionError):
                MongoConnection().ensure_connected()
        self.mongo_client_cls.assert_not_called()

    def test_explicit_arguments_override_settings(self):
        MongoConnection('mongodb://other:27017', 'other_db', 'other_col').ensure_connected()
        self.assertEqual(self.mongo_client_cls.call_args[0], ('mongodb://other:27017',))
        self.client.__getitem__.assert_called_once_with('other_db')

    def test_close_resets_and_allows_reconnect(self):
        connection = MongoConnection()
        connection.ensure_connected()
        connection.close()
        self.client.close.assert_called_once()
        self.assertFalse(connection.is_connected)
        connection.ensure_connected()
        self.assertEqual(self.mongo_client_cls.call_count, 2)

    def test_concurrent_first_callers_share_one_attempt(self):
        def slow_client(*args, **kwargs):
            time.sleep(0.05)
            return self.client

        self.mongo_client_cls.side_effect = slow_client
        connection = MongoConnection()
        barrier = threading.Barrier(8)
        results = []

        def worker():
            barrier.wait()
            results.append(connection.ensure_connected())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(self.mongo_client_cls.call_count, 1)
        self.assertEqual(len(results), 8)
        self.assertTrue(all(result is results[0] for result in results))

    def test_app_owns_a_single_connection(self):
        self.assertIsInstance(get_connection(), MongoConnection)
        self.assertIs(get_connection(), get_connection())


# =============================================================================
# Models, serialization and error mapping
# =============================================================================


class ArticleModelTest(SimpleTestCase):

    def test_is_valid_article_id(self):
        self.assertTrue(is_valid_article_id('65a1b2c3d4e5f60718293a4b'))
        self.assertTrue(is_valid_article_id(str(ObjectId())))
        for article_id in INVALID_IDS + [None, 12, b'123456789012']:
            with self.subTest(article_id=article_id):
                self.assertFalse(is_valid_article_id(article_id))

    def test_find_all_materializes_cursor(self):
        docs = [{'_id': ObjectId()}, {'_id': ObjectId()}]
        model = ArticleModel(make_collection(docs))
        result = model.find_all()
        self.assertIsInstance(result, list)
        self.assertEqual(result, docs)

    def test_find_by_id_errors(self):
        collection = make_collection([])
        model = ArticleModel(collection)
        with self.assertRaises(InvalidArticleId):
            model.find_by_id('nope')
        collection.find_one.assert_not_called()
        with self.assertRaises(ArticleNotFound):
            model.find_by_id('aaaaaaaaaaaaaaaaaaaaaaaa')

    def test_driver_errors_become_query_errors(self):
        collection = MagicMock()
        collection.find.side_effect = OperationFailure('x')
        collection.find_one.side_effect = OperationFailure('y')
        model = ArticleModel(collection)
        with self.assertLogs('articles', level='ERROR'):
            with self.assertRaises(ArticleQueryError):
                model.find_all()
            with self.assertRaises(ArticleQueryError):
                model.find_by_id('aaaaaaaaaaaaaaaaaaaaaaaa')


class SerializeDocumentTest(SimpleTestCase):

    def test_converts_bson_and_dates(self):
        oid = ObjectId()
        doc = {
            '_id': oid,
            'created_at': datetime(2023, 5, 6, 7, 8, 9),
            'author': {'id': oid, 'name': 'Ada'},
            'comments': [{'by': oid}, 'plain', 3],
            'score': 4.5,
            'draft': False,
            'extra': None,
        }
        self.assertEqual(serialize_document(doc), {
            '_id': str(oid),
            'created_at': '2023-05-06T07:08:09.000Z',
            'author': {'id': str(oid), 'name': 'Ada'},
            'comments': [{'by': str(oid)}, 'plain', 3],
            'score': 4.5,
            'draft': False,
            'extra': None,
        })

    def test_converts_values_json_cannot_hold(self):
        doc = {
            'price': Decimal128('9.99'),
            'score': float('nan'),
            'floor': float('-inf'),
            'history': [Decimal128('1.5'), {'weight': float('nan')}],
            'synced': Timestamp(1700000000, 1),
        }
        self.assertEqual(serialize_document(doc), {
            'price': {'$numberDecimal': '9.99'},
            'score': None,
            'floor': None,
            'history': [{'$numberDecimal': '1.5'}, {'weight': None}],
            'synced': {'$timestamp': {'t': 1700000000, 'i': 1}},
        })

    def test_datetimes_are_utc_with_milliseconds(self):
        self.assertEqual(format_datetime(datetime(2024, 1, 2, 3, 4, 5)), '2024-01-02T03:04:05.000Z')
        self.assertEqual(format_datetime(datetime(2024, 1, 2, 3, 4, 5, 123456)), '2024-01-02T03:04:05.123Z')
        eastern = timezone(timedelta(hours=-5))
        self.assertEqual(format_datetime(datetime(2024, 1, 2, 3, 4, 5, tzinfo=eastern)), '2024-01-02T08:04:05.000Z')

    def test_empty_document(self):
        self.assertEqual(serialize_document({}), {})


class ErrorMappingTest(SimpleTestCase):

    def test_status_for_each_error(self):
        self.assertEqual(status_for(InvalidArticleId()), 400)
        self.assertEqual(status_for(ArticleNotFound()), 404)
        self.assertEqual(status_for(DatabaseConnectionError()), 500)
        self.assertEqual(status_for(ArticleQueryError()), 500)
        self.assertEqual(status_for(MethodNotAllowed('POST')), 405)
        self.assertEqual(status_for(ValueError('x')), 500)

    def test_query_error_detail_override(self):
        self.assertEqual(str(ArticleQueryError('Failed to load articles').detail), 'Failed to load articles')
        self.assertEqual(str(ArticleQueryError().detail), 'Internal Server Error')


# =============================================================================
# Transport: CORS and server port
# =============================================================================


class CorsTest(ArticleAPITestCase):

    def test_any_origin_allowed(self):
        response = self.client.get('/api/articles', HTTP_ORIGIN='https://reader.example.com')
        self.assertEqual(response['Access-Control-Allow-Origin'], '*')

    def test_preflight_lists_methods(self):
        response = self.client.options(
            '/api/articles',
            HTTP_ORIGIN='https://reader.example.com',
            HTTP_ACCESS_CONTROL_REQUEST_METHOD='DELETE',
        )
        self.assertEqual(response.status_code, 200)
        allowed = response['Access-Control-Allow-Methods']
        for method in ('GET', 'POST', 'PUT', 'PATCH', 'DELETE'):
            self.assertIn(method, allowed)


class RunserverCommandTest(SimpleTestCase):

    @override_settings(PORT=5000)
    def test_default_port(self):
        self.assertEqual(RunserverCommand().default_port, '5000')

    @override_settings(PORT=8123)
    def test_port_follows_settings(self):
        self.assertEqual(RunserverCommand().default_port, '8123')


class VercelEntryPointTest(SimpleTestCase):

    def test_app_is_the_wsgi_application(self):
        import vercel_handler
        from core.wsgi import application

        self.assertIs(vercel_handler.app, application)
