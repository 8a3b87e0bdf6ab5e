"""
Tests for the shared provider response cache.

Covers:
- Cache key derivation (method + URL, body digest for non-idempotent methods)
- HTTP freshness policy evaluation (storability, lifetime precedence, Vary)
- Redis-backed store (read/write/delete, fail-open on store errors)
- Transport adapter (HIT/MISS marking, revalidation, disabled mode)
"""
from email.utils import formatdate
from unittest.mock import Mock, patch

import allure
import requests
from django.core.cache import cache
from django.test import TestCase, SimpleTestCase
from requests.adapters import HTTPAdapter

from geocoding.utils.location.http_cache import (
    CACHE_LOOKUP_HEADER,
    CachePolicy,
    CachingHTTPAdapter,
    ResponseCache,
    body_aware_cache_key,
    caching_session,
    parse_cache_control,
    served_from_cache,
    uri_cache_key,
)
from geocoding.utils.location.base import SearchParams
from geocoding.utils.location.osm import NominatimClient
from .helpers import make_response


def prepare(method='GET', url='https://api.example.com/search?q=paris', **kwargs):
    return requests.Request(method, url, **kwargs).prepare()


@allure.feature('Response Cache')
@allure.story('Cache Keys')
class CacheKeyTests(SimpleTestCase):
    """Identical requests share a key, distinct requests never do"""

    @allure.title("GET key is method + URL")
    @allure.severity(allure.severity_level.NORMAL)
    def test_get_key(self):
        key = body_aware_cache_key(prepare())
        self.assertEqual(key, 'response-cache:GET:https://api.example.com/search?q=paris')

    @allure.title("Identical requests derive identical keys")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_deterministic(self):
        first = prepare('POST', 'https://api.example.com/v1/places', json={'textQuery': 'cafe'})
        second = prepare('POST', 'https://api.example.com/v1/places', json={'textQuery': 'cafe'})
        self.assertEqual(body_aware_cache_key(first), body_aware_cache_key(second))

    @allure.title("POST bodies are part of the key")
    @allure.description("Two different payloads to the same endpoint must not collide")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_post_bodies_do_not_collide(self):
        first = prepare('POST', 'https://api.example.com/v1/places', json={'textQuery': 'cafe'})
        second = prepare('POST', 'https://api.example.com/v1/places', json={'textQuery': 'bar'})

        self.assertNotEqual(body_aware_cache_key(first), body_aware_cache_key(second))
        # URI-only keying would collide
        self.assertEqual(uri_cache_key(first), uri_cache_key(second))

    @allure.title("Different URLs derive different keys")
    @allure.severity(allure.severity_level.NORMAL)
    def test_different_urls(self):
        self.assertNotEqual(
            body_aware_cache_key(prepare(url='https://api.example.com/search?q=paris')),
            body_aware_cache_key(prepare(url='https://api.example.com/search?q=london')),
        )

    @allure.title("Accept-Language is part of the key")
    @allure.description("The same URL asked in two languages must not share an entry")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_accept_language(self):
        en = body_aware_cache_key(prepare(headers={'Accept-Language': 'en'}))
        ru = body_aware_cache_key(prepare(headers={'Accept-Language': 'ru'}))

        self.assertNotEqual(en, ru)
        self.assertEqual(ru, 'response-cache:GET:https://api.example.com/search?q=paris:accept-language=ru')

    @allure.title("HEAD requests are keyed without a body digest")
    @allure.severity(allure.severity_level.MINOR)
    def test_head_has_no_digest(self):
        key = body_aware_cache_key(prepare('HEAD'))
        self.assertEqual(key, 'response-cache:HEAD:https://api.example.com/search?q=paris')


@allure.feature('Response Cache')
@allure.story('Freshness Policy')
class CachePolicyTests(SimpleTestCase):
    """HTTP caching semantics evaluated at write time"""

    NOW = 100000.0

    def evaluate(self, headers=None, status_code=200, request=None, default_ttl=3600):
        return CachePolicy.evaluate(
            request or prepare(),
            make_response({}, status_code=status_code, headers=headers),
            default_ttl=default_ttl,
            now=self.NOW,
        )

    @allure.title("Cache-Control directives are parsed")
    @allure.severity(allure.severity_level.MINOR)
    def test_parse_cache_control(self):
        self.assertEqual(
            parse_cache_control('public, max-age=60, no-transform'),
            {'public': True, 'max-age': '60', 'no-transform': True},
        )

    @allure.title("max-age sets the freshness lifetime")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_max_age(self):
        policy = self.evaluate({'Cache-Control': 'max-age=60'})

        self.assertEqual(policy.lifetime, 60)
        self.assertTrue(policy.is_fresh(self.NOW + 59))
        self.assertFalse(policy.is_fresh(self.NOW + 61))

    @allure.title("s-maxage takes precedence over max-age")
    @allure.severity(allure.severity_level.NORMAL)
    def test_s_maxage_precedence(self):
        policy = self.evaluate({'Cache-Control': 'max-age=60, s-maxage=120'})
        self.assertEqual(policy.lifetime, 120)

    @allure.title("Expires minus Date is used without max-age")
    @allure.severity(allure.severity_level.NORMAL)
    def test_expires(self):
        policy = self.evaluate({
            'Date': formatdate(self.NOW, usegmt=True),
            'Expires': formatdate(self.NOW + 300, usegmt=True),
        })
        self.assertEqual(policy.lifetime, 300)

    @allure.title("Last-Modified heuristic is 10% of the document age")
    @allure.severity(allure.severity_level.NORMAL)
    def test_last_modified_heuristic(self):
        policy = self.evaluate({
            'Date': formatdate(self.NOW, usegmt=True),
            'Last-Modified': formatdate(0, usegmt=True),
        })
        self.assertEqual(policy.lifetime, self.NOW * 0.1)

    @allure.title("Responses without caching headers use the default TTL")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_default_ttl(self):
        policy = self.evaluate({}, default_ttl=86400)
        self.assertEqual(policy.lifetime, 86400)
        self.assertEqual(policy.store_ttl(), 86400)

    @allure.title("no-store and private responses are not stored")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_not_storable(self):
        self.assertIsNone(self.evaluate({'Cache-Control': 'no-store'}))
        self.assertIsNone(self.evaluate({'Cache-Control': 'private, max-age=60'}))
        self.assertIsNone(self.evaluate(request=prepare(headers={'Cache-Control': 'no-store'})))

    @allure.title("Only cacheable status codes are stored")
    @allure.severity(allure.severity_level.NORMAL)
    def test_status_codes(self):
        self.assertIsNotNone(self.evaluate(status_code=404))
        self.assertIsNone(self.evaluate(status_code=500))
        self.assertIsNone(self.evaluate(status_code=429))

    @allure.title("Vary headers must match on read")
    @allure.severity(allure.severity_level.NORMAL)
    def test_vary(self):
        policy = self.evaluate(
            {'Vary': 'Accept-Language'},
            request=prepare(headers={'Accept-Language': 'en'}),
        )

        self.assertTrue(policy.matches(prepare(headers={'Accept-Language': 'en'})))
        self.assertFalse(policy.matches(prepare(headers={'Accept-Language': 'ru'})))

    @allure.title("Vary: * is never reused")
    @allure.severity(allure.severity_level.MINOR)
    def test_vary_star(self):
        policy = self.evaluate({'Vary': '*'})
        self.assertFalse(policy.matches(prepare()))

    @allure.title("Validators extend the store TTL by the grace period")
    @allure.severity(allure.severity_level.NORMAL)
    def test_store_ttl_with_validators(self):
        with_etag = self.evaluate({'Cache-Control': 'max-age=60', 'ETag': '"v1"'})
        without = self.evaluate({'Cache-Control': 'max-age=60'})

        self.assertEqual(with_etag.store_ttl(100), 160)
        self.assertEqual(without.store_ttl(100), 60)
        self.assertEqual(with_etag.revalidation_headers(), {'If-None-Match': '"v1"'})

    @allure.title("no-cache entries are never fresh")
    @allure.severity(allure.severity_level.NORMAL)
    def test_no_cache(self):
        policy = self.evaluate({'Cache-Control': 'no-cache', 'ETag': '"v1"'})
        self.assertFalse(policy.is_fresh(self.NOW))

    @allure.title("Policy survives serialization")
    @allure.severity(allure.severity_level.MINOR)
    def test_serialization(self):
        policy = self.evaluate({'Cache-Control': 'max-age=60', 'Vary': 'Accept-Language'})
        self.assertEqual(CachePolicy.from_dict(policy.to_dict()), policy)


@allure.feature('Response Cache')
@allure.story('Shared Store')
class ResponseCacheStoreTests(TestCase):
    """Redis-backed store with fail-open semantics"""

    def setUp(self):
        cache.clear()
        self.store = ResponseCache()
        self.request = prepare()
        self.response = make_response({'results': ['a']}, headers={'Content-Type': 'application/json'})
        self.policy = CachePolicy(stored_at=1000.0, lifetime=60.0)

    def tearDown(self):
        cache.clear()

    @allure.title("Stored responses can be read back")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_put_and_get(self):
        returned = self.store.put('k', self.response, self.policy)
        entry = self.store.get('k', self.request)

        self.assertIs(returned, self.response)
        self.assertEqual(entry.response.status_code, 200)
        self.assertEqual(entry.response.json(), {'results': ['a']})
        self.assertEqual(entry.response.headers['Content-Type'], 'application/json')
        self.assertEqual(entry.policy, self.policy)

    @allure.title("Missing key is a miss")
    @allure.severity(allure.severity_level.NORMAL)
    def test_miss(self):
        self.assertIsNone(self.store.get('missing'))

    @allure.title("Entries with no remaining lifetime are not written")
    @allure.severity(allure.severity_level.NORMAL)
    def test_zero_ttl_not_written(self):
        self.store.put('k', self.response, CachePolicy(stored_at=1000.0, lifetime=0.0))
        self.assertIsNone(self.store.get('k'))

    @allure.title("Delete invalidates an entry")
    @allure.severity(allure.severity_level.NORMAL)
    def test_delete(self):
        self.store.put('k', self.response, self.policy)
        self.store.delete('k')
        self.assertIsNone(self.store.get('k'))

    @allure.title("Undecodable entry is a miss")
    @allure.severity(allure.severity_level.NORMAL)
    def test_corrupt_entry(self):
        cache.set('k', 'not json at all')
        with self.assertLogs('geocoding.utils.location.http_cache', level='ERROR'):
            self.assertIsNone(self.store.get('k'))

    @allure.title("Unreachable store: read is a miss")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_read_fails_open(self):
        backend = Mock()
        backend.get.side_effect = ConnectionError("redis is down")
        store = ResponseCache(backend=backend)

        with self.assertLogs('geocoding.utils.location.http_cache', level='ERROR'):
            self.assertIsNone(store.get('k'))

    @allure.title("Unreachable store: write still returns the response")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_write_fails_open(self):
        backend = Mock()
        backend.set.side_effect = ConnectionError("redis is down")
        store = ResponseCache(backend=backend)

        with self.assertLogs('geocoding.utils.location.http_cache', level='ERROR'):
            returned = store.put('k', self.response, self.policy)

        self.assertIs(returned, self.response)


@allure.feature('Response Cache')
@allure.story('Transport Adapter')
class CachingAdapterTests(TestCase):
    """Sessions with the caching adapter mounted"""

    def setUp(self):
        cache.clear()

    def tearDown(self):
        cache.clear()

    @allure.title("Second identical GET is served from cache")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_hit_after_miss(self):
        session = caching_session(default_ttl=3600)

        with patch.object(HTTPAdapter, 'send', return_value=make_response({'n': 1})) as origin:
            first = session.get('https://api.example.com/search?q=paris', timeout=5)
            second = session.get('https://api.example.com/search?q=paris', timeout=5)

        self.assertEqual(origin.call_count, 1)
        self.assertEqual(first.headers[CACHE_LOOKUP_HEADER], 'MISS')
        self.assertTrue(served_from_cache(second))
        self.assertEqual(second.json(), {'n': 1})

    @allure.title("Different POST bodies both reach the origin")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_post_bodies(self):
        session = caching_session(default_ttl=3600)
        url = 'https://places.example.com/v1/places:searchText'

        with patch.object(HTTPAdapter, 'send', side_effect=[make_response({'q': 'cafe'}), make_response({'q': 'bar'})]) as origin:
            cafe = session.post(url, json={'textQuery': 'cafe'}, timeout=5)
            bar = session.post(url, json={'textQuery': 'bar'}, timeout=5)
            cafe_again = session.post(url, json={'textQuery': 'cafe'}, timeout=5)

        self.assertEqual(origin.call_count, 2)
        self.assertEqual(cafe.json(), {'q': 'cafe'})
        self.assertEqual(bar.json(), {'q': 'bar'})
        self.assertTrue(served_from_cache(cafe_again))
        self.assertEqual(cafe_again.json(), {'q': 'cafe'})

    @allure.title("Same query in two languages reaches the origin twice")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_languages_do_not_share_entries(self):
        client = NominatimClient(session=caching_session(default_ttl=3600))
        english = make_response([{'display_name': 'Moscow, Russia', 'lat': '55.75', 'lon': '37.62'}])
        russian = make_response([{'display_name': 'Москва, Россия', 'lat': '55.75', 'lon': '37.62'}])

        with patch.object(HTTPAdapter, 'send', side_effect=[english, russian]) as origin:
            en = client.find('Moscow', SearchParams('en'))
            ru = client.find('Moscow', SearchParams('ru'))
            ru_again = client.find('Moscow', SearchParams('ru'))

        self.assertEqual(origin.call_count, 2)
        self.assertEqual(en[0].address, 'Moscow, Russia')
        self.assertEqual(ru[0].address, 'Москва, Россия')
        self.assertEqual(ru_again, ru)

    @allure.title("Language headers split cache entries")
    @allure.severity(allure.severity_level.NORMAL)
    def test_accept_language_header(self):
        session = caching_session(default_ttl=3600)
        url = 'https://api.example.com/search?q=moscow'

        with patch.object(HTTPAdapter, 'send', side_effect=[make_response({'l': 'en'}), make_response({'l': 'ru'})]) as origin:
            en = session.get(url, headers={'Accept-Language': 'en'}, timeout=5)
            ru = session.get(url, headers={'Accept-Language': 'ru'}, timeout=5)

        self.assertEqual(origin.call_count, 2)
        self.assertEqual(en.json(), {'l': 'en'})
        self.assertEqual(ru.json(), {'l': 'ru'})
        self.assertFalse(served_from_cache(ru))

    @allure.title("Uncacheable responses are fetched every time")
    @allure.severity(allure.severity_level.NORMAL)
    def test_server_error_not_cached(self):
        session = caching_session(default_ttl=3600)

        with patch.object(HTTPAdapter, 'send', side_effect=[make_response({}, status_code=503), make_response({'ok': True})]) as origin:
            first = session.get('https://api.example.com/search?q=x', timeout=5)
            second = session.get('https://api.example.com/search?q=x', timeout=5)

        self.assertEqual(origin.call_count, 2)
        self.assertEqual(first.status_code, 503)
        self.assertFalse(served_from_cache(second))

    @allure.title("Stale entry with ETag is revalidated; 304 renews it")
    @allure.severity(allure.severity_level.NORMAL)
    def test_revalidation(self):
        session = caching_session(default_ttl=3600)
        original = make_response({'v': 1}, headers={'Cache-Control': 'no-cache', 'ETag': '"v1"'})
        not_modified = make_response(status_code=304, body=b'')

        with patch.object(HTTPAdapter, 'send', side_effect=[original, not_modified]) as origin:
            session.get('https://api.example.com/search?q=x', timeout=5)
            second = session.get('https://api.example.com/search?q=x', timeout=5)

        self.assertEqual(origin.call_count, 2)
        conditional = origin.call_args_list[1][0][0]
        self.assertEqual(conditional.headers['If-None-Match'], '"v1"')
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.json(), {'v': 1})
        self.assertTrue(served_from_cache(second))

    @allure.title("Disabled cache always goes to the origin")
    @allure.severity(allure.severity_level.NORMAL)
    def test_disabled(self):
        session = caching_session(default_ttl=3600, enabled=False)

        with patch.object(HTTPAdapter, 'send', return_value=make_response({'n': 1})) as origin:
            session.get('https://api.example.com/search?q=paris', timeout=5)
            second = session.get('https://api.example.com/search?q=paris', timeout=5)

        self.assertEqual(origin.call_count, 2)
        self.assertFalse(served_from_cache(second))

    @allure.title("Store outage does not break requests")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_store_outage(self):
        backend = Mock()
        backend.get.side_effect = ConnectionError("redis is down")
        backend.set.side_effect = ConnectionError("redis is down")
        adapter = CachingHTTPAdapter(response_cache=ResponseCache(backend=backend), default_ttl=3600)
        session = requests.Session()
        session.mount('https://', adapter)

        with patch.object(HTTPAdapter, 'send', return_value=make_response({'n': 1})):
            with self.assertLogs('geocoding.utils.location.http_cache', level='ERROR'):
                response = session.get('https://api.example.com/search?q=paris', timeout=5)

        self.assertEqual(response.json(), {'n': 1})
        self.assertFalse(served_from_cache(response))
