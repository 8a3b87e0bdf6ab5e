"""
Tests for the fail-open helpers used by the cache, limiter and profile client.
"""
from unittest.mock import patch

import allure
import redis
from constance import config
from constance.test import override_config
from django.test import SimpleTestCase, TestCase

from geocoding.services import LocationResolver
from locplace.utils.fail_open import call_fail_open, config_value, fail_open


@allure.feature('Error Handling')
@allure.story('Fail Open')
class FailOpenTests(SimpleTestCase):
    """Infrastructure errors degrade to a default value and a log line"""

    @allure.title("Successful call returns its result")
    @allure.severity(allure.severity_level.NORMAL)
    def test_success_passes_through(self):
        self.assertEqual(call_fail_open(lambda a, b: a + b, 1, 2, default=0), 3)

    @allure.title("Failure returns the default and logs an error")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_failure_returns_default(self):
        def boom():
            raise ConnectionError("redis is down")

        with self.assertLogs('locplace.utils.fail_open', level='ERROR') as logs:
            result = call_fail_open(boom, default=True, action="check limits")

        self.assertTrue(result)
        self.assertIn("Failed to check limits, failing open: ConnectionError: redis is down", logs.output[0])

    @allure.title("Callable default is called to build a fresh value")
    @allure.severity(allure.severity_level.NORMAL)
    def test_callable_default(self):
        def boom():
            raise RuntimeError("nope")

        first = call_fail_open(boom, default=list, log=None)
        first.append(1)
        second = call_fail_open(boom, default=list)

        self.assertEqual(second, [])

    @allure.title("Exceptions outside the handled set propagate")
    @allure.severity(allure.severity_level.NORMAL)
    def test_unhandled_exception_propagates(self):
        @fail_open(default=None, exceptions=(ConnectionError,))
        def broken():
            raise KeyError("programming error")

        with self.assertRaises(KeyError):
            broken()

    @allure.title("Decorator keeps the wrapped function's name")
    @allure.severity(allure.severity_level.MINOR)
    def test_decorator_wraps(self):
        @fail_open(default=1)
        def lookup():
            raise OSError("unreachable")

        self.assertEqual(lookup.__name__, 'lookup')
        with self.assertLogs('locplace.utils.fail_open', level='ERROR') as logs:
            self.assertEqual(lookup(), 1)
        self.assertIn("Failed to lookup", logs.output[0])


@allure.feature('Error Handling')
@allure.story('Runtime Settings')
class ConfigValueTests(TestCase):
    """Constance reads degrade to the CONSTANCE_CONFIG defaults"""

    @allure.title("Current Constance value is returned")
    @allure.severity(allure.severity_level.NORMAL)
    @override_config(MSG_LOC_LIMIT=3)
    def test_reads_value(self):
        self.assertEqual(config_value('MSG_LOC_LIMIT'), 3)

    @allure.title("Backend failure returns the declared default")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_backend_failure(self):
        with patch.object(config._backend, 'get', side_effect=redis.ConnectionError("connection refused")):
            with self.assertLogs('locplace.utils.fail_open', level='ERROR') as logs:
                value = config_value('MSG_LOC_LIMIT')

        self.assertEqual(value, 10)
        self.assertIn("Failed to read setting MSG_LOC_LIMIT", logs.output[0])

    @allure.title("Resolver is built from defaults when Constance is unreachable")
    @allure.severity(allure.severity_level.CRITICAL)
    def test_resolver_startup(self):
        with patch.object(config._backend, 'get', side_effect=redis.ConnectionError("connection refused")):
            with self.assertLogs('geocoding', level='ERROR'):
                resolver = LocationResolver.from_config()

                self.assertEqual(resolver.limiter.max_allowed, 10)
                self.assertEqual(resolver.limiter.timeframe, 60)

        self.assertEqual(resolver.chain.finders_for('en')[0].timeout, 10)
