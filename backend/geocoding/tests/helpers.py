"""
Shared fixtures for geocoding tests.
"""
import json
from unittest.mock import Mock

import requests

from geocoding.utils.location.base import BaseLocFinder


def make_response(payload=None, status_code=200, headers=None, body=None):
    """Build a real requests.Response without touching the network."""
    response = requests.Response()
    response.status_code = status_code
    response.reason = 'OK' if status_code < 400 else 'Error'
    if body is None:
        body = json.dumps(payload).encode('utf-8') if payload is not None else b''
    response._content = body
    response._content_consumed = True
    response.headers.update(headers or {})
    response.encoding = 'utf-8'
    return response


def mock_session(*responses):
    """Session whose request() returns the given responses in order."""
    session = Mock(spec=requests.Session)
    if len(responses) == 1:
        session.request.return_value = responses[0]
    else:
        session.request.side_effect = list(responses)
    return session


class StubFinder(BaseLocFinder):
    """Provider returning canned results (or raising) and recording calls."""

    def __init__(self, name, results=None, error=None, available=True):
        super().__init__(session=Mock(spec=requests.Session))
        self._name = name
        self.results = results or []
        self.error = error
        self.available = available
        self.calls = []

    @property
    def provider_name(self):
        return self._name

    def is_available(self):
        return self.available

    def find(self, query, params):
        self.calls.append((query, params))
        if self.error is not None:
            raise self.error
        return list(self.results)
