"""
HTTP client for the external user profile service.

The profile service owns users of the chat platform: their preferred language
and the last location they shared. Location resolution only needs to read
those two hints and to update them when the user changes them.

Endpoints:
    GET   {USER_SERVICE_URL}/users/external/<external_id>   -> profile JSON | 404
    PATCH {USER_SERVICE_URL}/users/<id>                     <- {"language": "en"}
                                                            <- {"location": {"latitude": .., "longitude": ..}}
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


class UserServiceError(Exception):
    """The profile service could not be reached or answered with an error."""


class ProfileNotFound(UserServiceError):
    """A write was attempted for a user the profile service does not know."""


@dataclass(frozen=True)
class Profile:
    """A user as known to the profile service."""

    id: int
    external_id: str
    name: Optional[str] = None
    language_code: Optional[str] = None
    location: Optional[Tuple[float, float]] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'Profile':
        """
        Build a Profile from the service's JSON representation.

        Raises:
            KeyError/TypeError/ValueError: Payload is missing required fields
        """
        location = data.get('location')
        if location:
            location = (float(location['latitude']), float(location['longitude']))
        return cls(
            id=int(data['id']),
            external_id=str(data['external_id']),
            name=data.get('name'),
            language_code=data.get('language') or None,
            location=location or None,
        )


class UserServiceClient(ABC):
    """Interface shared by the remote client and its caching wrapper."""

    @abstractmethod
    def get(self, external_id: str) -> Optional[Profile]:
        """
        Look up a user by chat platform ID.

        Returns:
            Profile, or None if the user is not registered
        """
        pass

    @abstractmethod
    def set_language(self, external_id: str, lang_code: str):
        pass

    @abstractmethod
    def set_location(self, external_id: str, latitude: float, longitude: float):
        pass


class HttpUserServiceClient(UserServiceClient):
    """
    JSON-over-HTTP profile service client.

    Args:
        base_url: Service root (defaults to settings.USER_SERVICE_URL)
        timeout: Per-call timeout in seconds
        session: Optional requests session
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None, session: Optional[requests.Session] = None):
        base_url = base_url if base_url is not None else getattr(settings, 'USER_SERVICE_URL', '')
        if not base_url:
            raise ValueError("USER_SERVICE_URL is not configured")
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout if timeout is not None else getattr(settings, 'USER_SERVICE_TIMEOUT_SECS', 3)
        self.session = session if session is not None else requests.Session()

    def get(self, external_id: str) -> Optional[Profile]:
        url = f"{self.base_url}/users/external/{external_id}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise UserServiceError(f"Profile lookup for {external_id} failed: {e}") from e

        if response.status_code == 404:
            return None
        if not response.ok:
            raise UserServiceError(f"Profile lookup for {external_id} returned HTTP {response.status_code}")

        try:
            return Profile.from_json(response.json())
        except (KeyError, TypeError, ValueError) as e:
            raise UserServiceError(f"Invalid profile payload for {external_id}: {e}") from e

    def set_language(self, external_id: str, lang_code: str):
        self._update(external_id, {'language': lang_code})
        logger.info(f"Language of user {external_id} set to {lang_code}")

    def set_location(self, external_id: str, latitude: float, longitude: float):
        self._update(external_id, {'location': {'latitude': latitude, 'longitude': longitude}})
        logger.info(f"Location of user {external_id} updated")

    def _update(self, external_id: str, payload: Dict[str, Any]):
        profile = self.get(external_id)
        if profile is None:
            raise ProfileNotFound(f"User {external_id} is not registered")

        url = f"{self.base_url}/users/{profile.id}"
        try:
            response = self.session.patch(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise UserServiceError(f"Profile update for {external_id} failed: {e}") from e

        if response.status_code == 404:
            raise ProfileNotFound(f"User {external_id} disappeared before the update")
        if not response.ok:
            raise UserServiceError(f"Profile update for {external_id} returned HTTP {response.status_code}")
