"""Django app configuration for geocoding."""
import atexit
import logging

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class GeocodingConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'geocoding'
    verbose_name = 'Geocoding'

    resolver = None
    sweeper = None

    def ready(self):
        """Build the shared LocationResolver and start the profile cache sweeper."""
        from locplace.utils.fail_open import config_value
        from profiles.cache import CacheSweeper
        from .services import LocationResolver

        self.resolver = LocationResolver.from_config()

        if self.resolver.profiles is not None and getattr(settings, 'PROFILE_CACHE_SWEEPER_AUTOSTART', True):
            self.sweeper = CacheSweeper(self.resolver.profiles, interval=config_value('CACHE_CLEAN_UP_INTERVAL_SECS', log=logger))
            self.sweeper.start()
            atexit.register(self.sweeper.stop)
