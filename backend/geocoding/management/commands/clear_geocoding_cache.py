"""
Django management command to clear cached provider responses.

Usage:
    python manage.py clear_geocoding_cache
    python manage.py clear_geocoding_cache --rate-limits
"""
from django.core.management.base import BaseCommand
from django_redis import get_redis_connection

from geocoding.utils.location.http_cache import KEY_PREFIX as RESPONSE_CACHE_PREFIX
from geocoding.utils.rate_limit import KEY_PREFIX as RATE_LIMIT_PREFIX


class Command(BaseCommand):
    help = """Clear geocoding-related Redis keys.

    Always removes:
    - *response-cache:* (cached provider responses)

    With --rate-limits also removes:
    - rate-limiter.* (per-user request counters)
    """

    def add_arguments(self, parser):
        parser.add_argument(
            '--rate-limits',
            action='store_true',
            help='Also reset per-user rate limit counters',
        )

    def handle(self, *args, **options):
        redis_client = get_redis_connection("default")

        self.stdout.write("=" * 80)
        self.stdout.write(self.style.WARNING("CLEARING GEOCODING REDIS KEYS"))
        self.stdout.write("=" * 80)
        self.stdout.write("")

        # Response cache keys carry the Django cache prefix/version in front
        patterns = [f'*{RESPONSE_CACHE_PREFIX}:*']
        if options['rate_limits']:
            patterns.append(f'{RATE_LIMIT_PREFIX}.*')

        total_deleted = 0

        for pattern in patterns:
            self.stdout.write(f"Searching for pattern: {pattern}")
            keys = list(redis_client.scan_iter(match=pattern, count=100))

            if keys:
                deleted = redis_client.delete(*keys)
                total_deleted += deleted
                self.stdout.write(self.style.SUCCESS(f"  ✓ Deleted {deleted} key(s)"))
            else:
                self.stdout.write("  - No keys found")
            self.stdout.write("")

        self.stdout.write("=" * 80)
        self.stdout.write(self.style.SUCCESS(f"TOTAL KEYS DELETED: {total_deleted}"))
        self.stdout.write("=" * 80)
