"""
Django management command to resolve a location query from the shell.

Usage:
    python manage.py resolve_location "Eiffel Tower"
    python manage.py resolve_location "Красная площадь" --lang ru
    python manage.py resolve_location "coffee" --near 55.75,37.62
    python manage.py resolve_location "home" --user 123456789
"""
from django.apps import apps
from django.core.management.base import BaseCommand, CommandError


class Command(BaseCommand):
    help = "Resolve a free-text or coordinate query through the provider chain"

    def add_arguments(self, parser):
        parser.add_argument('query', help='Free text or "lat lon"')
        parser.add_argument('--lang', default='en', help='Language code (default: en)')
        parser.add_argument('--near', help='Bias results around "lat,lon"')
        parser.add_argument('--user', help='Resolve on behalf of a chat user (profile language/location)')

    def handle(self, *args, **options):
        resolver = apps.get_app_config('geocoding').resolver
        query = options['query']

        if options['user']:
            lang_code, locations = resolver.resolve_for_user(query, user_id=options['user'], lang_hint=options['lang'])
        else:
            lang_code = options['lang']
            location_bias = self._parse_near(options['near']) if options['near'] else None
            locations = resolver.resolve(query, lang_code, location_bias)

        self.stdout.write(f"Query: {query} (lang={lang_code})")
        if not locations:
            self.stdout.write(self.style.WARNING("No locations found"))
            return

        for i, location in enumerate(locations, 1):
            address = location.address or '(coordinates)'
            self.stdout.write(f"  {i}. {address} [{location.latitude}, {location.longitude}]")
        self.stdout.write(self.style.SUCCESS(f"Found {len(locations)} location(s)"))

    @staticmethod
    def _parse_near(value):
        try:
            latitude, longitude = (float(part) for part in value.split(','))
        except ValueError:
            raise CommandError(f'--near must look like "lat,lon", got "{value}"')
        if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
            raise CommandError(f'--near is out of range: "{value}"')
        return latitude, longitude
