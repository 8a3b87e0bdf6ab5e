"""
DRF Serializers for the Geocoding API.
"""
from rest_framework import serializers


class ResolveRequestSerializer(serializers.Serializer):
    """Input of the resolve endpoint."""
    query = serializers.CharField(
        max_length=512,
        allow_blank=True,
        trim_whitespace=True,
        help_text="Free text or a coordinate pair (e.g., 'Eiffel Tower' or '51.5074 -0.1278')"
    )
    user_id = serializers.CharField(
        max_length=64,
        required=False,
        allow_blank=True,
        help_text="Chat platform user ID (used for rate limiting and profile lookup)"
    )
    lang_code = serializers.CharField(
        max_length=16,
        required=False,
        allow_blank=True,
        help_text="Locale hint from the chat platform (e.g., 'en', 'ru', 'pt-BR')"
    )


class LocationSerializer(serializers.Serializer):
    """A resolved location."""
    address = serializers.CharField(
        allow_null=True,
        help_text="Human-readable address (null for coordinate queries)"
    )
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()


class ResolveResponseSerializer(serializers.Serializer):
    """Output of the resolve endpoint."""
    query = serializers.CharField()
    lang_code = serializers.CharField(help_text="Language the providers were asked in")
    count = serializers.IntegerField()
    locations = LocationSerializer(many=True)
