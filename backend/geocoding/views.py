"""
API views for location resolution.
"""
import logging

from django.apps import apps
from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from locplace.utils.fail_open import config_value
from .serializers import ResolveRequestSerializer, ResolveResponseSerializer
from .utils.rate_limit import resolve_rate_limit

logger = logging.getLogger(__name__)


class GeocodingViewSet(viewsets.ViewSet):
    """
    ViewSet for resolving location queries.

    Endpoints:
    - POST /api/geocoding/resolve/ - Resolve free text or coordinates into locations
    """

    permission_classes = [AllowAny]

    @property
    def resolver(self):
        return apps.get_app_config('geocoding').resolver

    @extend_schema(request=ResolveRequestSerializer, responses=ResolveResponseSerializer)
    @action(
        detail=False,
        methods=['post'],
        url_path='resolve'
    )
    @resolve_rate_limit
    def resolve(self, request):
        """
        Resolve a location query on behalf of a chat user.

        Request (JSON):
            {
                "query": "Eiffel Tower",
                "user_id": "123456789",
                "lang_code": "en"
            }

        Response:
            {
                "query": "Eiffel Tower",
                "lang_code": "en",
                "count": 1,
                "locations": [
                    {
                        "address": "Champ de Mars, Paris",
                        "latitude": 48.8584,
                        "longitude": 2.2945
                    }
                ]
            }
        """
        serializer = ResolveRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        query = serializer.validated_data['query']
        user_id = serializer.validated_data.get('user_id') or None
        lang_hint = serializer.validated_data.get('lang_code') or None

        lang_code, locations = self.resolver.resolve_for_user(
            query,
            user_id=user_id,
            lang_hint=lang_hint,
            limit=config_value('MSG_LOC_LIMIT', log=logger),
        )
        logger.info(f"Resolved query for user {user_id} (lang={lang_code}): {len(locations)} location(s)")

        return Response({
            'query': query,
            'lang_code': lang_code,
            'count': len(locations),
            'locations': [location.to_dict() for location in locations],
        })
