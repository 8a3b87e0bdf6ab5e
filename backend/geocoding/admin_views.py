"""
Custom admin views for geocoding provider monitoring.
"""

import logging

from django.apps import apps
from django.contrib.admin.views.decorators import staff_member_required
from django.http import JsonResponse

from locplace.utils.fail_open import config_value
from .utils.location import get_available_providers

logger = logging.getLogger(__name__)


@staff_member_required
def geocoding_monitor_api(request):
    """
    JSON API endpoint with provider counters and recent events.

    Query Parameters:
        limit: Number of recent events (default: 50, max: 500)
        provider: Only events of this provider (e.g., 'google')
    """
    try:
        limit = min(500, max(1, int(request.GET.get('limit', 50))))
    except (ValueError, TypeError):
        limit = 50
    provider = request.GET.get('provider', '').strip() or None

    resolver = apps.get_app_config('geocoding').resolver
    monitor = resolver.monitor

    chain = resolver.chain
    chain_info = {'global': [f.provider_name for f in chain.finders_for('')]}
    for lang_code in chain.lang_codes:
        chain_info[lang_code] = [f.provider_name for f in chain.finders_for(lang_code)]

    return JsonResponse({
        'monitoring_enabled': monitor.enabled,
        'available_providers': get_available_providers(),
        'chain': chain_info,
        'rate_limit': {
            'enabled': resolver.limiter.enabled,
            'max_allowed': resolver.limiter.max_allowed,
            'timeframe_seconds': resolver.limiter.timeframe,
        },
        'response_cache_enabled': config_value('RESPONSE_CACHE_ENABLED'),
        'profile_cache_size': len(resolver.profiles) if resolver.profiles is not None else None,
        'metrics': monitor.get_metrics_summary(),
        'recent_events': monitor.get_recent_events(limit=limit, provider=provider),
    })
