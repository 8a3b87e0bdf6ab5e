"""
URL configuration for the locplace project.
"""

from django.contrib import admin
from django.urls import path, include
from django.conf import settings
from django.conf.urls.static import static
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView, SpectacularRedocView
from geocoding import admin_views as geocoding_admin_views

urlpatterns = [
    # Admin monitoring (must come BEFORE admin/ to avoid catch-all)
    path("admin/monitor/geocoding/api/", geocoding_admin_views.geocoding_monitor_api, name="geocoding_monitor_api"),

    path("admin/", admin.site.urls),

    # API endpoints
    path("api/geocoding/", include('geocoding.urls')),

    # API Documentation
    path("api/schema/", SpectacularAPIView.as_view(), name="schema"),
    path("api/docs/", SpectacularSwaggerView.as_view(url_name="schema"), name="swagger-ui"),
    path("api/redoc/", SpectacularRedocView.as_view(url_name="schema"), name="redoc"),
]

# Serve static files in development (for Django admin CSS/JS)
if settings.DEBUG:
    urlpatterns += static(settings.STATIC_URL, document_root=settings.STATIC_ROOT)
