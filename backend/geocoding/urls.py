"""
URL Configuration for Geocoding API.
"""
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import GeocodingViewSet

router = DefaultRouter()
router.register(r'', GeocodingViewSet, basename='geocoding')

app_name = 'geocoding'

urlpatterns = [
    path('', include(router.urls)),
]

# POST   /api/geocoding/resolve/     - Resolve free text or coordinates into locations
