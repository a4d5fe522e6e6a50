"""
URL configuration for the e-CF compliance core
"""

from django.urls import include, path

urlpatterns = [
    # e-CF API (health, monitoring)
    path("api/ecf/", include("apps.ecf.urls")),
]
