from django.urls import path

from . import views

app_name = "ecf"

urlpatterns = [
    path("health/", views.health_check, name="health"),
]
