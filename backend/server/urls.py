from django.urls import include, path


urlpatterns = [
    path("api/containers/", include("containers.urls")),
    path("", include("dashboard.urls")),
]
