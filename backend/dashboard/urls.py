from django.urls import path

from .views import index, LogsView, HelloView, TestCloudinaryView


app_name = "dashboard"


urlpatterns = [
    path("", index, name="index"),
    path("logs", LogsView.as_view(), name="logs"),
    path("api/", HelloView.as_view(), name="hello"),
    path("api/testCloudinary", TestCloudinaryView.as_view(), name="test-cloudinary"),
]
