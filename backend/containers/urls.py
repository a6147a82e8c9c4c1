from django.urls import path

from .views import ContainerListView, ContainerDetailView


app_name = "containers"


urlpatterns = [
    path("", ContainerListView.as_view(), name="list"),
    path("<str:key>/", ContainerDetailView.as_view(), name="detail"),
]
