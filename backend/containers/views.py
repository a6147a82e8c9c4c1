import base64
import logging

from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.parsers import FormParser, JSONParser, MultiPartParser
from rest_framework.response import Response
from rest_framework.views import APIView

from .cloudinary_service import CloudinaryError
from .serializers import ContainerCreateSerializer, ContainerSerializer
from .storage import ContainerExists, ContainerNotFound, get_store


logger = logging.getLogger(__name__)


def _collection_payload(store, records):
    """
    Build the public list of containers with each image inlined as base64.
    An image that cannot be read leaves imageBase64 empty instead of failing
    the whole listing.
    """
    items = []
    for record in records:
        image_base64 = ""
        try:
            image = store.read_image(record)
            if image:
                image_base64 = base64.b64encode(image).decode("ascii")
            else:
                logger.warning(f"Container '{record.name}' has no image set.")
        except (CloudinaryError, OSError) as exc:
            logger.error(f"Error fetching image for container '{record.name}' ({record.id}): {exc}")
        items.append({
            "id": record.id,
            "name": record.name,
            "description": record.description,
            "imageBase64": image_base64,
        })

    serializer = ContainerSerializer(data=items, many=True)
    serializer.is_valid(raise_exception=True)
    return serializer.data


def _upstream_error(exc):
    return Response({"detail": str(exc)}, status=status.HTTP_502_BAD_GATEWAY)


class ContainerListView(APIView):
    """
    GET /api/containers/
    - Returns every container with its image inlined as base64.

    POST /api/containers/
    - Multipart form with name, description and image. Uploads the image,
      stores the new container and returns the updated collection.
    """

    parser_classes = [MultiPartParser, FormParser, JSONParser]

    def get(self, request, *args, **kwargs):
        logger.info("=== GetAllContainers START. ===")
        try:
            store = get_store()
            payload = _collection_payload(store, store.all())
        except CloudinaryError as exc:
            logger.error(f"Cloudinary error in GetAllContainers: {exc}")
            return _upstream_error(exc)
        except Exception:
            logger.exception("Exception in GetAllContainers")
            return Response(
                {"detail": "Internal server error in retrieving containers."},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        logger.info(f"Returning {len(payload)} containers.")
        logger.info("=== GetAllContainers END. ===")
        return Response(payload)

    def post(self, request, *args, **kwargs):
        logger.info(f"=== CreateContainer START. Name: {request.data.get('name', '')} ===")

        serializer = ContainerCreateSerializer(data=request.data)
        if not serializer.is_valid():
            logger.warning(f"Invalid container create request: {serializer.errors}")
            raise ValidationError(serializer.errors)
        data = serializer.validated_data
        name = data["name"]

        try:
            store = get_store()
            records = store.create(name, data.get("description", ""), data["image"])
            payload = _collection_payload(store, records)
        except ContainerExists as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_409_CONFLICT)
        except CloudinaryError as exc:
            logger.error(f"Cloudinary error creating container {name}: {exc}")
            return _upstream_error(exc)
        except Exception:
            logger.exception(f"Exception in CreateContainer for container {name}")
            return Response(
                {"detail": "Internal server error in creating container."},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        logger.info("=== CreateContainer END. ===")
        return Response(payload, status=status.HTTP_200_OK)


class ContainerDetailView(APIView):
    """
    DELETE /api/containers/<key>/
    Removes the container whose id (or, failing that, name) matches key,
    together with its image, and returns the updated collection.
    """

    def delete(self, request, key: str, *args, **kwargs):
        logger.info(f"=== DeleteContainer START. Key: {key} ===")
        key = key.strip()
        if not key:
            logger.warning("Container key is missing in delete request.")
            return Response({"detail": "Container id or name is required."}, status=status.HTTP_400_BAD_REQUEST)

        try:
            store = get_store()
            records = store.delete(key)
            payload = _collection_payload(store, records)
        except ContainerNotFound as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except CloudinaryError as exc:
            logger.error(f"Cloudinary error deleting container {key}: {exc}")
            return _upstream_error(exc)
        except Exception:
            logger.exception(f"Exception in DeleteContainer for {key}")
            return Response(
                {"detail": "Internal server error in deleting container."},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        logger.info("=== DeleteContainer END. ===")
        return Response(payload)
