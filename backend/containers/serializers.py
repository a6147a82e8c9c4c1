from rest_framework import serializers


class ContainerCreateSerializer(serializers.Serializer):
    """
    Multipart form the frontend sends to create a container.
    """

    name = serializers.CharField(
        error_messages={
            "required": "Container name is required.",
            "blank": "Container name is required.",
            "null": "Container name is required.",
        },
    )
    description = serializers.CharField(required=False, allow_blank=True, default="")
    image = serializers.FileField(
        allow_empty_file=False,
        error_messages={
            "required": "Image file is required.",
            "null": "Image file is required.",
            "empty": "Image file is required.",
            "invalid": "Image file is required.",
        },
    )


class ContainerSerializer(serializers.Serializer):
    """
    Shape returned to the frontend for each container, image inlined as base64.
    """

    id = serializers.CharField()
    name = serializers.CharField()
    description = serializers.CharField(allow_blank=True)
    imageBase64 = serializers.CharField(allow_blank=True, trim_whitespace=False)
