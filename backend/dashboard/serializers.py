from rest_framework import serializers


class MessageSerializer(serializers.Serializer):
    message = serializers.CharField(
        trim_whitespace=False,
        error_messages={
            "required": "Message is required!",
            "blank": "Message is required!",
            "null": "Message is required!",
        }
    )
