import logging

from django.http import HttpResponse
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from containers import cloudinary_service
from containers.cloudinary_service import CloudinaryError

from .logbuffer import recent_lines
from .serializers import MessageSerializer


logger = logging.getLogger(__name__)


INDEX_HTML = """
<html>
<head>
    <title>Containers server</title>
</head>
<body>
    <h1>Welcome to the containers server!</h1>
    <pre id='logContainer' style='background:#f0f0f0; padding:10px;'></pre>
    <button onclick='testCloudinary()'>Test Cloudinary</button>
    <script>
        async function fetchLogs() {
            const res = await fetch('/logs');
            const data = await res.json();
            document.getElementById('logContainer').innerText = data.join('\\n');
        }
        setInterval(fetchLogs, 1000);
        async function testCloudinary() {
            try {
                const res = await fetch('/api/testCloudinary');
                const text = await res.json();
                alert(typeof text === 'string' ? text : JSON.stringify(text));
            } catch(e) {
                alert('Error: ' + e);
            }
        }
    </script>
</body>
</html>
"""

# Canned replies of the echo check.
REPLIES = {
    "1": "111!",
    "2": "222!",
    "3": "333",
}


def index(request):
    """GET / : status page that tails the server log."""
    logger.info("Default index page requested.")
    return HttpResponse(INDEX_HTML, content_type="text/html")


class LogsView(APIView):
    """
    GET /logs
    Most recent log lines, oldest first.
    """

    def get(self, request, *args, **kwargs):
        return Response(recent_lines())


class HelloView(APIView):
    """
    GET /api/  -> liveness check.
    POST /api/ -> {"message": "1"} echo check with canned replies.
    """

    def get(self, request, *args, **kwargs):
        return Response({"message": "Server work OK!"})

    def post(self, request, *args, **kwargs):
        serializer = MessageSerializer(data=request.data)
        if not serializer.is_valid():
            return Response({"message": "Message is required!"}, status=status.HTTP_400_BAD_REQUEST)
        message = serializer.validated_data["message"]
        return Response({"message": REPLIES.get(message, "Error!")})


class TestCloudinaryView(APIView):
    """
    GET /api/testCloudinary
    Verifies the configured Cloudinary credentials against the Admin API.
    """

    def get(self, request, *args, **kwargs):
        logger.info("TestCloudinary endpoint hit.")
        try:
            cloudinary_service.ping()
        except CloudinaryError as exc:
            logger.error(f"Cloudinary ping failed: {exc}")
            return Response({"detail": str(exc)}, status=status.HTTP_502_BAD_GATEWAY)
        return Response("Cloudinary is working properly.")
