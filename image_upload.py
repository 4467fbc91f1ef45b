import logging
import os
import time
from typing import Optional

import httpx

from config import Settings
from errors import ExternalServiceError, ValidationError


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class ImageUploadService:
    """Service for storing book cover images on ImageKit.

    Takes raw image bytes and a file name and returns the durable URL the
    image host assigns.
    """

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.upload_url = settings.imagekit_upload_url
        self.private_key = settings.imagekit_private_key
        self.timeout = settings.imagekit_timeout
        self.max_upload_size = settings.max_upload_size
        self.allowed_extensions = [ext.lower() for ext in settings.allowed_image_extensions]
        self._configured = settings.is_image_host_configured()
        # Tests inject an httpx.MockTransport here
        self._transport = transport

    def _validate(self, data: bytes, file_name: str) -> None:
        errors = {}
        if not file_name or not file_name.strip():
            errors["fileName"] = "File name is required."
        else:
            ext = os.path.splitext(file_name)[1].lower()
            if ext not in self.allowed_extensions:
                errors["fileName"] = f"Unsupported image type '{ext or file_name}'."
        if not data:
            errors["file"] = "File is empty."
        elif len(data) > self.max_upload_size:
            errors["file"] = f"File exceeds the {self.max_upload_size} byte limit."
        if errors:
            raise ValidationError(errors)

    async def upload(self, data: bytes, file_name: str) -> str:
        """Upload an image and return its URL."""
        self._validate(data, file_name)
        if not self._configured:
            logger.warning("ImageKit private key not configured")
            raise ExternalServiceError("Image host is not configured")

        start_time = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.upload_url,
                    auth=(self.private_key, ""),
                    files={"file": (file_name, data)},
                    data={"fileName": file_name},
                )
        except httpx.TimeoutException as e:
            logger.error(f"Image upload timed out after {self.timeout}s")
            raise ExternalServiceError("Image upload timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Image upload failed: {e}")
            raise ExternalServiceError("Image upload failed") from e

        response_time_ms = int((time.time() - start_time) * 1000)
        if response.status_code != 200:
            logger.error(f"Image upload failed: {response.status_code} - {response.text}")
            raise ExternalServiceError("Image upload failed")

        try:
            url = response.json().get("url")
        except ValueError as e:
            raise ExternalServiceError("Image host returned an unreadable response") from e
        if not url:
            logger.error("Image host response has no url")
            raise ExternalServiceError("Image host returned no URL")

        logger.info(f"Image uploaded: {file_name} in {response_time_ms}ms")
        return url
