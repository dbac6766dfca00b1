"""Media service - uploads and deletes assets on Cloudinary."""

from __future__ import annotations

import hashlib
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from account_api.config import Settings
from account_api.core.exceptions import UploadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadedAsset:
    url: str
    public_id: str


class MediaService:
    """
    Thin client for the Cloudinary upload API.

    Every call is bounded by ``MEDIA_TIMEOUT_SECONDS``; a timeout is treated
    like any other failure of that call. No retries.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None) -> None:
        self.cloud_name = settings.CLOUDINARY_CLOUD_NAME
        self.api_key = settings.CLOUDINARY_API_KEY
        self._api_secret = settings.CLOUDINARY_API_SECRET
        self.base_url = f"{settings.CLOUDINARY_API_URL.rstrip('/')}/{self.cloud_name}"
        self.timeout = settings.MEDIA_TIMEOUT_SECONDS
        self._session = session or requests.Session()

    def _sign(self, params: Dict[str, Any]) -> str:
        to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params))
        return hashlib.sha1(f"{to_sign}{self._api_secret}".encode("utf-8")).hexdigest()

    def _signed(self, params: Dict[str, Any]) -> Dict[str, Any]:
        params = dict(params, timestamp=int(time.time()))
        return dict(params, api_key=self.api_key, signature=self._sign(params))

    def upload(self, local_path: str) -> UploadedAsset:
        """
        Upload a staged local file and remove it afterwards.

        Raises:
            UploadError: If the request fails, times out, or returns no URL
        """
        if not local_path:
            raise UploadError("No file to upload")

        try:
            with open(local_path, "rb") as fh:
                response = self._session.post(
                    f"{self.base_url}/auto/upload",
                    data=self._signed({}),
                    files={"file": (os.path.basename(local_path), fh)},
                    timeout=self.timeout,
                )
            if not response.ok:
                logger.error("Upload of %s rejected with status %i", local_path, response.status_code)
                raise UploadError()
            data: Dict[str, Any] = response.json()
        except (requests.exceptions.RequestException, OSError, ValueError) as e:
            logger.error("Upload of %s failed: %s", local_path, e)
            raise UploadError() from e
        finally:
            self._discard(local_path)

        url = data.get("secure_url") or data.get("url")
        public_id = data.get("public_id")
        if not url or not public_id:
            raise UploadError("Upload did not return an asset URL")

        logger.info("Uploaded asset %s", public_id)
        return UploadedAsset(url=url, public_id=public_id)

    def delete(self, public_id: str) -> bool:
        """Delete an asset; failures are logged and reported as False"""
        try:
            response = self._session.post(
                f"{self.base_url}/image/destroy",
                data=self._signed({"public_id": public_id}),
                timeout=self.timeout,
            )
            deleted = response.ok and response.json().get("result") == "ok"
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error("Delete of asset %s failed: %s", public_id, e)
            return False

        if deleted:
            logger.info("Deleted asset %s", public_id)
        else:
            logger.warning("Asset %s was not deleted (status %i)", public_id, response.status_code)
        return deleted

    @staticmethod
    def _discard(local_path: str) -> None:
        try:
            os.remove(local_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove staged file %s: %s", local_path, e)
