"""Azure Blob Storage service for fetching source documents."""

import os
import tempfile
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity.aio import DefaultAzureCredential
from azure.storage.blob.aio import BlobServiceClient

from rag_pipeline.config import StorageSettings, get_settings
from rag_pipeline.utils.errors import DownloadError
from rag_pipeline.utils.logging import get_logger

logger = get_logger("storage_service")


class StorageService:
    """
    Service for reading uploaded documents from Azure Blob Storage.

    Handles:
    - Lazy client creation (connection string, account key or Managed Identity)
    - Downloading a document by its storage key
    - Scoped temporary local copies that are always removed
    """

    def __init__(self, settings: Optional[StorageSettings] = None):
        self._settings = settings or get_settings().storage
        self._client: Optional[BlobServiceClient] = None

    async def _get_client(self) -> BlobServiceClient:
        """Get or create BlobServiceClient."""
        if self._client is not None:
            return self._client

        cfg = self._settings
        try:
            if cfg.connection_string:
                self._client = BlobServiceClient.from_connection_string(cfg.connection_string)
                logger.info("Created BlobServiceClient with connection string")
            elif cfg.account_name and cfg.account_key:
                account_url = f"https://{cfg.account_name}.blob.core.windows.net"
                self._client = BlobServiceClient(
                    account_url=account_url,
                    credential={"account_name": cfg.account_name, "account_key": cfg.account_key},
                )
                logger.info(f"Created BlobServiceClient with account key: {cfg.account_name}")
            elif cfg.account_name and cfg.use_managed_identity:
                account_url = f"https://{cfg.account_name}.blob.core.windows.net"
                self._client = BlobServiceClient(
                    account_url=account_url, credential=DefaultAzureCredential()
                )
                logger.info(f"Created BlobServiceClient with Managed Identity: {cfg.account_name}")
            else:
                raise DownloadError(
                    "Storage not configured. Set STORAGE_CONNECTION_STRING or STORAGE_ACCOUNT_NAME"
                )
            return self._client
        except DownloadError:
            raise
        except Exception as e:
            logger.error(f"Failed to create BlobServiceClient: {e}", exc_info=True)
            raise DownloadError(f"Failed to initialize storage client: {e}") from e

    async def download_bytes(self, document_key: str) -> bytes:
        """
        Download a document's bytes.

        Args:
            document_key: Blob name inside the configured container

        Returns:
            File content as bytes

        Raises:
            DownloadError: If the blob is missing or storage is unreachable
        """
        if not document_key:
            raise DownloadError("Document key is required")

        container = self._settings.container_name
        logger.info(f"Downloading document: container={container}, key={document_key}")

        client = await self._get_client()
        try:
            blob_client = client.get_container_client(container).get_blob_client(document_key)
            stream = await blob_client.download_blob()
            data = await stream.readall()
        except ResourceNotFoundError as e:
            raise DownloadError(
                f"Document not found in storage: {document_key}",
                document_key=document_key,
                not_found=True,
            ) from e
        except AzureError as e:
            logger.error(f"Azure Storage error downloading {document_key}: {e}", exc_info=True)
            raise DownloadError(
                f"Failed to download document from storage: {e}", document_key=document_key
            ) from e

        logger.info(f"Downloaded document: {document_key}, size={len(data)} bytes")
        return data

    @asynccontextmanager
    async def temporary_download(self, document_key: str) -> AsyncIterator[Path]:
        """
        Download a document to a uniquely named local file.

        The file is deleted when the block exits, whether it exits normally
        or by exception.
        """
        data = await self.download_bytes(document_key)

        suffix = Path(document_key).suffix or ".pdf"
        directory = self._settings.download_dir or tempfile.gettempdir()
        os.makedirs(directory, exist_ok=True)
        path = Path(directory) / f"pdf-{uuid.uuid4().hex}{suffix}"
        try:
            path.write_bytes(data)
            yield path
        finally:
            try:
                path.unlink(missing_ok=True)
                logger.debug(f"Removed temporary file: {path}")
            except OSError as e:
                logger.warning(f"Could not remove temporary file {path}: {e}")

    async def close(self) -> None:
        """Close storage client."""
        if self._client:
            try:
                await self._client.close()
                logger.info("Storage client closed")
            finally:
                self._client = None
