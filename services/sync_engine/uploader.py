"""Attachment upload for the push pipeline."""

import asyncio
import logging
from dataclasses import replace
from typing import List

from shared.errors import CapacityError, MalformedLocalStateError, TransientNetworkError
from shared.models import Attachment
from services.sync_engine.remote_client import RemoteEntryClient

logger = logging.getLogger(__name__)


class AttachmentUploader:
    """Transfers attachment payloads to the remote service and records their remote keys."""

    def __init__(self, remote: RemoteEntryClient, concurrency: int = 4):
        """
        Initialize the uploader.

        Args:
            remote: Remote entry service client
            concurrency: Maximum simultaneous uploads for one entry
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self.remote = remote
        self.concurrency = concurrency

    async def upload(self, attachment: Attachment) -> Attachment:
        """
        Upload one attachment.

        Returns a resolved copy (remote_key set, local payload dropped) on
        success and the attachment unchanged on failure. Already resolved
        attachments are returned as is.
        """
        if attachment.resolved:
            return attachment

        try:
            if attachment.local_payload is None:
                raise MalformedLocalStateError(
                    f"Attachment {attachment.id} has no local payload to upload"
                )
            payload = attachment.local_payload.read()
            key = await self.remote.upload_attachment(attachment.id, attachment.mime_type, payload)
        except CapacityError as e:
            logger.warning(f"Remote refused attachment {attachment.id} for capacity, will retry: {e}")
            return attachment
        except TransientNetworkError as e:
            logger.warning(f"Upload of attachment {attachment.id} failed, will retry: {e}")
            return attachment
        except MalformedLocalStateError as e:
            logger.error(f"Cannot upload attachment {attachment.id}: {e}")
            return attachment
        except OSError as e:
            logger.error(f"Reading payload of attachment {attachment.id} failed: {e}", exc_info=True)
            return attachment
        except Exception as e:
            logger.error(f"Upload of attachment {attachment.id} failed unexpectedly: {e}", exc_info=True)
            return attachment

        logger.info(f"Uploaded attachment {attachment.id} ({len(payload)} bytes)")
        return replace(attachment, remote_key=key, local_payload=None)

    async def upload_all(self, attachments: List[Attachment]) -> List[Attachment]:
        """
        Upload every unresolved attachment with bounded concurrency.

        Failures are independent: the returned list keeps the input order and
        holds each attachment's own outcome.
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(attachment: Attachment) -> Attachment:
            async with semaphore:
                return await self.upload(attachment)

        return list(await asyncio.gather(*(bounded(attachment) for attachment in attachments)))
