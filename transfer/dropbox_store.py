"""
Download file da Dropbox tramite content API.
"""
import json
import logging
from typing import Optional

import httpx

from core.config import get_config

logger = logging.getLogger(__name__)

DROPBOX_DOWNLOAD_URL = "https://content.dropboxapi.com/2/files/download"


def normalize_remote_path(path: str) -> str:
    """Percorso Dropbox assoluto con separatori '/'."""
    path = path.strip().replace("\\", "/")
    if not path.startswith("/"):
        path = "/" + path
    return path


class DropboxFileStore:
    """
    Accesso in lettura ai file Dropbox.

    Args:
        access_token: Token OAuth (default da config)
        timeout_sec: Timeout HTTP (default da config)
    """

    def __init__(self, access_token: Optional[str] = None, timeout_sec: Optional[float] = None):
        config = get_config()
        self._access_token = access_token or config.dropbox_access_token
        self._timeout_sec = timeout_sec or config.dropbox_timeout_sec

    async def download(self, remote_path: str, local_path: str) -> int:
        """
        Scarica un file Dropbox su disco locale.

        Args:
            remote_path: Percorso file su Dropbox
            local_path: Destinazione locale

        Returns:
            Numero byte scritti

        Raises:
            RuntimeError: Token non configurato
            httpx.HTTPError: Errore HTTP o di rete
        """
        if not self._access_token:
            raise RuntimeError("DROPBOX_ACCESS_TOKEN non configurato")

        remote_path = normalize_remote_path(remote_path)
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            # Header ASCII: caratteri non ASCII (hangul) vanno escapati
            "Dropbox-API-Arg": json.dumps({"path": remote_path}, ensure_ascii=True),
        }

        async with httpx.AsyncClient(timeout=self._timeout_sec) as client:
            response = await client.post(DROPBOX_DOWNLOAD_URL, headers=headers)
            response.raise_for_status()
            content = response.content

        with open(local_path, "wb") as f:
            f.write(content)

        logger.info(f"[DROPBOX] Downloaded {remote_path} ({len(content)} bytes)")
        return len(content)
