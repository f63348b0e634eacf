"""Download service for fetching the service binary over HTTP(S)."""

from pathlib import Path
from typing import Optional
import logging

import httpx
import aiofiles

from deployer.errors import ArtifactFetchError
from deployer.utils.verification import verify_sha256_or_raise


class DownloadService:
    """Streams an artifact into a target path with completeness checks."""

    def __init__(self, timeout: float = 30.0, expected_sha256: Optional[str] = None):
        """Initialize download service.

        Args:
            timeout: httpx timeout for connect/read/write (seconds)
            expected_sha256: Digest the payload must match; unchecked when None
        """
        self.logger = logging.getLogger("deployer.download")
        self.timeout = timeout
        self.expected_sha256 = expected_sha256
        self.chunk_size = 64 * 1024  # 64KB chunks

    async def fetch(self, url: str, target_path: Path) -> int:
        """Download url into target_path.

        The file at target_path is overwritten. On any failure the partial
        file is removed.

        Args:
            url: HTTP(S) URL to download from
            target_path: Destination file

        Returns:
            Number of bytes written

        Raises:
            ArtifactFetchError: Transport error, non-success status, truncated
                body or digest mismatch
        """
        self.logger.info(f"Downloading binary from: {url}")

        try:
            bytes_downloaded = await self._stream_to_file(url, target_path)
            if self.expected_sha256:
                verify_sha256_or_raise(target_path, self.expected_sha256)
        except httpx.HTTPStatusError as e:
            target_path.unlink(missing_ok=True)
            raise ArtifactFetchError(
                f"{url} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            target_path.unlink(missing_ok=True)
            raise ArtifactFetchError(f"Failed to download {url}: {e}") from e
        except ValueError as e:
            # Size or digest mismatch
            target_path.unlink(missing_ok=True)
            raise ArtifactFetchError(str(e)) from e
        except OSError as e:
            target_path.unlink(missing_ok=True)
            raise ArtifactFetchError(f"Failed to write {target_path}: {e}") from e

        self.logger.info(f"Downloaded {bytes_downloaded} bytes to {target_path}")
        return bytes_downloaded

    async def _stream_to_file(self, url: str, target_path: Path) -> int:
        """Perform the streamed GET and write chunks to target_path.

        Raises:
            ValueError: If fewer bytes arrive than Content-Length announced
        """
        bytes_downloaded = 0

        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
            async with client.stream("GET", url) as response:
                response.raise_for_status()
                # Content-Length counts encoded bytes; only compare identity bodies
                expected_size = None
                if not response.headers.get("Content-Encoding"):
                    expected_size = response.headers.get("Content-Length")

                async with aiofiles.open(target_path, "wb") as f:
                    async for chunk in response.aiter_bytes(chunk_size=self.chunk_size):
                        await f.write(chunk)
                        bytes_downloaded += len(chunk)

        if expected_size is not None and int(expected_size) != bytes_downloaded:
            raise ValueError(
                f"SIZE_MISMATCH: expected {expected_size} bytes, got {bytes_downloaded}"
            )
        if bytes_downloaded == 0:
            raise ValueError("EMPTY_ARTIFACT: server returned an empty body")

        return bytes_downloaded
