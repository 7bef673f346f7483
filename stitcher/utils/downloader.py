# stitcher/utils/downloader.py
import logging
from pathlib import Path
from typing import Optional

import httpx

from stitcher.errors import DownloadError


async def download_file(
    url: str,
    output_path: Path,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = 60.0,
) -> Path:
    """
    Downloads a file from a URL to a specified path. Any non-2xx response
    or network failure raises DownloadError and leaves no partial file.
    """
    output_path = Path(output_path)
    logging.info(f"Downloading file from {url}...")
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient()
    try:
        # Use a streaming response for potentially large video files
        async with client.stream("GET", url, follow_redirects=True, timeout=timeout) as response:
            response.raise_for_status()
            with open(output_path, "wb") as f:
                async for chunk in response.aiter_bytes():
                    f.write(chunk)
    except httpx.HTTPStatusError as e:
        logging.error(f"HTTP error while downloading {url}: {e.response.status_code}")
        output_path.unlink(missing_ok=True)
        raise DownloadError(url, f"HTTP {e.response.status_code}") from e
    except httpx.HTTPError as e:
        logging.error(f"Failed to download {url}: {e}")
        output_path.unlink(missing_ok=True)
        raise DownloadError(url, str(e) or e.__class__.__name__) from e
    finally:
        if owns_client:
            await client.aclose()

    logging.info(f"Successfully downloaded file to {output_path}")
    return output_path
