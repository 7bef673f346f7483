import httpx
import pytest

from stitcher.errors import DownloadError
from stitcher.utils.downloader import download_file


async def test_download_writes_file(tmp_path):
    transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"video-bytes"))
    async with httpx.AsyncClient(transport=transport) as client:
        path = await download_file("https://assets.example.com/a.mp4", tmp_path / "a.mp4", client)
    assert path.read_bytes() == b"video-bytes"


async def test_non_2xx_is_download_error(tmp_path):
    transport = httpx.MockTransport(lambda request: httpx.Response(404, content=b"missing"))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(DownloadError, match="HTTP 404"):
            await download_file("https://assets.example.com/a.mp4", tmp_path / "a.mp4", client)
    assert not (tmp_path / "a.mp4").exists()


async def test_network_failure_is_download_error(tmp_path):
    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(refuse)) as client:
        with pytest.raises(DownloadError):
            await download_file("https://assets.example.com/a.mp4", tmp_path / "a.mp4", client)
