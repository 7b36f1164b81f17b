import hashlib
from pathlib import Path

import requests

from arcboard.core.errors import FetchError

CHUNK_SIZE = 1024 * 1024


def download_file(url: str, dest: Path, timeout: float = 300.0) -> Path:
    """
    Plain HTTP GET of 'url' into 'dest'. No retry.
    Raises FetchError if the transfer fails or the file is missing afterwards.
    """
    dest = Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)

    try:
        with requests.get(url, stream=True, timeout=timeout, allow_redirects=True) as response:
            response.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
    except (requests.RequestException, OSError) as e:
        raise FetchError(f"Download of {url} failed: {e}", cause=e) from e

    if not dest.is_file():
        raise FetchError(f"Download of {url} finished but {dest} does not exist")

    return dest


def sha256sum(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()
