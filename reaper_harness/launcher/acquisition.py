"""
Host Acquisition — versioned, verified, cached REAPER binaries

Resolves a version descriptor ("latest" or an explicit version) to a REAPER
executable. Binaries are downloaded once per version into a local cache,
checked against a SHA-256 checksum and moved into place with an atomic
rename, so concurrent resolves never see a half-populated cache entry.
"""

import contextlib
import fcntl
import hashlib
import json
import logging
import os
import platform
import shutil
import subprocess
import tarfile
import tempfile
from pathlib import Path
from typing import NamedTuple, Optional, Tuple
from urllib.parse import urlparse

import requests

from ..errors import IntegrityMismatch, SetupFailure, UnresolvedVersion
from ..harness_config import STATIC_CONFIG

logger = logging.getLogger(__name__)

PINS_FILE = "pins.json"
DOWNLOAD_CHUNK = 1024 * 1024

# Answers hdiutil's license pager and agreement prompts.
_DMG_LICENSE_KEYS = "q\nq\ny\ny\ny\ny\n"


class ResolvedHost(NamedTuple):
    version: str
    home: Path
    executable: Path


def current_platform() -> str:
    """Catalog key for this machine, e.g. 'linux-x86_64'."""
    system = platform.system()
    if system == "Linux":
        os_name = "linux"
    elif system == "Darwin":
        os_name = "macos"
    else:
        raise UnresolvedVersion(f"REAPER integration tests are not supported on {system}")
    machine = platform.machine().lower()
    arch = {"amd64": "x86_64", "x86_64": "x86_64"}.get(machine, machine)
    if os_name == "macos" and arch == "arm64":
        # Intel build, runs under Rosetta.
        arch = "x86_64"
    return f"{os_name}-{arch}"


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(DOWNLOAD_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


class HostAcquisition:
    """Resolve and cache REAPER binaries by version.

    Args:
        cache_dir: Root of the binary cache, one subdirectory per version
        catalog: {"latest": version, "versions": {version: {platform: entry}}};
            defaults to STATIC_CONFIG["hosts"]
        platform_key: Catalog platform key; detected when omitted
        session: requests.Session used for downloads
        timeout: Network timeout in seconds for each request
    """

    def __init__(
        self,
        cache_dir,
        catalog: Optional[dict] = None,
        platform_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 60.0,
    ):
        self.cache_dir = Path(cache_dir).expanduser()
        self.catalog = catalog if catalog is not None else STATIC_CONFIG["hosts"]
        self._platform_key = platform_key
        self.session = session or requests.Session()
        self.timeout = timeout

    @property
    def platform_key(self) -> str:
        if self._platform_key is None:
            self._platform_key = current_platform()
        return self._platform_key

    # ------------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------------

    def lookup(self, version_spec: str) -> Tuple[str, dict]:
        """Map a version descriptor to (version, catalog entry)."""
        spec = (version_spec or "latest").strip()
        versions = self.catalog.get("versions", {})
        version = self.catalog.get("latest") if spec == "latest" else spec
        if not version or version not in versions:
            known = ", ".join(sorted(versions)) or "none"
            raise UnresolvedVersion(f"Unknown REAPER version '{spec}' (known: latest, {known})")
        entry = versions[version].get(self.platform_key)
        if entry is None:
            raise UnresolvedVersion(
                f"REAPER {version} is not available for platform {self.platform_key}"
            )
        return version, entry

    def resolve_host(self, version_spec: str = "latest") -> ResolvedHost:
        version, entry = self.lookup(version_spec)
        home = self.cache_dir / version / entry["home"]
        executable = home / entry["executable"]
        if executable.exists():
            logger.debug(f"REAPER {version} found in cache at {home}")
            return ResolvedHost(version, home, executable)

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        with self._locked(version):
            # Another resolver may have finished while we waited for the lock.
            if not executable.exists():
                self._populate(version, entry)

        if not executable.exists():
            raise SetupFailure(f"REAPER {version} archive does not contain {entry['executable']}")
        logger.info(f"REAPER {version} ready at {home}")
        return ResolvedHost(version, home, executable)

    def resolve(self, version_spec: str = "latest") -> Path:
        """Return the path of a verified REAPER executable for version_spec."""
        return self.resolve_host(version_spec).executable

    # ------------------------------------------------------------------------
    # Cache population
    # ------------------------------------------------------------------------

    @contextlib.contextmanager
    def _locked(self, name: str):
        lock_path = self.cache_dir / f".{name}.lock"
        with open(lock_path, "w") as fh:
            fcntl.flock(fh, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fh, fcntl.LOCK_UN)

    def _populate(self, version: str, entry: dict) -> None:
        staging = Path(tempfile.mkdtemp(prefix=f".{version}-", dir=self.cache_dir))
        try:
            url = entry["url"]
            archive = staging / (Path(urlparse(url).path).name or "reaper-archive")
            self._download(version, url, archive)
            self._verify(version, entry, archive)

            unpacked = staging / "unpacked"
            unpacked.mkdir()
            if archive.name.endswith(".dmg"):
                self._unpack_dmg(archive, unpacked, entry)
            else:
                self._unpack_tar(archive, unpacked)

            final = self.cache_dir / version
            if final.exists():
                # Left over without an executable; the version lock is held.
                logger.warning(f"Replacing incomplete cache entry {final}")
                os.rename(final, staging / "stale")
            os.rename(unpacked, final)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    def _download(self, version: str, url: str, dest: Path) -> None:
        logger.info(f"Downloading REAPER {version} from {url}")
        written = 0
        try:
            with self.session.get(url, stream=True, timeout=self.timeout) as resp:
                resp.raise_for_status()
                expected = resp.headers.get("Content-Length")
                with open(dest, "wb") as fh:
                    for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK):
                        if chunk:
                            fh.write(chunk)
                            written += len(chunk)
        except requests.RequestException as e:
            raise SetupFailure(f"Could not download REAPER {version} from {url}: {e}") from e

        if expected is not None and expected.isdigit() and int(expected) != written:
            raise IntegrityMismatch(version, f"{expected} bytes", f"{written} bytes")

    def _verify(self, version: str, entry: dict, archive: Path) -> None:
        actual = sha256_file(archive)
        expected = entry.get("sha256")
        if expected:
            if actual != expected.lower():
                raise IntegrityMismatch(version, expected.lower(), actual)
            return

        # No published checksum: pin the first download, hold later ones to it.
        key = f"{version}/{self.platform_key}"
        with self._locked("pins"):
            pins_path = self.cache_dir / PINS_FILE
            pins = self._read_pins(pins_path)
            pinned = pins.get(key)
            if pinned is None:
                logger.warning(f"No checksum known for REAPER {key}; pinning sha256 {actual}")
                pins[key] = actual
                tmp = pins_path.with_suffix(".tmp")
                tmp.write_text(json.dumps(pins, indent=2, sort_keys=True))
                os.replace(tmp, pins_path)
            elif pinned != actual:
                raise IntegrityMismatch(version, pinned, actual)

    def _read_pins(self, pins_path: Path) -> dict:
        if not pins_path.exists():
            return {}
        try:
            pins = json.loads(pins_path.read_text())
        except (OSError, ValueError) as e:
            raise SetupFailure(f"Cannot read checksum pins {pins_path}: {e}") from e
        if not isinstance(pins, dict):
            raise SetupFailure(f"Checksum pins {pins_path} must hold a JSON object")
        return pins

    def _unpack_tar(self, archive: Path, dest: Path) -> None:
        logger.info(f"Unpacking {archive.name}")
        try:
            with tarfile.open(archive, "r:*") as tar:
                tar.extractall(dest, filter="data")
        except (tarfile.TarError, OSError) as e:
            raise SetupFailure(f"Could not unpack {archive.name}: {e}") from e

    def _unpack_dmg(self, archive: Path, dest: Path, entry: dict) -> None:
        mount_app = Path(entry["mount"])
        logger.info(f"Mounting {archive.name}")
        proc = subprocess.run(
            ["hdiutil", "attach", str(archive)],
            input=_DMG_LICENSE_KEYS,
            text=True,
            capture_output=True,
        )
        if proc.returncode != 0:
            raise SetupFailure(f"Could not mount {archive.name}: {proc.stderr.strip()}")
        try:
            home = dest / entry["home"]
            home.mkdir(parents=True)
            shutil.copytree(mount_app, home / mount_app.name, symlinks=True)
        finally:
            subprocess.run(["hdiutil", "detach", str(mount_app.parent)], capture_output=True)
