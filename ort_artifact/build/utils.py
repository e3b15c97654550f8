"""Utility functions for the build process.

This module wraps the external collaborators of a build: running
processes, git checkout and patching, and fetching third-party SDK
archives.
"""

from __future__ import annotations

import os
import pathlib
import shutil
import subprocess
import tarfile
import zipfile
from typing import Callable, Dict, List, Optional, Sequence, Union
from urllib.parse import urlparse

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ort_artifact.utils.exceptions import CommandError, DownloadError

LogFunc = Callable[[str, str], None]


def _noop_log(message: str, level: str = "info") -> None:
    pass


def run_command(
        cmd: Sequence[str],
        cwd: Optional[Union[str, pathlib.Path]] = None,
        env: Optional[Dict[str, str]] = None,
        log: Optional[LogFunc] = None,
) -> int:
    """Run a command, streaming its output to the log.

    Args:
        cmd: Command and arguments
        cwd: Working directory
        env: Full environment for the process (defaults to the current one)
        log: Log function receiving each output line at debug level

    Returns:
        The process return code (always 0)

    Raises:
        CommandError: If the process exits with a non-zero status
    """
    log = log or _noop_log
    command_line = " ".join(str(part) for part in cmd)
    log(f"Running: {command_line}", "info")

    # Toolchains print in the console code page; undecodable bytes are replaced
    with subprocess.Popen(
        [str(part) for part in cmd],
        cwd=str(cwd) if cwd else None,
        env=env,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        encoding="utf-8",
        errors="replace",
        bufsize=1,
    ) as process:
        # Stream output
        for line in process.stdout:
            log(line.rstrip(), "debug")

        process.wait()

    if process.returncode != 0:
        raise CommandError(
            f"Command failed with return code {process.returncode}: {command_line}",
            command=command_line,
            returncode=process.returncode,
        )
    return process.returncode


def capture_output(cmd: Sequence[str], cwd: Optional[Union[str, pathlib.Path]] = None) -> str:
    """Run a command and return its standard output, stripped.

    Raises:
        CommandError: If the process exits with a non-zero status
    """
    command_line = " ".join(str(part) for part in cmd)
    result = subprocess.run(
        [str(part) for part in cmd],
        cwd=str(cwd) if cwd else None,
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        raise CommandError(
            f"Command failed with return code {result.returncode}: {command_line}: {result.stderr.strip()}",
            command=command_line,
            returncode=result.returncode,
        )
    return result.stdout.strip()


def current_branch(repo: Union[str, pathlib.Path]) -> str:
    """Name of the branch checked out in a git repository."""
    return capture_output(["git", "branch", "--show-current"], cwd=repo)


def checkout_source(
        root: Union[str, pathlib.Path],
        branch: str,
        repository_url: str,
        directory_name: str = "onnxruntime",
        log: Optional[LogFunc] = None,
) -> pathlib.Path:
    """Make sure a clean checkout of ``branch`` exists below ``root``.

    An existing checkout on a different branch is removed and cloned again.
    The checkout is then reset and cleaned so no earlier patches or build
    outputs survive.

    Args:
        root: Directory containing the checkout
        branch: Branch to check out
        repository_url: Repository to clone from
        directory_name: Name of the checkout directory
        log: Log function

    Returns:
        Path to the checkout
    """
    log = log or _noop_log
    root = pathlib.Path(root)
    repo = root / directory_name

    is_branch_correct = False
    if repo.exists():
        branch_name = current_branch(repo)
        is_branch_correct = branch_name == branch
        if not is_branch_correct:
            log(
                f"Removing {repo} because branch is incorrect: current branch: {branch_name}, "
                f"expected branch: {branch}",
                "info",
            )
            shutil.rmtree(repo)

    if not is_branch_correct:
        run_command(
            ["git", "clone", "--recursive", "--single-branch", "--depth", "1",
             "--branch", branch, repository_url, directory_name],
            cwd=root,
            log=log,
        )

    run_command(["git", "reset", "--hard", "HEAD"], cwd=repo, log=log)
    run_command(["git", "clean", "-fdx"], cwd=repo, log=log)
    return repo


def apply_patches(
        repo: Union[str, pathlib.Path],
        patch_dir: Union[str, pathlib.Path],
        log: Optional[LogFunc] = None,
) -> List[str]:
    """Apply every patch file in a directory to a git checkout.

    Patches are applied in file name order; subdirectories are ignored.

    Args:
        repo: Git checkout to patch
        patch_dir: Directory containing the patch files
        log: Log function

    Returns:
        Names of the applied patches
    """
    log = log or _noop_log
    patch_dir = pathlib.Path(patch_dir)
    if not patch_dir.is_dir():
        log(f"Patch directory not found, skipping: {patch_dir}", "warning")
        return []

    applied = []
    for patch_file in sorted(p for p in patch_dir.iterdir() if p.is_file()):
        run_command(
            ["git", "apply", str(patch_file.resolve()), "--ignore-whitespace", "--recount", "--verbose"],
            cwd=repo,
            log=log,
        )
        log(f"applied {patch_file.name}", "info")
        applied.append(patch_file.name)
    return applied


@retry(
    retry=retry_if_exception_type(httpx.TransportError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)
def download_file(
        url: str,
        dest: Union[str, pathlib.Path],
        client: Optional[httpx.Client] = None,
        log: Optional[LogFunc] = None,
) -> pathlib.Path:
    """Download a URL to a file, streaming the body to disk.

    Transport errors are retried with exponential backoff; HTTP error
    statuses are not.

    Args:
        url: Location to download
        dest: Output file
        client: HTTP client to use; a temporary one is created otherwise
        log: Log function

    Returns:
        Path to the downloaded file
    """
    log = log or _noop_log
    dest = pathlib.Path(dest)
    dest.parent.mkdir(parents=True, exist_ok=True)

    owns_client = client is None
    client = client or httpx.Client(timeout=60.0, follow_redirects=True)
    try:
        log(f"Downloading {url}", "info")
        with client.stream("GET", url) as response:
            response.raise_for_status()

            total_size = int(response.headers.get("content-length", 0))
            downloaded = 0
            with open(dest, "wb") as f:
                for chunk in response.iter_bytes(chunk_size=64 * 1024):
                    f.write(chunk)
                    downloaded += len(chunk)

        log(f"Downloaded {downloaded} of {total_size or 'unknown'} bytes to {dest}", "debug")
        return dest
    finally:
        if owns_client:
            client.close()


def _strip_path(name: str, strip_components: int) -> Optional[pathlib.PurePosixPath]:
    """Drop leading components of an archive member path.

    Returns None for members that vanish after stripping.

    Raises:
        DownloadError: If the path is absolute or escapes the destination
    """
    path = pathlib.PurePosixPath(name.replace("\\", "/"))
    if path.is_absolute() or ".." in path.parts:
        raise DownloadError(f"Refusing to extract unsafe archive member: {name}")
    parts = path.parts[strip_components:]
    if not parts:
        return None
    return pathlib.PurePosixPath(*parts)


def extract_archive(
        archive: Union[str, pathlib.Path],
        dest: Union[str, pathlib.Path],
        strip_components: int = 1,
        log: Optional[LogFunc] = None,
) -> List[str]:
    """Extract a tar (any compression) or zip archive.

    Hard links are materialized as copies of their already extracted
    target. Device, FIFO and other special members are skipped with a
    warning.

    Args:
        archive: Archive file
        dest: Destination directory
        strip_components: Number of leading path components to drop
        log: Log function

    Returns:
        Relative paths of the extracted files

    Raises:
        DownloadError: If the archive contains unsafe paths or is not readable
    """
    log = log or _noop_log
    archive = pathlib.Path(archive)
    dest = pathlib.Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    extracted: List[str] = []

    if zipfile.is_zipfile(archive):
        with zipfile.ZipFile(archive) as zf:
            for info in zf.infolist():
                rel = _strip_path(info.filename, strip_components)
                if rel is None:
                    continue
                target = dest / rel
                if info.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with zf.open(info) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                extracted.append(str(rel))
        return extracted

    try:
        tf = tarfile.open(archive, "r:*")
    except tarfile.TarError as e:
        raise DownloadError(f"Unsupported archive format: {archive}") from e

    with tf:
        for member in tf:
            rel = _strip_path(member.name, strip_components)
            if rel is None:
                continue
            target = dest / rel
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
            elif member.isfile():
                target.parent.mkdir(parents=True, exist_ok=True)
                with tf.extractfile(member) as src, open(target, "wb") as dst:
                    shutil.copyfileobj(src, dst)
                os.chmod(target, member.mode & 0o777)
                extracted.append(str(rel))
            elif member.issym():
                link = pathlib.PurePosixPath(member.linkname)
                if link.is_absolute() or ".." in link.parts:
                    raise DownloadError(f"Refusing to extract unsafe symlink: {member.name} -> {member.linkname}")
                target.parent.mkdir(parents=True, exist_ok=True)
                if target.is_symlink() or target.exists():
                    target.unlink()
                os.symlink(member.linkname, target)
                extracted.append(str(rel))
            elif member.islnk():
                link_rel = _strip_path(member.linkname, strip_components)
                source = dest / link_rel if link_rel is not None else None
                if source is None or not source.is_file():
                    raise DownloadError(
                        f"Hard link {member.name} points to a file that was not extracted: {member.linkname}"
                    )
                target.parent.mkdir(parents=True, exist_ok=True)
                if target.is_symlink() or target.exists():
                    target.unlink()
                shutil.copy2(source, target)
                extracted.append(str(rel))
            else:
                log(f"Skipping unsupported archive member {member.name} (type {member.type!r})", "warning")
    return extracted


def fetch_sdk(
        url: str,
        dest: Union[str, pathlib.Path],
        download_dir: Union[str, pathlib.Path],
        client: Optional[httpx.Client] = None,
        log: Optional[LogFunc] = None,
) -> pathlib.Path:
    """Download and unpack an SDK archive unless it is already present.

    A non-empty ``dest`` directory is reused as is; an empty one is
    replaced.

    Args:
        url: Archive location
        dest: Directory receiving the unpacked SDK
        download_dir: Directory for the downloaded archive
        client: HTTP client
        log: Log function

    Returns:
        Path to the unpacked SDK

    Raises:
        DownloadError: If the download or extraction fails
    """
    log = log or _noop_log
    dest = pathlib.Path(dest)

    if dest.is_dir() and any(dest.iterdir()):
        log(f"Reusing existing SDK at {dest}", "info")
        return dest
    if dest.exists():
        shutil.rmtree(dest)

    archive_name = pathlib.PurePosixPath(urlparse(url).path).name or "sdk-archive"
    archive_path = pathlib.Path(download_dir) / archive_name

    try:
        download_file(url, archive_path, client=client, log=log)
    except httpx.HTTPError as e:
        raise DownloadError(f"Failed to download {url}: {e}", url=url) from e

    files = extract_archive(archive_path, dest, strip_components=1, log=log)
    log(f"Unpacked {len(files)} files into {dest}", "info")
    return dest
