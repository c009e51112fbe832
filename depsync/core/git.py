"""
Git checkouts for VCS requirements.

Repositories are cloned with the ``git`` executable into the cache
directory. Credentials cached in the
:class:`~depsync.core.credentials.CredentialStore` are replayed into the
clone URL; they never appear in logs or error messages.
"""

from __future__ import annotations

import os
import re
import shutil
import asyncio
import hashlib
from pathlib import Path
from typing import List, Optional

from depsync.utils.logger import get_logger
from depsync.exceptions import ResolutionError
from depsync.core.credentials import (
    CredentialStore,
    normalize_repository_url,
    redact_credentials,
)

logger = get_logger("git")

_FULL_COMMIT = re.compile(r"^[0-9a-f]{40}$")


class GitFetcher:
    """Clone repositories and check out a reference.

    Args:
        cache_dir: Directory under which checkouts are kept.
        credentials: Store consulted for repository credentials.
        executable: Name or path of the ``git`` executable.
    """

    def __init__(
        self,
        cache_dir: Path,
        credentials: CredentialStore,
        *,
        executable: str = "git",
    ) -> None:
        self.cache_dir = cache_dir
        self.credentials = credentials
        self.executable = executable

    def checkout_path(self, repository: str, reference: Optional[str]) -> Path:
        key = f"{normalize_repository_url(repository)}@{reference or 'HEAD'}"
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]
        return self.cache_dir / "git" / digest

    async def fetch(self, repository: str, reference: Optional[str]) -> Path:
        """Return a checkout of ``repository`` at ``reference``.

        Checkouts of a full commit hash are reused across invocations;
        branches and tags are cloned again so they reflect the remote.
        """
        target = self.checkout_path(repository, reference)
        if target.joinpath(".git").is_dir() and reference and _FULL_COMMIT.match(reference):
            logger.debug("Reusing checkout of %s at %s", redact_credentials(repository), reference)
            return target

        if target.exists():
            await asyncio.to_thread(shutil.rmtree, target)
        target.parent.mkdir(parents=True, exist_ok=True)

        url = repository
        credentials = self.credentials.get(repository)
        if credentials is not None:
            url = credentials.apply_to_url(repository)

        logger.info("Cloning %s", redact_credentials(repository))
        await self._run(["clone", "--quiet", "--filter=blob:none", url, str(target)], repository)
        if reference:
            await self._run(
                ["-C", str(target), "checkout", "--quiet", reference],
                repository,
            )
        return target

    async def _run(self, args: List[str], repository: str) -> None:
        env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
        command = [self.executable, *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as exc:
            raise ResolutionError(
                f"Git executable not found: {self.executable}",
                locator=redact_credentials(repository),
            ) from exc

        _, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace")
            for arg in args:
                if "@" in arg and "://" in arg:
                    message = message.replace(arg, redact_credentials(arg))
            raise ResolutionError(
                f"git {args[0] if args[0] != '-C' else args[2]} failed: {message.strip()}",
                locator=redact_credentials(repository),
            )
