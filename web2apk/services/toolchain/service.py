"""
Toolchain Invoker.

Runs the project's build driver and the artifact signer as child processes,
streaming their output into the log and enforcing hard timeouts.
"""

from __future__ import annotations

import asyncio
import os
import shutil
from collections import deque
from pathlib import Path

from ...core.config import SigningConfig, ToolchainConfig
from ...core.exceptions import ToolchainError, ToolNotFoundError
from ...core.logging import get_logger
from ..materializer.template import UNSIGNED_ARTIFACT_PATH

logger = get_logger(__name__)

# Lines of stderr kept for the failure message
OUTPUT_TAIL_LINES = 20

KEYSTORE_PASS_ENV = "WEB2APK_KS_PASS"
KEY_PASS_ENV = "WEB2APK_KEY_PASS"


class ToolchainInvoker:
    """Compiles a materialized project and signs the resulting artifact."""

    def __init__(self, config: ToolchainConfig, signing: SigningConfig | None = None) -> None:
        self.config = config
        self.signing = signing or SigningConfig()

    def _build_env(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        env = dict(os.environ)
        env["ANDROID_SDK_ROOT"] = str(self.config.android_sdk_root)
        env["ANDROID_HOME"] = str(self.config.android_sdk_root)
        env["JAVA_HOME"] = str(self.config.java_home)
        if extra:
            env.update(extra)
        return env

    async def _run_command(
        self,
        cmd: list[str],
        *,
        tool_name: str,
        timeout_ms: int,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
    ) -> tuple[int, str]:
        """Run a command, logging output line by line.

        Returns:
            Exit code and the tail of stderr.

        Raises:
            ToolchainError: If the command cannot start or exceeds ``timeout_ms``
        """
        logger.info("Running command", tool=tool_name, command=" ".join(cmd), cwd=str(cwd) if cwd else None)

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
            )
        except OSError as e:
            raise ToolchainError(
                message=f"Cannot start {tool_name}: {e}", tool_name=tool_name, cause=e
            )

        stderr_tail: deque[str] = deque(maxlen=OUTPUT_TAIL_LINES)

        async def read_stream(stream: asyncio.StreamReader, stream_name: str) -> None:
            while True:
                line = await stream.readline()
                if not line:
                    break
                decoded = line.decode("utf-8", errors="replace").rstrip()
                if stream_name == "stderr":
                    stderr_tail.append(decoded)
                logger.debug(f"[{tool_name}:{stream_name}] {decoded}")

        async def drain() -> int:
            await asyncio.gather(
                read_stream(process.stdout, "stdout"),  # type: ignore
                read_stream(process.stderr, "stderr"),  # type: ignore
            )
            return await process.wait()

        try:
            returncode = await asyncio.wait_for(drain(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            await self._kill(process)
            raise ToolchainError(
                message=f"{tool_name} timed out after {timeout_ms}ms",
                tool_name=tool_name,
                output_tail="\n".join(stderr_tail),
            )
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        logger.info("Command completed", tool=tool_name, returncode=returncode)
        return returncode, "\n".join(stderr_tail)

    @staticmethod
    async def _kill(process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            return
        await process.wait()

    async def compile(self, workspace: Path) -> Path:
        """Run the release build in ``workspace``.

        Returns:
            Path of the unsigned release artifact.
        """
        driver = workspace / self.config.driver_name
        if not driver.exists():
            raise ToolNotFoundError(
                message="Build driver missing from project",
                tool_name=self.config.driver_name,
                expected_path=str(driver),
                install_hint="Check that the template ships its build driver",
            )
        driver.chmod(0o755)

        returncode, tail = await self._run_command(
            [str(driver), *self.config.build_tasks],
            tool_name=self.config.driver_name,
            timeout_ms=self.config.compile_timeout_ms,
            cwd=workspace,
            env=self._build_env(),
        )
        if returncode != 0:
            raise ToolchainError(
                message=f"Build failed with exit code {returncode}: {tail[-500:]}",
                tool_name=self.config.driver_name,
                returncode=returncode,
                output_tail=tail,
            )

        artifact = workspace / UNSIGNED_ARTIFACT_PATH
        if not artifact.exists():
            raise ToolchainError(
                message="APK not found after build",
                tool_name=self.config.driver_name,
                returncode=returncode,
                context={"expected": str(artifact)},
            )
        logger.info("Project compiled", artifact=str(artifact), size=artifact.stat().st_size)
        return artifact

    def _find_apksigner(self) -> Path:
        """Locate apksigner: configured path, SDK build-tools, then PATH."""
        if self.config.apksigner_path and self.config.apksigner_path.exists():
            return self.config.apksigner_path

        bundled = (
            self.config.android_sdk_root / "build-tools" / self.config.build_tools_version / "apksigner"
        )
        if bundled.exists():
            return bundled

        found = shutil.which("apksigner")
        if found:
            return Path(found)

        raise ToolNotFoundError(
            message="Tool not found: apksigner",
            tool_name="apksigner",
            expected_path=str(bundled),
            install_hint=f"Install Android build-tools {self.config.build_tools_version}",
        )

    async def sign(self, artifact: Path, destination: Path) -> Path:
        """Sign ``artifact`` into ``destination``.

        Without configured credentials the artifact is returned unsigned.
        """
        if not self.signing.configured:
            logger.warning("Signing credentials not configured, publishing unsigned APK")
            return artifact

        apksigner = self._find_apksigner()
        destination.parent.mkdir(parents=True, exist_ok=True)

        cmd = [
            str(apksigner),
            "sign",
            "--ks", str(self.signing.keystore_path),
            "--ks-key-alias", str(self.signing.key_alias),
            "--ks-pass", f"env:{KEYSTORE_PASS_ENV}",
            "--key-pass", f"env:{KEY_PASS_ENV}",
            "--out", str(destination),
            str(artifact),
        ]
        # Passwords travel through the environment, never the command line
        env = self._build_env({
            KEYSTORE_PASS_ENV: self.signing.keystore_password.get_secret_value(),  # type: ignore
            KEY_PASS_ENV: self.signing.key_password.get_secret_value(),  # type: ignore
        })

        returncode, tail = await self._run_command(
            cmd,
            tool_name="apksigner",
            timeout_ms=self.config.sign_timeout_ms,
            env=env,
        )
        if returncode != 0 or not destination.exists():
            raise ToolchainError(
                message=f"Signing failed with exit code {returncode}: {tail[-500:]}",
                tool_name="apksigner",
                returncode=returncode,
                output_tail=tail,
            )
        logger.info("APK signed", artifact=str(destination))
        return destination
