import logging
import subprocess
from pathlib import Path

from .constants import APP_NAME, NPM_EXECUTABLE

logger = logging.getLogger(APP_NAME)


class NpmError(RuntimeError):
    """An npm command finished with a non-zero status.

    Attributes:
        command (str): The npm subcommand that failed (e.g. 'install').
        returncode (int): The process exit status.
        output (str): Combined stdout/stderr captured from the process.
    """

    def __init__(self, command: str, returncode: int, output: str):
        self.command = command
        self.returncode = returncode
        self.output = output
        super().__init__(f"npm {command} failed with exit code {returncode}")


class Npm:
    """Runs package-manager commands inside a project directory.

    Attributes:
        cwd (Path): The project directory containing `package.json`.
        executable (str): The npm binary to invoke.
    """

    def __init__(self, cwd: Path, executable: str = NPM_EXECUTABLE):
        self.cwd = cwd
        self.executable = executable

    def _run(self, args: list[str]) -> str:
        """Executes an npm command and returns its captured output.

        Args:
            args (list[str]): Arguments after the executable name.

        Returns:
            str: Combined stdout and stderr, stripped.

        Raises:
            NpmError: If the command exits with a non-zero status.
        """
        cmd = [self.executable, *args]
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            res = subprocess.run(
                cmd,
                cwd=self.cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
        except FileNotFoundError as e:
            raise NpmError(args[0], 127, str(e)) from e

        output = res.stdout.strip() if res.stdout else ""
        if res.returncode != 0:
            logger.error(f"npm {args[0]} failed (exit {res.returncode}):\n{output}")
            raise NpmError(args[0], res.returncode, output)
        if output:
            logger.debug(output)
        return output

    def install(self, ignore_scripts: bool = False, production: bool = False) -> None:
        """Runs `npm install`.

        Args:
            ignore_scripts (bool): Skip lifecycle scripts (native builds are
                then left to an explicit rebuild).
            production (bool): Install runtime dependencies only.
        """
        args = ["install"]
        if ignore_scripts:
            args.append("--ignore-scripts")
        if production:
            args.append("--production")
        logger.info(f"Running npm {' '.join(args)}")
        self._run(args)

    def rebuild(self, packages: list[str]) -> None:
        """Rebuilds native artifacts of the given packages."""
        if not packages:
            return
        self._run(["rebuild", *packages])

    def run_script(self, name: str) -> None:
        """Runs a named script declared in the manifest."""
        logger.info(f"Running npm script '{name}'")
        self._run(["run", name])

    def version(self) -> str:
        """Returns the npm version string.

        Warnings npm prints before the version (e.g. about deprecated config)
        share the captured output, so only the last line is kept.
        """
        lines = self._run(["--version"]).strip().splitlines()
        return lines[-1].strip() if lines else ""
