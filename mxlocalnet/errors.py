"""Exception hierarchy shared by the mxlocalnet modules."""

from __future__ import annotations


class MxLocalnetError(Exception):
    """Base class for failures the CLI reports and turns into exit code 1."""


class TemplateError(MxLocalnetError):
    """Raised when a configuration template is missing or invalid."""


class LocalnetError(MxLocalnetError):
    """Raised when the localnet cannot be set up, started or stopped."""


class ProxyError(MxLocalnetError):
    """Raised when the MultiversX proxy is unreachable or returns an error."""


class MxpyError(MxLocalnetError):
    """Raised when an mxpy invocation exits with a non-zero code."""

    def __init__(self, cmd, returncode: int, stderr: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"{' '.join(self.cmd)} exited with code {returncode}{detail}")


class FaucetError(MxLocalnetError):
    """Raised when the faucet cannot be reached."""


class BackupError(MxLocalnetError):
    """Raised when a backup operation fails."""


class ScanError(MxLocalnetError):
    """Raised when a security scanner cannot be run."""


class StackError(MxLocalnetError):
    """Raised when the docker compose monitoring stack fails."""


class ToolchainError(MxLocalnetError):
    """Raised when an external tool cannot be installed."""


class DevopsError(MxLocalnetError):
    """Raised when terraform or docker glue fails."""


class ScMetaError(ToolchainError):
    """Raised when an sc-meta invocation exits with a non-zero code."""

    def __init__(self, cmd, returncode: int, stderr: str = ""):
        self.cmd = list(cmd)
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"sc-meta failed ({' '.join(self.cmd)} exited with code {returncode}){detail}")


class SimulatorError(MxLocalnetError):
    """Raised when the chain simulator or one of its scenarios fails."""
