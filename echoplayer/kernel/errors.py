"""
Error taxonomy for acquisition, bootstrap and sidecar supervision.

Every error carries a stable `code` so results and API responses can report
failures as identifiers rather than prose.
"""
from typing import Optional


class EchoPlayerError(Exception):
    code = "error"

    def __init__(self, message: str = "", *, code: Optional[str] = None):
        super().__init__(message or self.code)
        if code:
            self.code = code


class UnsupportedPlatformError(EchoPlayerError):
    code = "unsupported_platform"


# ---------------------------------------------------------------------
# Acquisition
# ---------------------------------------------------------------------

class AcquisitionError(EchoPlayerError):
    code = "acquisition_failed"


class NetworkError(AcquisitionError):
    code = "network_failure"


class HttpStatusError(NetworkError):
    code = "http_status"

    def __init__(self, status_code: int, url: str = ""):
        super().__init__(f"HTTP {status_code}" + (f" for {url}" if url else ""))
        self.status_code = status_code
        self.url = url


class TooManyRedirectsError(NetworkError):
    code = "too_many_redirects"


class ExtractionError(AcquisitionError):
    code = "extraction_failure"


class ChecksumMismatchError(AcquisitionError):
    code = "checksum_mismatch"


class DownloadCancelledError(AcquisitionError):
    code = "cancelled"


class ConcurrentOperationError(AcquisitionError):
    code = "concurrent_operation_rejected"


# ---------------------------------------------------------------------
# Environment bootstrap
# ---------------------------------------------------------------------

class BootstrapError(EchoPlayerError):
    code = "bootstrap_failed"


class CommandError(BootstrapError):
    code = "command_failed"

    def __init__(self, args: list[str], returncode: int, output: str = ""):
        super().__init__(f"{' '.join(args)} exited with {returncode}")
        self.command = list(args)
        self.returncode = returncode
        self.output = output


# ---------------------------------------------------------------------
# Sidecar supervision
# ---------------------------------------------------------------------

class SidecarError(EchoPlayerError):
    code = "sidecar_failed"


class PreconditionError(SidecarError):
    code = "precondition_failed"


class PortExhaustionError(SidecarError):
    code = "port_exhaustion"


class LaunchError(SidecarError):
    code = "launch_failure"


class StartupTimeoutError(SidecarError):
    code = "startup_timeout"


class CrashLoopError(SidecarError):
    code = "crash_loop"
