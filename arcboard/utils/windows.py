import platform
import re
import socket
import subprocess
from typing import Iterator, List, Optional

from nornir.core.task import Task, Result

from arcboard.core.errors import ServiceQueryError

POWERSHELL = "powershell.exe"

# 'sc.exe query' exit code when the service does not exist
ERROR_SERVICE_DOES_NOT_EXIST = 1060


# --- CORE EXECUTION ---

def run_command(task: Task, cmd: List[str], timeout: Optional[float] = None) -> Result:
    """
    Runs a local command and blocks until it exits.

    Returns:
        Result: output in 'result' (stderr appended on failure), plus
        'stdout', 'stderr' and 'returncode' attributes.
    """
    try:
        proc = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            universal_newlines=True,
            timeout=timeout,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        return Result(
            host=task.host,
            failed=True,
            result=f"Local execution exception: {str(e)}",
            returncode=None,
        )

    output = proc.stdout
    if proc.returncode != 0 and proc.stderr:
        output += f"\nError: {proc.stderr}"

    return Result(
        host=task.host,
        result=output,
        failed=proc.returncode != 0,
        stdout=proc.stdout,
        stderr=proc.stderr,
        returncode=proc.returncode,
    )


def powershell(task: Task, script: str, timeout: Optional[float] = None) -> Result:
    """Runs an inline Windows PowerShell script."""
    cmd = [POWERSHELL, "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-Command", script]
    return run_command(task, cmd, timeout=timeout)


class StreamedCommand:
    """
    Context manager around a long-running command whose combined output is
    consumed line by line while it is still running.
    On exit, waits up to 'wait_timeout' seconds for the process, then kills it.
    """

    def __init__(self, cmd: List[str], wait_timeout: float = 30.0):
        self.cmd = cmd
        self.wait_timeout = wait_timeout
        self.proc: Optional[subprocess.Popen] = None

    def __enter__(self):
        self.proc = subprocess.Popen(
            self.cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            universal_newlines=True,
            bufsize=1,
        )
        return self

    def lines(self) -> Iterator[str]:
        for line in self.proc.stdout:
            yield line.rstrip("\r\n")

    def __exit__(self, exc_type, exc_value, traceback):
        try:
            self.proc.wait(timeout=self.wait_timeout)
        except subprocess.TimeoutExpired:
            self.proc.kill()
            self.proc.wait()
        finally:
            if self.proc.stdout:
                self.proc.stdout.close()
        return False


# --- SYSTEM FACTS ---

def get_os_build() -> Optional[int]:
    """Returns the Windows build number (e.g. 19045), None if it can't be read."""
    version = platform.version()  # '10.0.19045' on Windows
    parts = version.split(".")
    try:
        return int(parts[-1])
    except (ValueError, IndexError):
        return None


def get_powershell_version(task: Task) -> Optional[str]:
    res = powershell(task, "$PSVersionTable.PSVersion.ToString()")
    if res.failed:
        return None
    version = res.result.strip()
    return version or None


def version_tuple(version: str) -> tuple:
    """'5.1.19041.1' -> (5, 1, 19041, 1). Non numeric parts are dropped."""
    return tuple(int(p) for p in re.findall(r"\d+", version))


def tcp_probe(host: str, port: int, timeout: float) -> Optional[str]:
    """Opens and closes a TCP connection. Returns None on success, the error text otherwise."""
    try:
        with socket.create_connection((host, port), timeout=timeout):
            return None
    except OSError as e:
        return str(e) or e.__class__.__name__


# --- SYSTEM SERVICES ---

def service_state(task: Task, service: str) -> Optional[str]:
    """
    Queries the service manager.
    Returns the state name ('RUNNING', 'STOPPED', 'START_PENDING', ...)
    or None if the service does not exist.
    Any other failure raises ServiceQueryError: it says nothing about the service.
    """
    res = run_command(task, ["sc.exe", "query", service])
    if getattr(res, "returncode", None) == ERROR_SERVICE_DOES_NOT_EXIST:
        return None
    if res.failed:
        raise ServiceQueryError(f"sc.exe query {service} failed: {res.result.strip()}")

    # "        STATE              : 4  RUNNING"
    match = re.search(r"STATE\s*:\s*\d+\s+(\w+)", res.result)
    if not match:
        raise ServiceQueryError(f"No STATE in sc.exe output for {service}")
    return match.group(1).upper()


# --- INSTALLER ---

def msiexec(task: Task, args: List[str]) -> Result:
    """Runs msiexec and waits for it. The exit code is in 'returncode'."""
    return run_command(task, ["msiexec.exe"] + args)


def find_product_code(task: Task, product_name: str) -> Optional[str]:
    """Looks up the MSI product code of an installed product by display name."""
    script = (
        f"Get-CimInstance -ClassName Win32_Product -Filter \"Name='{product_name}'\" "
        "| Select-Object -First 1 -ExpandProperty IdentifyingNumber"
    )
    res = powershell(task, script)
    if res.failed:
        return None
    code = res.result.strip()
    return code or None
