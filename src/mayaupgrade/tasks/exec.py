import json
import shlex
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from kubernetes import client
from kubernetes.stream import stream


@dataclass
class ExecResult:
    """
    Output of a command run inside a pod, similar to subprocess.CompletedProcess.
    """

    stdout: str
    stderr: str
    returncode: int

    def to_dict(self) -> Dict[str, Any]:
        return {"stdout": self.stdout, "stderr": self.stderr, "returncode": self.returncode}


def _exit_code(error: str) -> int:
    """Reads the exit code from the status document sent on the error channel."""
    if not error:
        return 0
    status = json.loads(error)
    if status.get("status") != "Failure":
        return 0
    for cause in status.get("details", {}).get("causes", []):
        if cause.get("reason") == "ExitCode":
            return int(cause.get("message", 1))
    return 1


def exec_in_pod(
    core_v1: client.CoreV1Api,
    pod: str,
    namespace: str,
    command: Union[str, List[str]],
    container: Optional[str] = None,
) -> ExecResult:
    """
    Runs ``command`` in a pod and collects its output.

    A string command is split like a shell would, without running a shell.
    """
    exec_command = shlex.split(command) if isinstance(command, str) else list(command)
    kwargs: Dict[str, Any] = {}
    if container:
        kwargs["container"] = container

    api_response = stream(
        core_v1.connect_get_namespaced_pod_exec,
        pod,
        namespace,
        command=exec_command,
        stderr=True,
        stdin=False,
        stdout=True,
        tty=False,
        _preload_content=False,
        **kwargs,
    )

    stdout = ""
    stderr = ""
    error = ""
    while api_response.is_open():
        api_response.update(timeout=1)
        if api_response.peek_stdout():
            stdout += api_response.read_stdout()
        if api_response.peek_stderr():
            stderr += api_response.read_stderr()
        if api_response.peek_channel(3):
            error += api_response.read_channel(3)

    api_response.close()

    return ExecResult(stdout=stdout, stderr=stderr, returncode=_exit_code(error))
