"""Masking of infrastructure details in tool output.

Only output is masked; connections always use the configured values.
"""

import re
from typing import Optional

_IPV4 = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")


def mask_host(host: Optional[str]) -> Optional[str]:
    """Hide the host-specific part of a hostname.

    Examples:
        ``my-db.abc.us-east-1.rds.amazonaws.com`` -> ``***.rds.amazonaws.com``
        ``192.168.1.100`` -> ``***.***.***.***``
        ``localhost`` -> ``localhost``
    """
    if not host:
        return host
    if host in ("localhost", "127.0.0.1") or "." not in host:
        return host

    if ".amazonaws.com" in host:
        parts = host.split(".")
        aws_index = parts.index("amazonaws") if "amazonaws" in parts else -1
        if aws_index > 0:
            return "***." + ".".join(parts[aws_index - 1 :])
        return "***.amazonaws.com"

    if ".database.windows.net" in host:
        return "***.database.windows.net"
    if ".azure.com" in host:
        return "***.azure.com"
    if ".cloudsql." in host or ".googleapis.com" in host:
        return "***.googleapis.com"

    if _IPV4.match(host):
        return "***.***.***.***"

    return "***." + ".".join(host.split(".")[-2:])
