"""Host facts for the system-info command."""

import getpass
import logging
import os
import platform
import socket
from datetime import datetime
from typing import List

import psutil
import requests

from .config import AgentContext

logger = logging.getLogger(__name__)

PUBLIC_IP_URL = "https://checkip.amazonaws.com"
LINE_BREAK = "<br/>\n"


def local_ipv4_addresses() -> List[str]:
    addresses = []
    for addrs in psutil.net_if_addrs().values():
        for addr in addrs:
            if addr.family == socket.AF_INET and not addr.address.startswith("127."):
                addresses.append(addr.address)
    return addresses


def public_ip(session=None, timeout: float = 5) -> str:
    getter = session.get if session is not None else requests.get
    try:
        resp = getter(PUBLIC_IP_URL, timeout=timeout)
        resp.raise_for_status()
        return resp.text.strip()
    except requests.RequestException as e:
        logger.warning(f"Public IP lookup failed: {e}")
        return "unavailable"


def open_applications() -> List[str]:
    """Names of processes owned by the current user, deduplicated."""
    user = getpass.getuser()
    names = set()
    for proc in psutil.process_iter(["name", "username"]):
        try:
            owner = (proc.info.get("username") or "").split("\\")[-1]
            if owner == user and proc.info.get("name"):
                names.add(proc.info["name"])
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return sorted(names)


def gather_system_info(ctx: AgentContext, session=None) -> str:
    """
    Build the report sent back for a system-info command.
    Each fact is one line; lines end in <br/> so the server's web view renders them.
    """
    lines = [
        f"Computer ID: {ctx.computer_id}",
        f"MTB2 version: {ctx.version.version_string}",
        f"Computer name: {socket.gethostname()}",
        f"Username: {getpass.getuser()}",
        f"Current local ips (IPv4): {', '.join(local_ipv4_addresses())}",
        f"Public ip: {public_ip(session)}",
        f"OS version: {platform.version()}",
        f"OS: {platform.platform()}",
        f"Processor count: {os.cpu_count()}",
        f"Memory usage: {psutil.virtual_memory().percent}%",
        f"Uptime seconds: {int(datetime.now().timestamp() - psutil.boot_time())}",
        f"Current directory: {os.getcwd()}",
        f"Current open applications: {', '.join(open_applications())}",
        f"Time: {datetime.now().isoformat(sep=' ', timespec='seconds')}",
    ]
    return "System info:" + LINE_BREAK + LINE_BREAK + LINE_BREAK.join(lines) + LINE_BREAK
