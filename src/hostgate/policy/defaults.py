"""
Built-in security blocklists.

These baselines are merged into every loaded policy and can never be removed
by user action. Domain entries cover loopback, link-local, cloud metadata and
private ranges (SSRF targets). Command entries cover destructive file
operations, privilege escalation, shells and process control.
"""

DEFAULT_BLOCKED_DOMAINS: tuple[str, ...] = (
    # Localhost variants
    "localhost",
    "127.0.0.1",
    "127.*",
    "0.0.0.0",
    "::1",
    "[::1]",
    # Cloud metadata endpoint
    "169.254.169.254",
    # Link-local
    "169.254.*",
    # Private Class A
    "10.*",
    # Private Class B, 172.16.0.0 to 172.31.255.255
    "172.16.*",
    "172.17.*",
    "172.18.*",
    "172.19.*",
    "172.20.*",
    "172.21.*",
    "172.22.*",
    "172.23.*",
    "172.24.*",
    "172.25.*",
    "172.26.*",
    "172.27.*",
    "172.28.*",
    "172.29.*",
    "172.30.*",
    "172.31.*",
    # Private Class C
    "192.168.*",
    # Docker bridge
    "172.17.0.*",
    # Kubernetes internal
    "10.0.0.*",
    "10.96.*",
    # IPv6 link-local
    "fe80:*",
    "[fe80:*",
    # IPv6 unique local
    "fc00:*",
    "[fc00:*",
    "fd00:*",
    "[fd00:*",
    # IPv4-mapped IPv6 (bypasses IPv4 patterns otherwise)
    "::ffff:*",
    "[::ffff:*",
)

DEFAULT_BLOCKED_COMMANDS: tuple[str, ...] = (
    # Destructive file operations
    "rm",
    "rmdir",
    "del",
    # Privilege escalation
    "sudo",
    "su",
    "doas",
    # Permission changes
    "chmod",
    "chown",
    "chgrp",
    # Can overwrite files
    "mv",
    # System modification
    "mkfs",
    "fdisk",
    "dd",
    "format",
    # Package managers
    "apt-get",
    "apt",
    "yum",
    "dnf",
    "pacman",
    "brew",
    # Shells
    "bash",
    "sh",
    "zsh",
    "fish",
    "csh",
    "tcsh",
    # Raw network tools
    "nc",
    "netcat",
    "ncat",
    "telnet",
    # Credentials
    "passwd",
    # Process control
    "kill",
    "killall",
    "pkill",
)
