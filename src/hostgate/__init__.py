"""
hostgate - Policy-gated host access for sandboxed agents.

hostgate sits between a sandboxed agent and the host machine. It provides:
- Outbound HTTP fetches and CLI executions gated by domain/command
  allow/block lists with an explicit approval workflow
- Built-in SSRF and dangerous-command blocklists that cannot be bypassed
- Per-target sliding-window rate limiting
- Temporary file exposure over a local HTTP server and an ingress tunnel

Example usage:
    $ hostgate fetch https://api.github.com/users/octocat --approve once
    $ hostgate exec yt-dlp -- --version
    $ hostgate serve ./render.mp4
"""

__version__ = "0.1.0"
__author__ = "hostgate Contributors"

__all__ = [
    "__version__",
    "__author__",
]
