"""
Common utilities for the build pipeline tools.

Modules:
- console: colored status logging ([INFO]/[WARN]/[ERROR]/[SUCCESS])
- env: environment, .env and project-config.sh loading
- aws: boto3 session/client construction honoring AWS_PROFILE
- downloads: httpx downloader with retry/backoff
- proc: thin wrappers around external commands
- checks: pass/warn/fail check reports for the verifier tools
"""

__all__ = [
    "aws",
    "checks",
    "console",
    "downloads",
    "env",
    "proc",
]
