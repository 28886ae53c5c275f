"""CDN cache purge integrations."""

from .cloudflare import CloudflareCdnService

__all__ = ["CloudflareCdnService"]
