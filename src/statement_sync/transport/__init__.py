"""Socket transport shared by the mail protocol clients."""

from .session import LineSession, tls_connect

__all__ = ["LineSession", "tls_connect"]
