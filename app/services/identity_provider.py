from typing import Protocol

from fastapi import Request

from app.services.role_resolver import ExternalIdentity


class IdentityProvider(Protocol):
    def verify(self, request: Request) -> ExternalIdentity | None:
        """Return the verified identity carried by ``request``, or ``None``."""


class TrustedHeaderIdentityProvider:
    """Reads the identity an upstream OAuth proxy has already verified.

    The proxy must strip these headers from client traffic; this service never
    sees the OAuth exchange itself.
    """

    def __init__(self, email_header: str, subject_header: str) -> None:
        self.email_header = email_header
        self.subject_header = subject_header

    def verify(self, request: Request) -> ExternalIdentity | None:
        email = (request.headers.get(self.email_header) or "").strip()
        subject_id = (request.headers.get(self.subject_header) or "").strip()
        if not email or not subject_id:
            return None
        return ExternalIdentity(subject_id=subject_id, email=email)
