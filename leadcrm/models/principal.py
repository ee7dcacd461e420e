from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity handed to us by the identity provider.

    Carried through the request via FastAPI's dependency system. This
    service never authenticates; it only authorizes what a Principal may
    do inside an organization.

        user_id: opaque subject identifier from the provider
        email: verified address, normalized (stripped, lowercased)
    """

    user_id: str
    email: str

    @staticmethod
    def of(user_id: str, email: str) -> Principal:
        return Principal(user_id=user_id, email=normalize_email(email))


def normalize_email(email: str) -> str:
    return email.strip().lower()
