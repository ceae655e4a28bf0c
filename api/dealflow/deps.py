from functools import lru_cache

from fastapi import Depends

from .docusign import DocusignClient, get_docusign
from .poller import CompletionPoller, PollGuard
from .signing import SigningSessionManager


@lru_cache()
def get_poll_guard() -> PollGuard:
    # One guard per process, shared by every request
    return PollGuard()


def get_signing_manager(client: DocusignClient = Depends(get_docusign)) -> SigningSessionManager:
    return SigningSessionManager(client)


def get_poller(
    client: DocusignClient = Depends(get_docusign),
    guard: PollGuard = Depends(get_poll_guard),
) -> CompletionPoller:
    return CompletionPoller(client, guard)
