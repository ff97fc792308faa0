"""Identity providers for prepsim.

Authentication lives outside this package. The engine only needs the
current session's user id, or None when nobody is signed in.
"""

import os
from typing import Optional, Protocol


class IdentityProvider(Protocol):
    """Source of the current session's user id."""

    def current_user_id(self) -> Optional[str]: ...


class StaticIdentity:
    """Identity fixed at construction (CLI flag, tests)."""

    def __init__(self, user_id: Optional[str]) -> None:
        self._user_id = user_id or None

    def current_user_id(self) -> Optional[str]:
        return self._user_id


class EnvironmentIdentity:
    """Identity read from the PREPSIM_USER_ID environment variable."""

    ENV_VAR = "PREPSIM_USER_ID"

    def current_user_id(self) -> Optional[str]:
        return os.environ.get(self.ENV_VAR) or None
