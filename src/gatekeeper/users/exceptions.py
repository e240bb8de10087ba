from __future__ import annotations

from gatekeeper.commons.exceptions import BaseServiceException


class UsersServiceException(BaseServiceException):
    pass
