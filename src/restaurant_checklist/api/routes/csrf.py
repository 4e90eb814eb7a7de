"""CSRF token issuance."""

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends

from restaurant_checklist.api.deps import (
    Identity,
    get_csrf_codec,
    get_identity,
)
from restaurant_checklist.api.schemas import CsrfTokenData, CsrfTokenResponse
from restaurant_checklist.errors import AuthenticationRequiredError
from restaurant_checklist.security.csrf import CsrfTokenCodec

logger = structlog.get_logger()

router = APIRouter(tags=["csrf"])

IdentityDep = Annotated[Identity | None, Depends(get_identity)]
CodecDep = Annotated[CsrfTokenCodec, Depends(get_csrf_codec)]


@router.get("/csrf")
async def issue_csrf_token(identity: IdentityDep, codec: CodecDep) -> CsrfTokenResponse:
    """Mint a token bound to the caller's session.

    Clients send it back as ``X-CSRF-Token`` on POST/PUT/PATCH/DELETE
    and fetch a new one after a 403 whose error mentions CSRF.
    """
    if identity is None:
        raise AuthenticationRequiredError()

    binding = codec.session_binding(identity.session_token, identity.user_id)
    token = codec.issue(binding)
    logger.debug("csrf_token_issued", user_id=identity.user_id)
    return CsrfTokenResponse(data=CsrfTokenData(csrf_token=token))
