from __future__ import annotations

import asyncio
import datetime as dt

import pytest  # type: ignore[import-not-found]

from gatekeeper.auth.exceptions import AuthServiceException
from gatekeeper.auth.memory import MemorySessionRepository, MemoryUserRepository
from gatekeeper.auth.models import OAuthProvider
from gatekeeper.auth.service import AuthService
from gatekeeper.auth.tokens import TokenIssuer
from gatekeeper.commons.exceptions import ErrorKind

pytestmark = pytest.mark.anyio

EMAIL = "alice@example.com"
PASSWORD = "Password123"
LAPTOP = "Mozilla/5.0 (X11; Linux x86_64) Firefox/128.0"
PHONE = "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0) Safari/604.1"


async def _register(svc: AuthService, email: str = EMAIL) -> None:
    await svc.register(email=email, name="Alice", password=PASSWORD)


async def _login(svc: AuthService, ua: str = LAPTOP, **kw):  # type: ignore[no-untyped-def]
    kw.setdefault("remember_me", True)
    kw.setdefault("ip", "192.168.1.10")
    return await svc.login(email=EMAIL, password=PASSWORD, device_info=ua, **kw)


async def test_register_then_login_authenticates(auth_service: AuthService) -> None:
    user = await auth_service.register(
        email="Alice@Example.com ", name=" Alice ", password=PASSWORD
    )
    assert user.email == EMAIL
    assert user.name == "Alice"
    assert user.password_hash != PASSWORD

    result = await _login(auth_service)
    identity = await auth_service.authenticate(result.access_token)
    assert identity.user_id == user.id
    assert identity.email == EMAIL
    assert result.user.last_login_at is not None


async def test_register_does_not_open_a_session(auth_service: AuthService) -> None:
    await _register(auth_service)
    user = await auth_service.users.get_by_email(EMAIL)
    assert user is not None
    assert await auth_service.list_sessions(user.id) == []


async def test_duplicate_email_is_rejected_case_insensitively(
    auth_service: AuthService,
) -> None:
    await _register(auth_service)
    with pytest.raises(AuthServiceException) as ei:
        await _register(auth_service, email="ALICE@example.com")
    assert ei.value.kind == ErrorKind.DUPLICATE_EMAIL


async def test_login_failures_are_indistinguishable(auth_service: AuthService) -> None:
    await _register(auth_service)
    with pytest.raises(AuthServiceException) as unknown:
        await auth_service.login(email="nobody@example.com", password=PASSWORD)
    with pytest.raises(AuthServiceException) as wrong:
        await auth_service.login(email=EMAIL, password="wrong-password")
    assert unknown.value.kind == wrong.value.kind == ErrorKind.INVALID_CREDENTIALS
    assert unknown.value.message == wrong.value.message


async def test_logout_invalidates_access_token(auth_service: AuthService) -> None:
    await _register(auth_service)
    result = await _login(auth_service)
    await auth_service.logout(
        user_id=result.user.id, access_token=result.access_token
    )
    with pytest.raises(AuthServiceException) as ei:
        await auth_service.authenticate(result.access_token)
    assert ei.value.kind == ErrorKind.UNAUTHENTICATED


async def test_logout_twice_is_harmless(auth_service: AuthService) -> None:
    await _register(auth_service)
    result = await _login(auth_service)
    for _ in range(2):
        await auth_service.logout(
            user_id=result.user.id,
            access_token=result.access_token,
            refresh_token=result.refresh_token,
        )


async def test_logout_without_token_revokes_everything(
    auth_service: AuthService,
) -> None:
    await _register(auth_service)
    a = await _login(auth_service, LAPTOP)
    b = await _login(auth_service, PHONE)
    await auth_service.logout(user_id=a.user.id)
    for token in (a.access_token, b.access_token):
        with pytest.raises(AuthServiceException):
            await auth_service.authenticate(token)


async def test_refresh_rotates_both_tokens(auth_service: AuthService) -> None:
    await _register(auth_service)
    first = await _login(auth_service)
    second = await auth_service.refresh(first.refresh_token)

    assert second.refresh_token is not None
    assert second.access_token != first.access_token
    assert second.refresh_token != first.refresh_token
    await auth_service.authenticate(second.access_token)
    with pytest.raises(AuthServiceException) as ei:
        await auth_service.authenticate(first.access_token)
    assert ei.value.kind == ErrorKind.UNAUTHENTICATED


async def test_refresh_token_reuse_revokes_all_sessions(
    auth_service: AuthService,
) -> None:
    await _register(auth_service)
    laptop = await _login(auth_service, LAPTOP)
    phone = await _login(auth_service, PHONE)
    rotated = await auth_service.refresh(laptop.refresh_token)

    with pytest.raises(AuthServiceException) as ei:
        await auth_service.refresh(laptop.refresh_token)
    assert ei.value.kind == ErrorKind.SECURITY_VIOLATION

    assert await auth_service.list_sessions(laptop.user.id) == []
    for token in (phone.access_token, rotated.access_token):
        with pytest.raises(AuthServiceException) as denied:
            await auth_service.authenticate(token)
        assert denied.value.kind == ErrorKind.UNAUTHENTICATED


async def test_refresh_after_logout_is_treated_as_reuse(
    auth_service: AuthService,
) -> None:
    await _register(auth_service)
    result = await _login(auth_service)
    await auth_service.logout(
        user_id=result.user.id,
        access_token=result.access_token,
        refresh_token=result.refresh_token,
    )
    with pytest.raises(AuthServiceException) as ei:
        await auth_service.refresh(result.refresh_token)
    assert ei.value.kind == ErrorKind.SECURITY_VIOLATION


async def test_refresh_rejects_access_token_and_garbage(
    auth_service: AuthService,
) -> None:
    await _register(auth_service)
    result = await _login(auth_service)
    for bad in (result.access_token, "garbage", "", None):
        with pytest.raises(AuthServiceException) as ei:
            await auth_service.refresh(bad)
        assert ei.value.kind == ErrorKind.INVALID_REFRESH_TOKEN
    # Rejected tokens do not trip reuse detection.
    await auth_service.authenticate(result.access_token)


async def test_unknown_signed_refresh_token_is_invalid(
    auth_service: AuthService, token_issuer: TokenIssuer
) -> None:
    await _register(auth_service)
    result = await _login(auth_service)
    stray = token_issuer.issue_token_pair(user_id=result.user.id, email=EMAIL)
    with pytest.raises(AuthServiceException) as ei:
        await auth_service.refresh(stray.refresh_token)
    assert ei.value.kind == ErrorKind.INVALID_REFRESH_TOKEN


async def test_login_without_remember_me_has_no_refresh_token(
    auth_service: AuthService,
) -> None:
    await _register(auth_service)
    result = await _login(auth_service, remember_me=False)
    assert result.refresh_token is None
    await auth_service.authenticate(result.access_token)

    sessions = await auth_service.list_sessions(result.user.id)
    assert len(sessions) == 1
    assert sessions[0].refresh_token_hash is None
    lifetime = sessions[0].expires_at - sessions[0].created_at
    assert lifetime <= dt.timedelta(minutes=61)


async def test_same_device_reuses_its_session(auth_service: AuthService) -> None:
    await _register(auth_service)
    first = await _login(auth_service, LAPTOP, ip="192.168.1.10")
    second = await _login(auth_service, LAPTOP, ip="192.168.77.3")

    sessions = await auth_service.list_sessions(first.user.id)
    assert len(sessions) == 1
    await auth_service.authenticate(second.access_token)
    with pytest.raises(AuthServiceException):
        await auth_service.authenticate(first.access_token)


async def test_eleventh_device_evicts_least_recently_used(
    auth_service: AuthService,
) -> None:
    await _register(auth_service)
    results = [await _login(auth_service, f"device-{i}") for i in range(11)]

    user_id = results[0].user.id
    assert len(await auth_service.list_sessions(user_id)) == 10
    with pytest.raises(AuthServiceException):
        await auth_service.authenticate(results[0].access_token)
    for r in results[1:]:
        await auth_service.authenticate(r.access_token)


async def test_recent_use_protects_from_eviction(auth_service: AuthService) -> None:
    await _register(auth_service)
    results = [await _login(auth_service, f"device-{i}") for i in range(10)]
    # Device 0 is used again, so device 1 becomes the oldest.
    await auth_service.authenticate(results[0].access_token)
    await _login(auth_service, "device-10")

    await auth_service.authenticate(results[0].access_token)
    with pytest.raises(AuthServiceException):
        await auth_service.authenticate(results[1].access_token)


async def test_revoke_session_by_id(auth_service: AuthService) -> None:
    await _register(auth_service)
    laptop = await _login(auth_service, LAPTOP)
    phone = await _login(auth_service, PHONE)
    laptop_identity = await auth_service.authenticate(laptop.access_token)

    await auth_service.revoke_session(
        user_id=laptop.user.id, session_id=laptop_identity.session_id
    )
    with pytest.raises(AuthServiceException):
        await auth_service.authenticate(laptop.access_token)
    await auth_service.authenticate(phone.access_token)

    with pytest.raises(AuthServiceException) as ei:
        await auth_service.revoke_session(
            user_id=laptop.user.id, session_id=laptop_identity.session_id
        )
    assert ei.value.kind == ErrorKind.NOT_FOUND


async def test_oauth_login_creates_then_links(auth_service: AuthService) -> None:
    created = await auth_service.oauth_login(
        provider=OAuthProvider.GOOGLE,
        external_id="g-123",
        email="bob@example.com",
        device_info=LAPTOP,
    )
    assert created.user.google_id == "g-123"
    assert created.user.password_hash is None
    assert created.user.name == "bob"

    again = await auth_service.oauth_login(
        provider=OAuthProvider.GOOGLE,
        external_id="g-123",
        email="bob@example.com",
        device_info=LAPTOP,
    )
    assert again.user.id == created.user.id

    await _register(auth_service)
    linked = await auth_service.oauth_login(
        provider=OAuthProvider.FACEBOOK,
        external_id="fb-9",
        email=EMAIL,
        device_info=PHONE,
    )
    assert linked.user.email == EMAIL
    assert linked.user.facebook_id == "fb-9"
    # The local password keeps working after linking.
    await _login(auth_service)


async def test_password_login_fails_for_oauth_only_user(
    auth_service: AuthService,
) -> None:
    await auth_service.oauth_login(
        provider=OAuthProvider.GOOGLE, external_id="g-1", email=EMAIL
    )
    with pytest.raises(AuthServiceException) as ei:
        await auth_service.login(email=EMAIL, password=PASSWORD)
    assert ei.value.kind == ErrorKind.INVALID_CREDENTIALS


async def test_get_user_unknown_is_not_found(auth_service: AuthService) -> None:
    from gatekeeper.commons.ids import new_id

    with pytest.raises(AuthServiceException) as ei:
        await auth_service.get_user(new_id())
    assert ei.value.kind == ErrorKind.NOT_FOUND


async def test_purge_removes_revoked_sessions(auth_service: AuthService) -> None:
    await _register(auth_service)
    laptop = await _login(auth_service, LAPTOP)
    await _login(auth_service, PHONE)
    await auth_service.logout(
        user_id=laptop.user.id, access_token=laptop.access_token
    )

    assert await auth_service.purge_expired_sessions() == 1
    assert await auth_service.purge_expired_sessions() == 0
    assert len(await auth_service.list_sessions(laptop.user.id)) == 1


async def test_purge_keeps_audit_trail_when_configured(
    token_issuer: TokenIssuer,
) -> None:
    sessions = MemorySessionRepository()
    svc = AuthService(
        users=MemoryUserRepository(),
        sessions=sessions,
        tokens=token_issuer,
        password_iterations=1000,
        audit_retention=1,
    )
    await _register(svc)
    a = await _login(svc, LAPTOP)
    b = await _login(svc, PHONE)
    await svc.logout(user_id=a.user.id)

    assert await svc.purge_expired_sessions() == 1
    remaining = list(sessions.sessions.values())
    assert len(remaining) == 1
    assert remaining[0].revoked
    with pytest.raises(AuthServiceException):
        await svc.authenticate(b.access_token)


class _SlowUsers(MemoryUserRepository):
    async def get_by_email(self, email: str):  # type: ignore[no-untyped-def]
        await asyncio.sleep(1)
        return await super().get_by_email(email)


async def test_slow_store_surfaces_as_internal_error(
    token_issuer: TokenIssuer,
) -> None:
    svc = AuthService(
        users=_SlowUsers(),
        sessions=MemorySessionRepository(),
        tokens=token_issuer,
        operation_timeout_s=0.05,
        password_iterations=1000,
    )
    with pytest.raises(AuthServiceException) as ei:
        await svc.login(email=EMAIL, password=PASSWORD)
    assert ei.value.kind == ErrorKind.INTERNAL


async def test_shared_device_slot_relogin_is_not_theft(auth_service: AuthService) -> None:
    await _register(auth_service)
    phone_a = await _login(auth_service, PHONE, ip="10.20.1.1")
    laptop = await _login(auth_service, LAPTOP)
    # Same browser, same /16: lands on phone A's session row.
    phone_b = await _login(auth_service, PHONE, ip="10.20.9.9")

    with pytest.raises(AuthServiceException) as ei:
        await auth_service.refresh(phone_a.refresh_token)
    assert ei.value.kind == ErrorKind.INVALID_REFRESH_TOKEN

    await auth_service.authenticate(laptop.access_token)
    await auth_service.refresh(phone_b.refresh_token)


async def test_relogin_without_remember_me_drops_old_refresh_quietly(
    auth_service: AuthService,
) -> None:
    await _register(auth_service)
    remembered = await _login(auth_service, LAPTOP)
    other = await _login(auth_service, PHONE)
    await _login(auth_service, LAPTOP, remember_me=False)

    with pytest.raises(AuthServiceException) as ei:
        await auth_service.refresh(remembered.refresh_token)
    assert ei.value.kind == ErrorKind.INVALID_REFRESH_TOKEN
    await auth_service.authenticate(other.access_token)


async def test_purge_drops_retired_tokens_older_than_refresh_ttl(
    auth_service: AuthService,
) -> None:
    await _register(auth_service)
    result = await _login(auth_service)
    for _ in range(50):
        result = await auth_service.refresh(result.refresh_token)

    sessions = auth_service.sessions
    assert isinstance(sessions, MemorySessionRepository)
    assert len(sessions.retired) == 50
    for retired in sessions.retired.values():
        retired.retired_at -= dt.timedelta(days=30)

    assert await auth_service.purge_expired_sessions() == 0
    assert sessions.retired == {}
    await auth_service.authenticate(result.access_token)


async def test_purge_keeps_recently_retired_tokens(auth_service: AuthService) -> None:
    await _register(auth_service)
    first = await _login(auth_service)
    await auth_service.refresh(first.refresh_token)

    await auth_service.purge_expired_sessions()
    with pytest.raises(AuthServiceException) as ei:
        await auth_service.refresh(first.refresh_token)
    assert ei.value.kind == ErrorKind.SECURITY_VIOLATION


async def test_concurrent_logins_from_one_device_share_one_session(
    auth_service: AuthService,
) -> None:
    await _register(auth_service)
    results = await asyncio.gather(*(_login(auth_service, LAPTOP) for _ in range(5)))

    user_id = results[0].user.id
    sessions = await auth_service.list_sessions(user_id)
    assert len(sessions) == 1
    live = [
        r
        for r in results
        if await auth_service.sessions.find_valid_access_token(r.access_token)
    ]
    assert len(live) == 1


async def test_logout_ignores_refresh_cookie_of_another_user(
    auth_service: AuthService,
) -> None:
    await _register(auth_service)
    alice = await _login(auth_service)
    await auth_service.register(email="bob@example.com", name="Bob", password=PASSWORD)
    bob = await auth_service.login(
        email="bob@example.com", password=PASSWORD, device_info=PHONE
    )

    await auth_service.logout(
        user_id=bob.user.id,
        access_token=bob.access_token,
        refresh_token=alice.refresh_token,
    )
    await auth_service.authenticate(alice.access_token)
    rotated = await auth_service.refresh(alice.refresh_token)
    assert rotated.refresh_token is not None
