"""
Auth Tests
==========

Token lifecycle, silent refresh, rejection policy and the HTTP client.
"""

import asyncio

import pytest
import requests

from terminal_narrator.auth.client import AuthNetworkClient
from terminal_narrator.auth.service import CREDENTIALS_KEY, AuthService
from terminal_narrator.auth.store import MemorySecretStore
from terminal_narrator.errors import AuthError
from terminal_narrator.models.error_codes import AuthErrorCode


@pytest.fixture
def store():
    return MemorySecretStore()


@pytest.fixture
def service(fake_auth_client, store, fake_clock):
    return AuthService(fake_auth_client, store, token_ttl=60.0, rejection_window=5.0, clock=fake_clock)


class TestAuthMode:
    def test_no_auth_server(self, store, auth_client_factory):
        service = AuthService(auth_client_factory(no_auth=True), store)

        assert asyncio.run(service.get_token()) is None
        assert service.authenticated
        assert service.auth_required is False

    def test_login_against_no_auth_server(self, store, auth_client_factory):
        service = AuthService(auth_client_factory(no_auth=True), store)
        with pytest.raises(AuthError) as exc_info:
            asyncio.run(service.login("alice", "secret"))
        assert exc_info.value.code == AuthErrorCode.NOT_REQUIRED

    def test_unreachable_config_assumes_required(self, store, auth_client_factory):
        service = AuthService(auth_client_factory(config_error=True), store)
        assert asyncio.run(service.is_auth_required()) is True
        assert not service.authenticated
        assert service.auth_required is None

    def test_auth_mode_detected_again_once_reachable(self, store, auth_client_factory):
        client = auth_client_factory(no_auth=True, config_error=True)
        service = AuthService(client, store)

        with pytest.raises(AuthError) as exc_info:
            asyncio.run(service.get_token())
        assert exc_info.value.code == AuthErrorCode.NETWORK

        client.config_error = False
        assert asyncio.run(service.get_token()) is None
        assert service.auth_required is False
        assert service.authenticated


class TestTokenLifecycle:
    def test_login_stores_credentials(self, service, store):
        token = asyncio.run(service.login("alice", "secret"))

        assert token.value == "token-1"
        assert service.authenticated
        assert CREDENTIALS_KEY in store
        assert "secret" not in repr(service.load_saved_credentials())

    def test_login_without_remember(self, service, store):
        asyncio.run(service.login("alice", "secret", remember=False))
        assert CREDENTIALS_KEY not in store

    def test_invalid_login(self, service, store):
        with pytest.raises(AuthError) as exc_info:
            asyncio.run(service.login("alice", "wrong"))
        assert exc_info.value.code == AuthErrorCode.INVALID_CREDENTIALS
        assert not service.authenticated
        assert CREDENTIALS_KEY not in store

    def test_token_reused_within_ttl(self, service, fake_auth_client, fake_clock):
        async def scenario():
            await service.login("alice", "secret")
            fake_clock.advance(59.9)
            return await service.get_token()

        assert asyncio.run(scenario()) == "token-1"
        assert fake_auth_client.login_calls == 1

    def test_token_refreshed_at_ttl(self, service, fake_auth_client, fake_clock):
        async def scenario():
            await service.login("alice", "secret")
            fake_clock.advance(60.0)
            return await service.get_token()

        assert asyncio.run(scenario()) == "token-2"
        assert fake_auth_client.login_calls == 2

    def test_refresh_from_saved_credentials(self, fake_auth_client, store, fake_clock):
        async def scenario():
            first = AuthService(fake_auth_client, store, clock=fake_clock)
            await first.login("alice", "secret")
            second = AuthService(fake_auth_client, store, clock=fake_clock)
            return await second.get_token(), second.authenticated

        assert asyncio.run(scenario()) == ("token-2", True)

    def test_refresh_without_credentials(self, service):
        with pytest.raises(AuthError) as exc_info:
            asyncio.run(service.get_token())
        assert exc_info.value.code == AuthErrorCode.INVALID_CREDENTIALS
        assert not service.authenticated

    def test_rejected_credentials_are_deleted(self, service, fake_auth_client, store):
        async def scenario():
            await service.login("alice", "secret")
            fake_auth_client.valid["alice"] = "rotated"
            service.invalidate_token()
            await service.get_token()

        with pytest.raises(AuthError) as exc_info:
            asyncio.run(scenario())

        assert exc_info.value.code == AuthErrorCode.INVALID_CREDENTIALS
        assert CREDENTIALS_KEY not in store
        assert not service.authenticated

    def test_unreadable_saved_credentials(self, service, store):
        store.save(CREDENTIALS_KEY, "not json")
        assert service.load_saved_credentials() is None
        assert CREDENTIALS_KEY not in store

    def test_logout(self, service, store):
        asyncio.run(service.login("alice", "secret"))
        service.logout()

        assert service.token is None
        assert not service.authenticated
        assert CREDENTIALS_KEY not in store

    def test_verify(self, service):
        async def scenario():
            before = await service.verify()
            await service.login("alice", "secret")
            return before, await service.verify()

        assert asyncio.run(scenario()) == (False, True)


class TestRejectionPolicy:
    def test_single_rejection_drops_token(self, service):
        asyncio.run(service.login("alice", "secret"))

        assert service.record_rejection() is False
        assert service.token is None
        assert service.authenticated

    def test_two_rejections_in_window_notify_once(self, service, fake_clock):
        transitions = []
        asyncio.run(service.login("alice", "secret"))
        service.add_listener(transitions.append)

        assert service.record_rejection() is False
        fake_clock.advance(1.0)
        assert service.record_rejection() is True
        fake_clock.advance(1.0)
        assert service.record_rejection() is True

        assert transitions == [False]

    def test_rejections_outside_window(self, service, fake_clock):
        asyncio.run(service.login("alice", "secret"))

        assert service.record_rejection() is False
        fake_clock.advance(5.0)
        assert service.record_rejection() is False
        assert service.authenticated

    def test_login_clears_rejections(self, service):
        async def scenario():
            await service.login("alice", "secret")
            service.record_rejection()
            await service.login("alice", "secret")
            return service.record_rejection()

        assert asyncio.run(scenario()) is False


class TestAuthNetworkClient:
    API = "http://terminal.local:4020/api"

    def test_get_auth_config(self, fake_http, response):
        http = fake_http([response(200, {"noAuth": True, "enableSSHKeys": False})])
        client = AuthNetworkClient(self.API + "/", session=http)

        config = asyncio.run(client.get_auth_config())

        assert config.no_auth is True
        assert http.requests[0]["url"] == self.API + "/auth/config"
        assert http.requests[0]["timeout"] == 10.0

    def test_auth_config_error_status(self, fake_http, response):
        client = AuthNetworkClient(self.API, session=fake_http([response(500)]))
        with pytest.raises(AuthError) as exc_info:
            asyncio.run(client.get_auth_config())
        assert exc_info.value.code == AuthErrorCode.NETWORK

    def test_authenticate(self, fake_http, response):
        http = fake_http([response(200, {"success": True, "token": "abc", "userId": "alice"})])
        client = AuthNetworkClient(self.API, session=http)

        login = asyncio.run(client.authenticate("alice", "pw"))

        assert login.token == "abc"
        assert http.requests[0]["method"] == "POST"
        assert http.requests[0]["json"] == {"userId": "alice", "password": "pw"}

    @pytest.mark.parametrize(
        "status,body,code",
        [
            (401, None, AuthErrorCode.INVALID_CREDENTIALS),
            (403, None, AuthErrorCode.INVALID_CREDENTIALS),
            (200, {"success": False}, AuthErrorCode.INVALID_CREDENTIALS),
            (502, None, AuthErrorCode.NETWORK),
            (200, {"token": "missing success"}, AuthErrorCode.NETWORK),
        ],
    )
    def test_authenticate_failures(self, fake_http, response, status, body, code):
        client = AuthNetworkClient(self.API, session=fake_http([response(status, body)]))
        with pytest.raises(AuthError) as exc_info:
            asyncio.run(client.authenticate("alice", "pw"))
        assert exc_info.value.code == code

    def test_transport_error_is_network(self, fake_http):
        client = AuthNetworkClient(self.API, session=fake_http([requests.ConnectionError("refused")]))
        with pytest.raises(AuthError) as exc_info:
            asyncio.run(client.get_auth_config())
        assert exc_info.value.code == AuthErrorCode.NETWORK

    def test_check_health(self, fake_http, response):
        client = AuthNetworkClient(
            self.API,
            session=fake_http([response(200, {"status": "ok"}), requests.Timeout("slow")]),
        )
        assert asyncio.run(client.check_health()) is True
        assert asyncio.run(client.check_health()) is False

    def test_verify_token_sends_bearer(self, fake_http, response):
        http = fake_http([response(200, {"valid": True}), response(401)])
        client = AuthNetworkClient(self.API, session=http)

        assert asyncio.run(client.verify_token("t1")) is True
        assert asyncio.run(client.verify_token("t2")) is False
        assert http.requests[0]["headers"] == {"Authorization": "Bearer t1"}

    def test_get_current_user(self, fake_http, response):
        client = AuthNetworkClient(self.API, session=fake_http([response(200, {"userId": "alice"}), response(401)]))
        assert asyncio.run(client.get_current_user("t")) == "alice"
        assert asyncio.run(client.get_current_user("t")) is None
