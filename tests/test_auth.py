import pytest

from slack_archive import auth
from slack_archive.errors import AuthError
from slack_archive.sample import SampleConfig, create_sample_data
from slack_archive.storage import SQLiteStore

SECRET = "unit-test-secret"


@pytest.fixture
def store(tmp_path):
    s = SQLiteStore(str(tmp_path / "archive.db"))
    create_sample_data(s, SampleConfig(users=2, messages_per_channel=1))
    yield s
    s.close()


def test_channel_token_grants_only_its_channel(store) -> None:
    token = auth.authenticate_channel(store, "C003", "project123", secret=SECRET)
    claims = auth.decode_token(token, SECRET)

    assert claims["channel_id"] == "C003"
    assert claims["type"] == auth.TOKEN_TYPE_CHANNEL
    assert auth.can_read_channel(store.get_channel("C003"), claims)
    assert not auth.can_read_channel(store.get_channel("C004"), claims)
    assert not auth.is_admin(claims)


def test_public_channel_needs_no_token(store) -> None:
    assert auth.authenticate_channel(store, "C001", None, secret=SECRET) is None
    assert auth.can_read_channel(store.get_channel("C001"), None)


@pytest.mark.parametrize(
    ("channel_id", "password", "status"),
    [
        ("C003", "wrong", 401),
        ("C003", None, 401),
        ("C004", "admin123", 403),
        ("C404", "x", 404),
    ],
)
def test_channel_authentication_failures(store, channel_id, password, status) -> None:
    with pytest.raises(AuthError) as excinfo:
        auth.authenticate_channel(store, channel_id, password, secret=SECRET)
    assert excinfo.value.status_code == status


def test_admin_token_reads_everything(store) -> None:
    token = auth.authenticate_admin("hunter2", "hunter2", secret=SECRET)
    claims = auth.decode_token(token, SECRET)
    assert auth.is_admin(claims)
    assert auth.can_read_channel(store.get_channel("C004"), claims)


def test_admin_login_disabled_without_password() -> None:
    with pytest.raises(AuthError):
        auth.authenticate_admin("anything", None, secret=SECRET)


def test_tokens_are_bound_to_secret_and_expiry() -> None:
    token = auth.create_access_token({"type": auth.TOKEN_TYPE_ADMIN}, SECRET)
    assert auth.decode_token(token, "other-secret") is None

    expired = auth.create_access_token({"type": auth.TOKEN_TYPE_ADMIN}, SECRET, ttl_hours=-1)
    assert auth.decode_token(expired, SECRET) is None
