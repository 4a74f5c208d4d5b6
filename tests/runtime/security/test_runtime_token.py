import pytest

from echoplayer.internal import paths
from echoplayer.runtime.security import ensure_token, generate_token, load_token, save_token


# --- Fixtures ---

@pytest.fixture
def token_file(tmp_path):
    return tmp_path / "runtime.token"


# --- Tests ---

def test_load_token_nonexistent_file(token_file):
    assert load_token(token_file) is None


def test_save_and_load_token(token_file):
    save_token("abc123", token_file)
    assert load_token(token_file) == "abc123"


def test_empty_token_file_is_treated_as_missing(token_file):
    token_file.write_text("  \n")
    assert load_token(token_file) is None


def test_generate_token_is_256_bit_hex():
    token = generate_token()
    assert len(token) == 64
    int(token, 16)


def test_ensure_token_persists_once(token_file):
    first = ensure_token(token_file)
    second = ensure_token(token_file)

    assert first == second
    assert token_file.read_text() == first


def test_default_location_is_app_data(app_home):
    token = ensure_token()
    assert paths.get_runtime_token_file().parent == app_home
    assert load_token() == token
