import pytest

from rrcbridge.util import parse_identity_hash, random_string, split_command


@pytest.mark.parametrize(
    "body, expected",
    [
        ("/list", ("/list", None)),
        ("  /token  ", ("/token", None)),
        ("/connect $mbb2$AbCdEfGhIj1234567890", ("/connect", "$mbb2$AbCdEfGhIj1234567890")),
        ("/disconnect_65aa00ff65aa00ff65aa00ff", ("/disconnect", "65aa00ff65aa00ff65aa00ff")),
        ("/auth\tsecret", ("/auth", "secret")),
        ("/auth   pass word ", ("/auth", "pass word")),
        ("/deauth_", ("/deauth", "")),
    ],
)
def test_split_command(body, expected) -> None:
    assert split_command(body) == expected


def test_random_string() -> None:
    s = random_string(20)
    assert len(s) == 20
    assert s.isalnum() and s.isascii()
    assert random_string(20) != s

    with pytest.raises(ValueError):
        random_string(0)


def test_parse_identity_hash() -> None:
    assert parse_identity_hash("0xAABBCCDD") == bytes.fromhex("aabbccdd")
    assert parse_identity_hash(" aa bb cc dd ee ") == bytes.fromhex("aabbccddee")
    with pytest.raises(ValueError):
        parse_identity_hash("aabb")
    with pytest.raises(ValueError):
        parse_identity_hash("xyz123")
