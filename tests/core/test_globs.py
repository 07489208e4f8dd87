import pytest

from captra.globs import GlobError, compile_glob, glob_matches


@pytest.mark.parametrize(
    "pattern, path, expected",
    [
        ("./workspace/*", "./workspace/config.toml", True),
        ("./workspace/*", "/etc/passwd", False),
        # `*` stays inside one path component
        ("./workspace/*", "./workspace/sub/deep.txt", False),
        ("./workspace/*", "./workspace/.hidden", True),
        ("./workspace/*", "./workspace", False),
        ("./Workspace/*", "./workspace/config.toml", False),
        ("/etc/*", "/etc/passwd", True),
        ("./workspace/?.toml", "./workspace/a.toml", True),
        ("./workspace/?.toml", "./workspace/ab.toml", False),
        ("./data/[abc].csv", "./data/b.csv", True),
        ("./data/[!abc].csv", "./data/b.csv", False),
        ("./data/[!abc].csv", "./data/d.csv", True),
        ("./data/[a-c]*", "./data/cat", True),
        ("./data/[a-c]*", "./data/dog", False),
        ("[]]x", "]x", True),
        # `**` spans zero or more whole components
        ("./workspace/**", "./workspace/sub/deep.txt", True),
        ("./workspace/**/*.txt", "./workspace/a/b/c.txt", True),
        ("./workspace/**/*.txt", "./workspace/c.txt", True),
        ("./workspace/**/*.txt", "./workspace/a/b/c.toml", False),
        ("**/secret", "/srv/app/secret", True),
        ("**/secret", "./secret", True),
        # dot components only match themselves
        ("./workspace/*", "./workspace/..", False),
        ("./workspace/*", "./workspace/.", False),
        ("./workspace/?", "./workspace/.", False),
        ("./workspace/**", "./workspace/../../etc/passwd", False),
        ("**/passwd", "./workspace/../etc/passwd", False),
        ("./workspace/../*", "./workspace/../x", True),
    ],
)
def test_glob_semantics(pattern: str, path: str, expected: bool) -> None:
    assert glob_matches(pattern, path) is expected


@pytest.mark.parametrize(
    "pattern, fragment",
    [
        ("[", "unclosed"),
        ("./data/[abc", "unclosed"),
        ("./x/[!", "unclosed"),
        ("./logs/a**", "whole path component"),
        ("**b/c", "whole path component"),
        ("", "empty"),
    ],
)
def test_invalid_patterns_fail_to_compile(pattern: str, fragment: str) -> None:
    with pytest.raises(GlobError) as ei:
        compile_glob(pattern)
    assert ei.value.pattern == pattern
    assert fragment in ei.value.detail


def test_compiled_pattern_is_reusable() -> None:
    pat = compile_glob("./workspace/*.toml")

    assert pat.matches("./workspace/a.toml")
    assert pat.matches("./workspace/b.toml")
    assert not pat.matches("./workspace/b.json")
    assert repr(pat) == "GlobPattern('./workspace/*.toml')"
