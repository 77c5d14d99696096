from pathlib import Path

from envoy_relay.utils import write_file_atomic


def test_write_creates_parents(tmp_path: Path) -> None:
    path = tmp_path / "etc" / "sysctl.d" / "99-test.conf"

    assert write_file_atomic(path, "net.core.somaxconn = 65535\n")
    assert path.read_text() == "net.core.somaxconn = 65535\n"
    assert path.stat().st_mode & 0o777 == 0o644


def test_unchanged_content_is_not_rewritten(tmp_path: Path) -> None:
    path = tmp_path / "envoy.yaml"
    write_file_atomic(path, "admin: {}\n")
    mtime = path.stat().st_mtime_ns

    assert not write_file_atomic(path, "admin: {}\n")
    assert path.stat().st_mtime_ns == mtime
    assert write_file_atomic(path, "admin: {}\nnode: {}\n", mode=0o600)
    assert path.stat().st_mode & 0o777 == 0o600


def test_no_temp_files_left_behind(tmp_path: Path) -> None:
    write_file_atomic(tmp_path / "a.conf", "x\n")
    write_file_atomic(tmp_path / "a.conf", "y\n")

    assert [p.name for p in tmp_path.iterdir()] == ["a.conf"]


def test_non_utf8_content_round_trips(tmp_path: Path) -> None:
    path = tmp_path / "limits.conf"
    path.write_bytes(b"# caf\xe9\n")
    content = path.read_text(encoding="utf-8", errors="surrogateescape")

    assert not write_file_atomic(path, content)
    assert write_file_atomic(path, content + "* soft nofile 1024\n")
    assert path.read_bytes() == b"# caf\xe9\n* soft nofile 1024\n"
