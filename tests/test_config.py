import ipaddress

from cefbridge.config import parse_config_field


def write_config(tmp_path, text):
    path = tmp_path / "server.cfg"
    path.write_text(text, encoding="utf-8")
    return path


def test_reads_integer_field(tmp_path):
    path = write_config(tmp_path, "hostname test\nport 7777\n")
    assert parse_config_field("port", int, path) == 7777


def test_reads_ip_address_field(tmp_path):
    path = write_config(tmp_path, "bind 127.0.0.1\nport 7777\n")
    value = parse_config_field("bind", ipaddress.ip_address, path)
    assert value == ipaddress.ip_address("127.0.0.1")


def test_default_conversion_returns_text(tmp_path):
    path = write_config(tmp_path, "hostname test\n")
    assert parse_config_field("hostname", path=path) == "test"


def test_missing_field_gives_none(tmp_path):
    path = write_config(tmp_path, "port 7777\n")
    assert parse_config_field("bind", ipaddress.ip_address, path) is None


def test_missing_file_gives_none(tmp_path):
    assert parse_config_field("port", int, tmp_path / "absent.cfg") is None


def test_bad_value_gives_none(tmp_path):
    path = write_config(tmp_path, "port seven\n")
    assert parse_config_field("port", int, path) is None


def test_line_without_value_gives_none(tmp_path):
    path = write_config(tmp_path, "port\n")
    assert parse_config_field("port", int, path) is None


def test_double_space_leaves_empty_value(tmp_path):
    path = write_config(tmp_path, "port  7777\n")
    assert parse_config_field("port", int, path) is None
    assert parse_config_field("port", path=path) == ""


def test_first_matching_line_wins(tmp_path):
    path = write_config(tmp_path, "port 7777\nport 8888\n")
    assert parse_config_field("port", int, path) == 7777


def test_prefix_match_is_used(tmp_path):
    path = write_config(tmp_path, "ports 1\nport 7777\n")
    assert parse_config_field("port", int, path) == 1


def test_windows_line_endings(tmp_path):
    path = tmp_path / "server.cfg"
    path.write_bytes(b"port 7777\r\nbind 0.0.0.0\r\n")
    assert parse_config_field("port", int, path) == 7777
    assert parse_config_field("bind", path=path) == "0.0.0.0"


def test_default_path_is_current_directory(tmp_path, monkeypatch):
    write_config(tmp_path, "port 7777\n")
    monkeypatch.chdir(tmp_path)
    assert parse_config_field("port", int) == 7777