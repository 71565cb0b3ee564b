from datetime import timedelta

import pytest

from fulcio.serve_options import (
    LEGACY_UNIX_DOMAIN_SOCKET,
    SUPPORTED_EXTENSIONS,
    ServeConfigError,
    ServeOptions,
    load_config_file,
    parse_serve_args,
)


def test_defaults_match_flag_defaults():
    opts = parse_serve_args([], {})
    assert opts.host == "0.0.0.0"
    assert opts.port == "8080"
    assert opts.grpc_port == "8081"
    assert opts.metrics_port == "2112"
    assert opts.ct_log_url == "http://localhost:6962/test"
    assert opts.config_path == "/etc/fulcio-config/config.json"
    assert opts.legacy_unix_domain_socket == LEGACY_UNIX_DOMAIN_SOCKET
    assert opts.read_header_timeout == timedelta(seconds=10)
    assert opts.idle_connection_timeout == timedelta(seconds=30)
    assert opts.fileca_watch is True
    assert opts.explicitly_set == frozenset()


def test_defaults_are_not_duplex():
    opts = parse_serve_args([], {})
    assert opts.is_duplex() is False
    assert opts.http_endpoint() == f"{opts.host}:{opts.port}"
    assert opts.grpc_endpoint() == f"{opts.grpc_host}:{opts.grpc_port}"


def test_http_aliases_map_to_host_and_port():
    opts = parse_serve_args(["--http-port", "9000", "--http-host=127.0.0.1"], {})
    assert opts.port == "9000"
    assert opts.host == "127.0.0.1"
    assert {"port", "host"} <= opts.explicitly_set
    assert opts.http_endpoint() == "127.0.0.1:9000"


def test_same_host_and_port_is_duplex():
    opts = parse_serve_args(["--port", "8081"], {})
    assert opts.is_duplex() is True
    assert opts.http_endpoint() == opts.grpc_endpoint()


def test_missing_ca_is_an_error():
    with pytest.raises(ServeConfigError, match='required flag "ca" not set'):
        parse_serve_args([], {}).validate()


def test_invalid_ca_is_an_error():
    with pytest.raises(ServeConfigError, match="--ca=bogus is not a valid selection"):
        parse_serve_args(["--ca", "bogus"], {}).validate()


def test_ephemeralca_needs_nothing_more():
    assert parse_serve_args(["--ca", "ephemeralca"], {}).validate() == []


def test_pkcs11ca_requires_root_id():
    with pytest.raises(ServeConfigError, match="hsm-caroot-id must be set when using pkcs11ca"):
        parse_serve_args(["--ca", "pkcs11ca"], {}).validate()
    opts = parse_serve_args(["--ca", "pkcs11ca", "--hsm-caroot-id", "99"], {})
    assert opts.validate() == []
    assert opts.hsm_caroot_id == "99"


def test_fileca_requires_all_three_settings():
    base = ["--ca", "fileca", "--fileca-cert", "ca.pem", "--fileca-key", "key.pem"]
    with pytest.raises(ServeConfigError, match="fileca-key-passwd must be set"):
        parse_serve_args(base, {}).validate()
    with pytest.raises(ServeConfigError, match="fileca-cert must be set"):
        parse_serve_args(["--ca", "fileca"], {}).validate()
    password = "password"
    opts = parse_serve_args([*base, "--fileca-key-passwd", password], {})
    assert opts.validate() == []
    assert opts.fileca_key_passwd == password


@pytest.mark.parametrize(
    ("ca", "message"),
    [
        ("kmsca", "kms-resource must be set when using kmsca"),
        ("tinkca", "tink-kms-resource must be set when using tinkca"),
        ("googleca", "gcp_private_ca_parent must be set when using googleca"),
    ],
)
def test_ca_specific_requirements(ca, message):
    with pytest.raises(ServeConfigError, match=message):
        parse_serve_args(["--ca", ca], {}).validate()


def test_googleca_deprecated_version_warns():
    env = {"FULCIO_SERVE_GCP_PRIVATE_CA_VERSION": "v1"}
    opts = parse_serve_args(["--ca", "googleca", "--gcp_private_ca_parent", "projects/p"], env)
    warnings = opts.validate()
    assert len(warnings) == 1
    assert "gcp_private_ca_version is deprecated" in warnings[0]


def test_environment_supplies_values_and_flags_override():
    env = {"FULCIO_SERVE_CA": "ephemeralca", "FULCIO_SERVE_LOG_TYPE": "prod"}
    opts = parse_serve_args([], env)
    assert opts.ca == "ephemeralca"
    assert opts.log_type == "prod"
    assert "ca" in opts.explicitly_set
    overridden = parse_serve_args(["--ca", "fileca"], env)
    assert overridden.ca == "fileca"


def test_bool_flag_forms():
    assert parse_serve_args(["--fileca-watch=false"], {}).fileca_watch is False
    assert parse_serve_args(["--fileca-watch"], {}).fileca_watch is True
    with pytest.raises(ServeConfigError):
        parse_serve_args(["--fileca-watch=maybe"], {})


def test_duration_flags():
    opts = parse_serve_args(["--idle-connection-timeout", "1m30s", "--read-header-timeout=500ms"], {})
    assert opts.idle_connection_timeout == timedelta(seconds=90)
    assert opts.read_header_timeout == timedelta(milliseconds=500)
    with pytest.raises(ServeConfigError, match="invalid duration"):
        parse_serve_args(["--read-header-timeout", "soon"], {})


def test_unknown_flag_is_an_error():
    with pytest.raises(ServeConfigError):
        parse_serve_args(["--no-such-flag", "x"], {})


def test_yaml_config_file_and_precedence(tmp_path):
    cfg = tmp_path / "serve.yaml"
    cfg.write_text("ca: ephemeralca\nport: 9999\nfileca-watch: false\n", encoding="utf-8")
    opts = parse_serve_args(["-c", str(cfg)], {})
    assert opts.ca == "ephemeralca"
    assert opts.port == "9999"
    assert opts.fileca_watch is False
    assert opts.config == str(cfg)

    env_wins = parse_serve_args(["--config", str(cfg)], {"FULCIO_SERVE_PORT": "7000"})
    assert env_wins.port == "7000"
    flag_wins = parse_serve_args(["--config", str(cfg), "--port", "6000"], {"FULCIO_SERVE_PORT": "7000"})
    assert flag_wins.port == "6000"


def test_json_config_is_flattened_and_lowercased(tmp_path):
    cfg = tmp_path / "serve.json"
    cfg.write_text('{"CA": "kmsca", "outer": {"Inner": 1}}', encoding="utf-8")
    assert load_config_file(cfg) == {"ca": "kmsca", "outer.inner": 1}


def test_toml_and_properties_configs(tmp_path):
    toml_file = tmp_path / "serve.toml"
    toml_file.write_text('grpc-port = "8080"\n', encoding="utf-8")
    assert parse_serve_args(["-c", str(toml_file)], {}).is_duplex() is True

    props = tmp_path / "serve.properties"
    props.write_text("# comment\nca=tinkca\nhost: localhost\n", encoding="utf-8")
    assert load_config_file(props) == {"ca": "tinkca", "host": "localhost"}


def test_config_duration_as_string(tmp_path):
    cfg = tmp_path / "serve.yml"
    cfg.write_text("idle-connection-timeout: 2h\n", encoding="utf-8")
    opts = parse_serve_args(["-c", str(cfg)], {})
    assert opts.idle_connection_timeout == timedelta(hours=2)


def test_missing_config_file(tmp_path):
    with pytest.raises(ServeConfigError, match="unable to stat config file provided"):
        parse_serve_args(["-c", str(tmp_path / "absent.yaml")], {})


def test_bad_extension_lists_supported(tmp_path):
    cfg = tmp_path / "serve.txt"
    cfg.write_text("ca: ephemeralca\n", encoding="utf-8")
    with pytest.raises(ServeConfigError) as info:
        load_config_file(cfg)
    message = str(info.value)
    assert message.startswith("config file must have one of the following extensions")
    assert all(ext in message for ext in SUPPORTED_EXTENSIONS)


def test_unparseable_config(tmp_path):
    cfg = tmp_path / "serve.json"
    cfg.write_text("{not json", encoding="utf-8")
    with pytest.raises(ServeConfigError, match="unable to parse config file provided"):
        load_config_file(cfg)


def test_direct_construction_tracks_set_keys():
    opts = ServeOptions(ca="kmsca", kms_resource="gcpkms://k", explicitly_set=frozenset({"ca", "kms-resource"}))
    with pytest.raises(ServeConfigError, match="kms-cert-chain-path must be set"):
        opts.validate()