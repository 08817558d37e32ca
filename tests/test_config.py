"""
Tests for AppConfig defaults and validation.
"""

import dataclasses

import pytest

from course_dashboard.config import AppConfig, _parse_csv_env


class TestAppConfig:
    """Tests for AppConfig"""

    def test_csp_defaults_add_no_third_party_sources(self):
        fields = {f.name: f.default for f in dataclasses.fields(AppConfig)}
        assert fields["csp_script_src"] == ()
        assert fields["csp_style_src"] == ()
        assert fields["csp_font_src"] == ()
        assert fields["csp_connect_src"] == ()

    def test_parse_csv_env(self, monkeypatch):
        monkeypatch.setenv("CSP_SCRIPT_SRC", " https://a.test, ,https://b.test ")
        assert _parse_csv_env("CSP_SCRIPT_SRC") == ("https://a.test", "https://b.test")
        monkeypatch.delenv("CSP_SCRIPT_SRC")
        assert _parse_csv_env("CSP_SCRIPT_SRC") == ()

    def test_memory_store_is_valid(self, config):
        config.validate()

    @pytest.mark.parametrize(
        "changes, message",
        [
            ({"store_backend": "sqlite"}, "STORE_BACKEND"),
            ({"import_chunk_size": 0}, "IMPORT_CHUNK_SIZE"),
            ({"excel_serial_date_min": 60000, "excel_serial_date_max": 30000}, "EXCEL_SERIAL_DATE_MIN"),
        ],
    )
    def test_validate_rejects(self, config, changes, message):
        with pytest.raises(ValueError, match=message):
            dataclasses.replace(config, **changes).validate()

    def test_store_path_outside_data_root(self, config, tmp_path):
        root = tmp_path / "data"
        root.mkdir()
        bad = dataclasses.replace(config, allowed_data_root=root, store_path=tmp_path / "elsewhere.duckdb")
        with pytest.raises(ValueError, match="ALLOWED_DATA_ROOT"):
            bad.validate()
        dataclasses.replace(config, allowed_data_root=root, store_path=root / "store.duckdb").validate()
