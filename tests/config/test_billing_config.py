"""
Tests for billing configuration loading.

Validates:
- The packaged defaults load and match the dataclass defaults
- $BILLING_CONFIG and an explicit path override the defaults
- Unknown keys and bad values are rejected
- The checksum tracks content
"""

from decimal import Decimal

import pytest
import yaml

from billing_config import CONFIG_ENV_VAR, DEFAULTS_PATH, get_billing_config
from billing_config.loader import compute_checksum, parse_billing_config
from billing_config.schema import BillingConfig


def _write(tmp_path, section, name="billing.yaml"):
    path = tmp_path / name
    path.write_text(yaml.safe_dump({"billing": section}))
    return path


class TestDefaults:

    def test_packaged_defaults(self, monkeypatch):
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        config = get_billing_config()

        assert config.default_proration_method == "actual_days"
        assert config.invoice_prefix == "INV"
        assert config.credit_note_prefix == "CN"
        assert config.share_tolerance == Decimal("0.01")
        assert config.partially_paid_on_credit is False
        assert config.checksum

    def test_defaults_file_agrees_with_dataclass(self):
        loaded = get_billing_config(DEFAULTS_PATH)
        plain = BillingConfig()
        for name in ("default_proration_method", "number_width", "payment_term_days", "split_by_owner"):
            assert getattr(loaded, name) == getattr(plain, name)

    def test_load_is_logged(self, captured_logs):
        get_billing_config(DEFAULTS_PATH)
        loaded = [r for r in captured_logs() if r["message"] == "billing_config_loaded"]
        assert loaded[0]["config_id"] == "default"


class TestOverrides:

    def test_explicit_path(self, tmp_path):
        path = _write(tmp_path, {"default_proration_method": "thirty_day", "payment_term_days": 7})
        config = get_billing_config(path)
        assert config.default_proration_method == "thirty_day"
        assert config.payment_term_days == 7
        assert config.invoice_prefix == "INV"

    def test_environment_variable(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"invoice_prefix": "BILL"})
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
        assert get_billing_config().invoice_prefix == "BILL"

    def test_bare_section_accepted(self):
        assert parse_billing_config({"number_width": "8"}).number_width == 8

    def test_empty_document(self):
        assert parse_billing_config({}) == BillingConfig(checksum=compute_checksum({}))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_billing_config(tmp_path / "absent.yaml")


class TestValidation:

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="prorate"):
            parse_billing_config({"billing": {"prorate": "daily"}})

    @pytest.mark.parametrize("section", [
        {"default_proration_method": "weekly"},
        {"invoice_prefix": ""},
        {"number_width": 0},
        {"payment_term_days": -1},
        {"share_tolerance": "-0.5"},
        {"share_tolerance": "lots"},
        {"partially_paid_on_credit": "yes"},
    ])
    def test_bad_values(self, section):
        with pytest.raises(ValueError):
            parse_billing_config(section)


class TestChecksum:

    def test_stable_across_key_order(self):
        assert compute_checksum({"a": 1, "b": 2}) == compute_checksum({"b": 2, "a": 1})

    def test_changes_with_content(self, tmp_path):
        first = get_billing_config(_write(tmp_path, {"number_width": 6}, "a.yaml"))
        second = get_billing_config(_write(tmp_path, {"number_width": 7}, "b.yaml"))
        assert first.checksum != second.checksum
