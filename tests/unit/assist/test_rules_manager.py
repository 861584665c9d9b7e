"""Tests for YAML-backed assist rules."""

from types import SimpleNamespace

import pytest

from src.assist.infrastructure import AssistRulesManager, RulesFileHandler

RULES_YAML = """
login_query_keywords: [SSO, "single sign-on"]
follow_ups:
  - all_of: [vpn]
    questions: ["Are you connected to the VPN?"]
"""


def test_missing_file_uses_defaults(tmp_path):
    manager = AssistRulesManager()

    rules = manager.load(tmp_path / "absent.yaml")

    assert "password" in rules.login_query_keywords
    assert manager.rules is rules


def test_load_overrides_from_yaml(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text(RULES_YAML, encoding="utf-8")

    rules = AssistRulesManager().load(path)

    assert rules.login_query_keywords == ["sso", "single sign-on"]
    assert "refund" in rules.billing_query_keywords
    assert rules.follow_up_questions("vpn needed") == ["Are you connected to the VPN?"]


def test_reload_picks_up_changes(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text("billing_query_keywords: [invoice]\n", encoding="utf-8")
    manager = AssistRulesManager()
    manager.load(path)

    path.write_text("billing_query_keywords: [chargeback]\n", encoding="utf-8")

    assert manager.reload() is True
    assert manager.rules.billing_query_keywords == ["chargeback"]


@pytest.mark.parametrize("broken", [
    "billing_query_keywords: [unclosed\n",
    "follow_ups:\n  - all_of: []\n    questions: [x]\n",
    "- just\n- a list\n",
])
def test_bad_reload_keeps_previous_rules(tmp_path, broken):
    path = tmp_path / "rules.yaml"
    path.write_text(RULES_YAML, encoding="utf-8")
    manager = AssistRulesManager()
    previous = manager.load(path)

    path.write_text(broken, encoding="utf-8")

    assert manager.reload() is False
    assert manager.rules is previous


def test_rules_before_load_raise():
    with pytest.raises(RuntimeError):
        AssistRulesManager().rules


def test_reload_without_load_is_noop():
    assert AssistRulesManager().reload() is False


def test_handler_reloads_only_for_rules_file(tmp_path):
    path = tmp_path / "rules.yaml"
    path.write_text(RULES_YAML, encoding="utf-8")

    class CountingManager(AssistRulesManager):
        reloads = 0

        def reload(self):
            self.reloads += 1
            return True

    manager = CountingManager()
    manager.load(path)
    handler = RulesFileHandler(manager, path)

    handler.on_modified(SimpleNamespace(is_directory=False, src_path=str(tmp_path / "other.yaml")))
    handler.on_modified(SimpleNamespace(is_directory=True, src_path=str(tmp_path)))
    handler.on_modified(SimpleNamespace(is_directory=False, src_path=str(path)))

    assert manager.reloads == 1


def test_stop_watching_without_start_is_safe(tmp_path):
    manager = AssistRulesManager()
    manager.load(tmp_path / "absent.yaml")
    manager.start_watching()
    manager.stop_watching()
