import re

import pytest

from alert_bridge.alerts.classifier import AlertClassifier, CategoryRule, load_rules_config
from conftest import SYSTEM_SENDER, make_item


@pytest.fixture
def classifier():
    return AlertClassifier.from_config(SYSTEM_SENDER, load_rules_config())


def test_requires_system_sender(classifier):
    item = make_item(1, "Ошибка STOPAZART", sender="someone@winline.kz")
    assert classifier.classify(item).is_alert is False


def test_requires_severity_keyword(classifier):
    item = make_item(1, "Отчёт STOPAZART за сутки", body="всё штатно")
    assert classifier.classify(item).is_alert is False


def test_keyword_in_body_is_enough(classifier):
    item = make_item(1, "SmartBridge", body="Critical: номер транзакции 98765")
    result = classifier.classify(item)
    assert result.is_alert is True
    assert result.category == "SmartBridge"
    assert result.embedded_id == "98765"


def test_sender_match_is_case_insensitive(classifier):
    item = make_item(1, "Ошибка STOPAZART", body="ID игрока: 111", sender="NoReply@Winline.kz ")
    assert classifier.classify(item).is_alert is True


def test_first_matching_rule_wins(classifier):
    item = make_item(1, "SmartBridge STOPAZART ошибка", body="ID игрока: 111, номер транзакции 5")
    result = classifier.classify(item)
    assert result.category == "STOPAZART"
    assert result.embedded_id == "111"


def test_debtor_registry_rule(classifier):
    item = make_item(1, "Ошибка при проверке в реестре должников", body="id игрока 4242")
    result = classifier.classify(item)
    assert result.category == "Реестр должников"
    assert result.embedded_id == "4242"


def test_unmatched_alert_falls_back_to_default(classifier):
    result = classifier.classify(make_item(1, "Critical failure in payments"))
    assert result.is_alert is True
    assert result.category == "Other"
    assert result.embedded_id is None


def test_missing_id_is_none(classifier):
    result = classifier.classify(make_item(1, "Ошибка STOPAZART", body="без идентификатора"))
    assert result.category == "STOPAZART"
    assert result.embedded_id is None


def test_explicit_keywords_override_rules_file():
    clf = AlertClassifier.from_config(SYSTEM_SENDER, load_rules_config(), severity_keywords=["boom"])
    assert clf.classify(make_item(1, "boom STOPAZART")).is_alert is True
    assert clf.classify(make_item(2, "Ошибка STOPAZART")).is_alert is False


def test_no_keywords_rejected():
    with pytest.raises(ValueError):
        AlertClassifier(SYSTEM_SENDER, [], [CategoryRule(re.compile("x"), "X")])
