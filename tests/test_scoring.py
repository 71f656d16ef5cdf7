from __future__ import annotations

from secdigest.config import load
from secdigest.scoring import CandidateItem, HitKind, evaluate, evaluate_all


def make_rules(**sections):
    return load(sections)


def test_label_and_text_hits_reach_threshold():
    rules = make_rules(
        decision={"threshold": 8},
        scoring={
            "labelWeights": {"security": 5},
            "textKeywordWeights": {"CVE": 6},
            "pathWeights": {},
        },
    )
    item = CandidateItem(
        title="Fix header parsing",
        body="Addresses CVE-2024-1111",
        labels=("security",),
        files=("lib/a.rb",),
    )

    result = evaluate(item, rules)

    assert result.score == 11
    assert result.adopt is True
    assert result.strong_signal_match is None
    assert [(h.kind, h.key, h.weight) for h in result.hits] == [
        (HitKind.LABEL, "security", 5),
        (HitKind.TEXT, "CVE", 6),
    ]


def test_score_below_threshold_not_adopted():
    rules = make_rules(
        decision={"threshold": 12},
        strongSignals={"patterns": ["GHSA-"]},
        scoring={
            "labelWeights": {"security": 5},
            "textKeywordWeights": {"CVE": 6},
        },
    )
    item = CandidateItem(
        title="Fix header parsing",
        body="Addresses CVE-2024-1111",
        labels=("security",),
        files=("lib/a.rb",),
    )

    result = evaluate(item, rules)

    assert result.score == 11
    assert result.adopt is False


def test_strong_signal_adopts_at_zero_score():
    rules = make_rules(strongSignals={"patterns": [r"CVE-\d{4}-\d+"]})
    item = CandidateItem(title="Release notes", body="Fixes CVE-2024-1111")

    result = evaluate(item, rules)

    assert result.adopt is True
    assert result.strong_signal_match == r"CVE-\d{4}-\d+"
    assert result.score == 0
    assert result.hits == ()


def test_strong_signal_adopts_negative_score():
    rules = make_rules(
        strongSignals={"patterns": ["advisory"]},
        scoring={"labelWeights": {"docs": -10}},
    )
    item = CandidateItem(title="Link advisory", labels=("docs",))

    result = evaluate(item, rules)

    assert result.score == -10
    assert result.adopt is True


def test_strong_signal_first_declared_wins():
    rules = make_rules(strongSignals={"patterns": ["GHSA", "CVE"]})
    item = CandidateItem(title="CVE-2024-1 and GHSA-xxxx")

    assert evaluate(item, rules).strong_signal_match == "GHSA"


def test_no_strong_signals_below_threshold_never_adopts():
    rules = make_rules(
        decision={"threshold": 3},
        scoring={"textKeywordWeights": {"fix": 2}},
    )
    item = CandidateItem(title="fix a bug")

    result = evaluate(item, rules)

    assert result.score == 2
    assert result.adopt is False


def test_zero_and_unlisted_labels_not_recorded():
    rules = make_rules(scoring={"labelWeights": {"security": 5, "chore": 0}})
    item = CandidateItem(labels=("chore", "random", "security"))

    result = evaluate(item, rules)

    assert [h.key for h in result.hits] == ["security"]
    assert result.score == 5


def test_duplicate_labels_count_once():
    rules = make_rules(scoring={"labelWeights": {"security": 5}})
    item = CandidateItem(labels=("security", "security"))

    assert evaluate(item, rules).score == 5


def test_text_keyword_counts_once_per_pattern():
    rules = make_rules(scoring={"textKeywordWeights": {"XSS": 4}})
    item = CandidateItem(title="XSS fix", body="XSS XSS XSS")

    result = evaluate(item, rules)

    assert result.score == 4
    assert len(result.hits) == 1


def test_path_weight_counts_once_per_matching_file():
    rules = make_rules(scoring={"pathWeights": {"sanitiz": 2}})
    item = CandidateItem(files=(
        "actionview/lib/sanitizer.rb",
        "README.md",
        "actionview/test/sanitizer_test.rb",
    ))

    result = evaluate(item, rules)

    assert result.score == 4
    assert [(h.kind, h.file) for h in result.hits] == [
        (HitKind.PATH, "actionview/lib/sanitizer.rb"),
        (HitKind.PATH, "actionview/test/sanitizer_test.rb"),
    ]


def test_duplicate_files_each_contribute():
    rules = make_rules(scoring={"pathWeights": {"security": 3}})
    item = CandidateItem(files=("lib/security.rb", "lib/security.rb"))

    result = evaluate(item, rules)

    assert result.score == 6
    assert len(result.hits) == 2


def test_empty_files_no_path_or_guide_contributions():
    rules = make_rules(
        scoring={"pathWeights": {".*": 3}},
        securityGuideMapping=[{"tag": "csrf", "scoreBonus": 2, "paths": [".*"]}],
    )

    result = evaluate(CandidateItem(title="anything"), rules)

    assert result.score == 0
    assert result.matched_tags == ()
    assert result.hits == ()


def test_negative_weights_are_recorded():
    rules = make_rules(scoring={
        "textKeywordWeights": {"typo": -4},
        "pathWeights": {"^guides/": -1},
    })
    item = CandidateItem(title="Fix typo", files=("guides/security.md",))

    result = evaluate(item, rules)

    assert result.score == -5
    assert [h.weight for h in result.hits] == [-4, -1]


def test_patterns_are_unanchored_and_case_sensitive():
    rules = make_rules(scoring={"textKeywordWeights": {"CSRF": 4, "forgery": 1}})

    assert evaluate(CandidateItem(body="prevent csrf and FORGERY"), rules).score == 0
    assert evaluate(CandidateItem(body="prevent CSRF attacks"), rules).score == 4


def test_patterns_are_single_line():
    rules = make_rules(scoring={"textKeywordWeights": {"^Body": 1, "Title.Body": 1}})
    item = CandidateItem(title="Title", body="Body")

    assert evaluate(item, rules).score == 0


def test_missing_title_and_body_treated_as_empty():
    rules = make_rules(strongSignals={"patterns": ["^\n\n$"]})
    item = CandidateItem(title=None, body=None)

    assert evaluate(item, rules).strong_signal_match == "^\n\n$"


def test_guide_mapping_keyword_or_path():
    rules = make_rules(securityGuideMapping=[
        {"tag": "csrf", "scoreBonus": 2, "keywords": ["CSRF"], "paths": ["request_forgery"]},
        {"tag": "sql-injection", "scoreBonus": 3, "keywords": ["SQL injection"]},
        {"tag": "xss", "scoreBonus": 0, "paths": ["sanitize_helper"]},
    ])
    item = CandidateItem(
        title="Harden token check",
        files=(
            "actionpack/lib/action_controller/metal/request_forgery_protection.rb",
            "actionview/lib/action_view/helpers/sanitize_helper.rb",
        ),
    )

    result = evaluate(item, rules)

    assert result.matched_tags == ("csrf", "xss")
    assert [(h.kind, h.key, h.weight) for h in result.hits] == [(HitKind.GUIDE, "csrf", 2)]
    assert result.score == 2


def test_guide_mapping_without_patterns_never_fires():
    rules = make_rules(securityGuideMapping=[{"tag": "empty", "scoreBonus": 5}])

    result = evaluate(CandidateItem(title="anything", files=("a.rb",)), rules)

    assert result.matched_tags == ()
    assert result.score == 0


def test_guide_bonus_added_once():
    rules = make_rules(securityGuideMapping=[
        {"tag": "csrf", "scoreBonus": 2, "keywords": ["CSRF", "token"], "paths": ["forgery"]},
    ])
    item = CandidateItem(title="CSRF token", files=("forgery.rb", "forgery_test.rb"))

    assert evaluate(item, rules).score == 2


def test_hits_order_and_score_sum():
    rules = make_rules(
        scoring={
            "labelWeights": {"security": 5, "docs": -2},
            "textKeywordWeights": {"CSRF": 4, "[Vv]ulnerab": 3},
            "pathWeights": {"forgery": 1.5},
        },
        securityGuideMapping=[{"tag": "csrf", "scoreBonus": 2, "keywords": ["CSRF"]}],
    )
    item = CandidateItem(
        title="CSRF vulnerability",
        body="See report",
        labels=("docs", "security"),
        files=("lib/forgery.rb", "test/forgery_test.rb"),
    )

    result = evaluate(item, rules)

    assert [h.kind for h in result.hits] == [
        HitKind.LABEL, HitKind.LABEL,
        HitKind.TEXT, HitKind.TEXT,
        HitKind.PATH, HitKind.PATH,
        HitKind.GUIDE,
    ]
    assert result.score == sum(h.weight for h in result.hits)
    assert result.score == 15


def test_missing_sections_behave_like_empty_sections():
    implicit = load({})
    explicit = load({
        "strongSignals": {"patterns": []},
        "scoring": {"labelWeights": {}, "textKeywordWeights": {}, "pathWeights": {}},
        "securityGuideMapping": [],
    })
    item = CandidateItem(
        title="CVE-2024-1 XSS",
        body="security",
        labels=("security",),
        files=("lib/security.rb",),
    )

    assert evaluate(item, implicit) == evaluate(item, explicit)
    assert evaluate(item, implicit).adopt is False


def test_decision_to_dict():
    rules = make_rules(scoring={"pathWeights": {"auth": 2}})
    result = evaluate(CandidateItem(title="t", files=("auth.rb",)), rules)

    assert result.to_dict() == {
        "adopt": False,
        "score": 2,
        "strong_signal_match": None,
        "matched_tags": [],
        "hits": [{"kind": "path", "key": "auth", "weight": 2, "file": "auth.rb"}],
    }


def test_evaluate_all_keeps_item_order():
    rules = make_rules(scoring={"textKeywordWeights": {"XSS": 1}})
    items = [CandidateItem(title="XSS"), CandidateItem(title="nothing"), CandidateItem(title="XSS!")]

    assert [r.score for r in evaluate_all(items, rules)] == [1, 0, 1]
