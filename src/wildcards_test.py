# wildcards_test.py
from __future__ import annotations

import pytest

from ruleflow.errors import InconsistentWildcard
from ruleflow.wildcards import check_same_wildcards, fill, match, wildcard_names


def test_match_extracts_binding():
    assert match("trimmed/{sample}_{read}.fq", "trimmed/A_1.fq") == {"sample": "A", "read": "1"}


def test_match_returns_none_when_shape_differs():
    assert match("trimmed/{sample}.fq", "mapped/A.bam") is None
    assert match("trimmed/{sample}.fq", "trimmed/A.fq.gz") is None


def test_placeholder_does_not_span_slash():
    assert match("{sample}.fq", "data/A.fq") is None


def test_constraint_can_allow_slash():
    assert match("{path,.+}.fq", "data/A.fq") == {"path": "data/A"}


def test_constraint_restricts_values():
    assert match("{sample,[A-Z]+}.txt", "abc.txt") is None
    assert match("{sample,[A-Z]+}.txt", "ABC.txt") == {"sample": "ABC"}


def test_placeholder_is_non_greedy_within_segment():
    assert match("{sample}_{read}.fq", "a_b_1.fq") == {"sample": "a", "read": "b_1"}


def test_repeated_wildcard_same_value():
    assert match("{x}/{x}.txt", "A/A.txt") == {"x": "A"}


def test_repeated_wildcard_different_value_fails():
    with pytest.raises(InconsistentWildcard) as exc:
        match("{x}/{x}.txt", "A/B.txt")
    assert exc.value.name == "x"


def test_fill_substitutes_and_checks_binding():
    assert fill("mapped/{sample}.bam", {"sample": "A"}) == "mapped/A.bam"
    assert fill("{sample,[A-Z]+}.bam", {"sample": "A"}) == "A.bam"
    with pytest.raises(InconsistentWildcard, match="not bound"):
        fill("{x}_2.fq", {"sample": "A"}, rule="trim")


def test_wildcard_names_in_order():
    assert wildcard_names("{b}/{a}_{b}.txt") == ["b", "a"]


def test_outputs_must_share_wildcards():
    check_same_wildcards(["{s}.bam", "{s}.bai"], "map")
    with pytest.raises(InconsistentWildcard):
        check_same_wildcards(["{s}.bam", "{r}.bai"], "map")
