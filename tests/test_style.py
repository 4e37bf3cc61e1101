# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Tests for style learning and style application.
"""

import pytest

from unity_context.models import StylePattern, StyleProfile
from unity_context.style import (
    StyleAnalyzer,
    StyleTransformer,
    analyze_architecture,
    analyze_components,
    analyze_formatting,
    analyze_naming,
)


def _labels(patterns):
    return {p.label: p for p in patterns}


def _consistent_script(i):
    return (
        f"public class Enemy{i} : MonoBehaviour\n"
        "{\n"
        "    private float _speed = 1f;\n"
        "\n"
        "    public void Move()\n"
        "    {\n"
        "        transform.Translate(Vector3.forward * _speed);\n"
        "    }\n"
        "}\n"
    )


@pytest.fixture
def analyzer(source, test_config):
    return StyleAnalyzer(source, test_config)


def test_nine_of_ten_pascal_class_names(analyzer):
    sources = [f"public class Enemy{i} {{ }}" for i in range(9)] + ["public class enemyHelper { }"]
    profile = analyzer.analyze_sources(sources)

    pattern = _labels(profile.by_category("naming"))["PascalCase for classes"]
    assert pattern.confidence == pytest.approx(0.9)
    assert pattern.occurrence_count == 9
    assert pattern.example_samples == ["Enemy0", "Enemy1", "Enemy2"]


def test_eighty_percent_is_not_enough_for_class_pattern():
    sources = [f"class Enemy{i} {{ }}" for i in range(8)] + ["class a { }", "class b { }"]
    assert "PascalCase for classes" not in _labels(analyze_naming(sources))


def test_method_casing_majority_and_tie():
    camel = ["public void moveLeft() { }\npublic void moveRight() { }\npublic void Jump() { }"]
    labels = _labels(analyze_naming(camel))
    assert labels["camelCase for methods"].occurrence_count == 2
    assert labels["camelCase for methods"].confidence == pytest.approx(2 / 3)

    tie = ["public void moveLeft() { }\npublic void Jump() { }"]
    names = _labels(analyze_naming(tie))
    assert "camelCase for methods" not in names
    assert "PascalCase for methods" not in names


def test_underscore_fields():
    sources = ["private int _health;\nprivate int _mana = 3;\nprivate int speed;"]
    pattern = _labels(analyze_naming(sources))["Underscore prefix for private fields"]
    assert pattern.occurrence_count == 2
    assert pattern.example_samples == ["_health", "_mana"]


def test_brace_styles():
    new_line = ["void A()\n{\n}\nvoid B()\n{\n}\nvoid C() {\n}"]
    labels = _labels(analyze_formatting(new_line))
    assert labels["New-line braces"].occurrence_count == 2
    assert labels["New-line braces"].confidence == pytest.approx(2 / 3)

    same_line = ["void A() {\n}\nif (x) {\n}"]
    assert "Same-line braces" in _labels(analyze_formatting(same_line))


def test_indentation_mode_has_fixed_confidence():
    sources = ["class A\n{\n    int a;\n    int b;\n        int c;\n}\n"]
    pattern = _labels(analyze_formatting(sources))["4-space indentation"]
    assert pattern.confidence == 0.9
    assert pattern.occurrence_count == 2


def test_architecture_signatures():
    sources = [
        "private static GameManager instance;",
        "public event Action OnDeath;\npublic GameObject CreateEnemy() { }",
        "public enum EnemyState { Idle }",
        "public class JumpCommand : ICommand { }",
    ]
    labels = _labels(analyze_architecture(sources))

    assert labels["Singleton"].occurrence_count == 1
    assert labels["Singleton"].confidence == pytest.approx(0.25)
    assert labels["Observer"].example_samples == ["event Action"]
    assert "Factory" in labels
    assert "State Machine" in labels
    assert "Command" in labels
    assert "Object Pooling" not in labels


def test_component_threshold():
    sources = ["MonoBehaviour MonoBehaviour MonoBehaviour Rigidbody Rigidbody"]
    labels = _labels(analyze_components(sources))
    assert labels["MonoBehaviour usage"].occurrence_count == 3
    assert labels["MonoBehaviour usage"].confidence == 1.0
    assert "Rigidbody usage" not in labels


def test_confidence_grows_with_sample_size(analyzer):
    small = analyzer.analyze_sources([_consistent_script(i) for i in range(3)])
    large = analyzer.analyze_sources([_consistent_script(i) for i in range(20)])

    assert large.overall_confidence >= small.overall_confidence
    mean_small = sum(p.confidence for p in small.patterns) / len(small.patterns)
    assert small.overall_confidence == pytest.approx(mean_small * 0.3)


def test_empty_corpus(analyzer):
    profile = analyzer.analyze_sources([])
    assert profile.patterns == []
    assert profile.overall_confidence == 0.0
    assert profile.analyzed_unit_count == 0


def test_analyze_project_reads_scripts(analyzer, unity_project):
    profile = analyzer.analyze_project(unity_project)
    assert profile.analyzed_unit_count == 3
    labels = _labels(profile.patterns)
    assert "PascalCase for classes" in labels
    assert "Singleton" in labels
    assert labels["MonoBehaviour usage"].occurrence_count == 3

    data = profile.to_dict()
    assert data["analyzedUnitCount"] == 3
    assert isinstance(data["patterns"], list)


def _profile(*labels):
    patterns = []
    for label in labels:
        category = "naming" if "prefix" in label.lower() else "formatting"
        patterns.append(StylePattern(category, label, 1, 0.9))
    return StyleProfile(patterns=patterns, analyzed_unit_count=10, overall_confidence=0.9)


def test_transformer_adds_underscore_prefix():
    code = "private float speed = 5f;\nprivate int _health;"
    styled = StyleTransformer().apply_style(code, _profile("Underscore prefix for private fields"))
    assert styled == "private float _speed = 5f;\nprivate int _health;"


def test_transformer_brace_normalization():
    transformer = StyleTransformer()
    assert transformer.apply_style("void A() {\n}", _profile("New-line braces")) == "void A()\n{\n}"
    assert transformer.apply_style("void A()\n    {\n}", _profile("Same-line braces")) == "void A() {\n}"


def test_transformer_reindents():
    code = "public class A {\nvoid B() {\nx();\n\n}\n}"
    styled = StyleTransformer().apply_style(code, _profile("4-space indentation"))
    assert styled == "public class A {\n    void B() {\n        x();\n\n    }\n}"


def test_transformer_without_patterns_is_identity():
    code = "private float speed;\nvoid A() {\n}"
    empty = StyleProfile(patterns=[], analyzed_unit_count=0, overall_confidence=0.0)
    assert StyleTransformer().apply_style(code, empty) == code


def test_style_pattern_clamps_examples_and_confidence():
    pattern = StylePattern("component", "Animator usage", 9, 4.5, ["a", "b", "c", "d"])
    assert pattern.confidence == 1.0
    assert pattern.example_samples == ["a", "b", "c"]
