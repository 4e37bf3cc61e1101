# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Code style learning for Unity projects.

StyleAnalyzer scans C# scripts with regular expressions and reports
naming, formatting, architecture and component conventions with a
confidence score. StyleTransformer applies a profile back to generated
code with plain text substitution; it is not parser-backed and can misfire
on braces inside string literals.
"""

import logging
import re
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from .config import Config, get_config
from .models import StylePattern, StyleProfile
from .source import SourceAccessor

logger = logging.getLogger(__name__)

TYPE_NAME_RE = re.compile(r"\b(?:class|struct|interface)\s+(\w+)")
METHOD_NAME_RE = re.compile(r"(?:public|private|protected)\s+\w+\s+(\w+)\s*\(")
FIELD_NAME_RE = re.compile(r"(?:private|public|protected)\s+\w+\s+(\w+)\s*[;=]")

PASCAL_RE = re.compile(r"^[A-Z][a-zA-Z0-9]*$")
CAMEL_RE = re.compile(r"^[a-z][a-zA-Z0-9]*$")
UNDERSCORE_RE = re.compile(r"^_[a-z][a-zA-Z0-9]*$")

SAME_LINE_BRACE_RE = re.compile(r"\)[ \t]*\{")
NEW_LINE_BRACE_RE = re.compile(r"\)[ \t]*\r?\n\s*\{")
INDENT_RE = re.compile(r"^([ \t]+)\S")

CLASS_PASCAL_THRESHOLD = 0.8
COMPONENT_MIN_OCCURRENCES = 2
FULL_CONFIDENCE_FILE_COUNT = 10

ARCHITECTURE_SIGNATURES = {
    "Singleton": re.compile(r"private static \w+ instance", re.IGNORECASE),
    "Observer": re.compile(r"event\s+\w+", re.IGNORECASE),
    "Factory": re.compile(r"Create\w+\(", re.IGNORECASE),
    "Object Pooling": re.compile(r"ObjectPool|Pool\w+", re.IGNORECASE),
    "State Machine": re.compile(r"enum\s+\w*State|State\s+currentState", re.IGNORECASE),
    "Command": re.compile(r"interface\s+I\w*Command|class\s+\w*Command", re.IGNORECASE),
}

COMPONENTS = (
    "MonoBehaviour",
    "ScriptableObject",
    "NetworkBehaviour",
    "Rigidbody",
    "Collider",
    "Transform",
    "Animator",
)


def _collect(regex: re.Pattern, sources: Iterable[str]) -> list[str]:
    return [m.group(1) for text in sources for m in regex.finditer(text)]


def analyze_naming(sources: list[str]) -> list[StylePattern]:
    patterns = []

    type_names = _collect(TYPE_NAME_RE, sources)
    if type_names:
        pascal = sum(1 for n in type_names if PASCAL_RE.match(n))
        share = pascal / len(type_names)
        if share > CLASS_PASCAL_THRESHOLD:
            patterns.append(
                StylePattern("naming", "PascalCase for classes", pascal, share, type_names[:3])
            )

    method_names = _collect(METHOD_NAME_RE, sources)
    if method_names:
        pascal = [n for n in method_names if PASCAL_RE.match(n)]
        camel = [n for n in method_names if CAMEL_RE.match(n)]
        if len(pascal) > len(camel):
            patterns.append(
                StylePattern(
                    "naming",
                    "PascalCase for methods",
                    len(pascal),
                    len(pascal) / len(method_names),
                    [n for n in method_names if n[0].isupper()][:3],
                )
            )
        elif len(camel) > len(pascal):
            patterns.append(
                StylePattern(
                    "naming",
                    "camelCase for methods",
                    len(camel),
                    len(camel) / len(method_names),
                    [n for n in method_names if n[0].islower()][:3],
                )
            )

    field_names = _collect(FIELD_NAME_RE, sources)
    if field_names:
        camel = sum(1 for n in field_names if CAMEL_RE.match(n))
        underscore = sum(1 for n in field_names if UNDERSCORE_RE.match(n))
        if underscore > camel * 0.5:
            patterns.append(
                StylePattern(
                    "naming",
                    "Underscore prefix for private fields",
                    underscore,
                    underscore / len(field_names),
                    [n for n in field_names if n.startswith("_")][:3],
                )
            )

    return patterns


def _most_common(values: list[int]) -> int:
    """Most frequent value; ties go to the value that reached the count first."""
    counts: Counter = Counter()
    best, best_count = 0, 0
    for value in values:
        counts[value] += 1
        if counts[value] > best_count:
            best, best_count = value, counts[value]
    return best


def analyze_formatting(sources: list[str]) -> list[StylePattern]:
    patterns = []

    same_line = sum(len(SAME_LINE_BRACE_RE.findall(text)) for text in sources)
    new_line = sum(len(NEW_LINE_BRACE_RE.findall(text)) for text in sources)
    if same_line > new_line:
        patterns.append(
            StylePattern(
                "formatting",
                "Same-line braces",
                same_line,
                same_line / (same_line + new_line),
                ["method() {", "if (condition) {"],
            )
        )
    elif new_line > same_line:
        patterns.append(
            StylePattern(
                "formatting",
                "New-line braces",
                new_line,
                new_line / (same_line + new_line),
                ["method()\\n{", "if (condition)\\n{"],
            )
        )

    widths = []
    for text in sources:
        for line in text.split("\n"):
            m = INDENT_RE.match(line)
            if m:
                widths.append(len(m.group(1)))
    if widths:
        width = _most_common(widths)
        patterns.append(
            StylePattern(
                "formatting",
                f"{width}-space indentation",
                widths.count(width),
                0.9,
                [f"{' ' * width}code"],
            )
        )

    return patterns


def analyze_architecture(sources: list[str]) -> list[StylePattern]:
    patterns = []
    for name, regex in ARCHITECTURE_SIGNATURES.items():
        frequency = 0
        examples = []
        for text in sources:
            m = regex.search(text)
            if m:
                frequency += 1
                if len(examples) < 3:
                    examples.append(m.group(0))
        if frequency:
            patterns.append(
                StylePattern(
                    "architecture", name, frequency, min(frequency / len(sources), 1.0), examples
                )
            )
    return patterns


def analyze_components(sources: list[str]) -> list[StylePattern]:
    patterns = []
    for component in COMPONENTS:
        regex = re.compile(rf"\b{component}\b")
        frequency = sum(len(regex.findall(text)) for text in sources)
        if frequency > COMPONENT_MIN_OCCURRENCES:
            patterns.append(
                StylePattern(
                    "component",
                    f"{component} usage",
                    frequency,
                    min(frequency / (len(sources) * 2), 1.0),
                    [component],
                )
            )
    return patterns


def overall_confidence(patterns: list[StylePattern], unit_count: int) -> float:
    """Mean pattern confidence, scaled down for small samples."""
    if not patterns:
        return 0.0
    mean = sum(p.confidence for p in patterns) / len(patterns)
    return mean * min(unit_count / FULL_CONFIDENCE_FILE_COUNT, 1.0)


class StyleAnalyzer:
    """Learns a StyleProfile from a project's scripts."""

    def __init__(self, source: SourceAccessor, config: Optional[Config] = None):
        self.source = source
        self.config = config or get_config()

    def analyze_project(self, project_path: str | Path) -> StyleProfile:
        root = Path(project_path).expanduser().resolve()
        logger.info("Analyzing code style for project: %s", root)
        self.source.add_allowed_path(root)

        units = self.source.get_scripts(root / self.config.scripts_subpath)
        profile = self.analyze_sources([u.raw_content for u in units])
        logger.info(
            "Style analysis complete: %s patterns from %s scripts (confidence %.2f)",
            len(profile.patterns),
            profile.analyzed_unit_count,
            profile.overall_confidence,
        )
        return profile

    def analyze_sources(self, sources: list[str]) -> StyleProfile:
        sources = list(sources)
        patterns: list[StylePattern] = []
        if sources:
            patterns.extend(analyze_naming(sources))
            patterns.extend(analyze_formatting(sources))
            patterns.extend(analyze_architecture(sources))
            patterns.extend(analyze_components(sources))
        return StyleProfile(
            patterns=patterns,
            analyzed_unit_count=len(sources),
            overall_confidence=overall_confidence(patterns, len(sources)),
            analyzed_at=datetime.now(),
        )


class StyleTransformer:
    """Rewrites code text toward a learned StyleProfile."""

    PRIVATE_FIELD_RE = re.compile(r"private\s+(\w+)\s+([a-z]\w+)")
    INDENT_WIDTH_RE = re.compile(r"\d+")

    def apply_style(self, code: str, profile: StyleProfile) -> str:
        styled = code

        for pattern in profile.by_category("naming"):
            if "underscore prefix" in pattern.label.lower():
                styled = self.PRIVATE_FIELD_RE.sub(r"private \1 _\2", styled)

        for pattern in profile.by_category("formatting"):
            label = pattern.label.lower()
            if "new-line braces" in label:
                styled = SAME_LINE_BRACE_RE.sub(")\n{", styled)
            elif "same-line braces" in label:
                styled = NEW_LINE_BRACE_RE.sub(") {", styled)

            if "indentation" in label:
                m = self.INDENT_WIDTH_RE.search(label)
                styled = self.reindent(styled, int(m.group(0)) if m else 4)

        return styled

    @staticmethod
    def reindent(code: str, spaces: int) -> str:
        """Re-emit each line at depth * spaces, tracking depth by trailing braces."""
        depth = 0
        lines = []
        for line in code.split("\n"):
            stripped = line.strip()
            if stripped.endswith("}"):
                depth = max(0, depth - 1)
            lines.append(" " * (depth * spaces) + stripped if stripped else "")
            if stripped.endswith("{"):
                depth += 1
        return "\n".join(lines)
