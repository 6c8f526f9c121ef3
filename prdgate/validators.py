"""
Content validator library.

Every validator is a pure function of document text returning a Verdict.
No I/O happens here, so each check can be exercised with literal strings.

Two families:
- Presence validators look for a structural marker (a labelled section, a
  checked checkbox, a list with entries) and tell a filled-in document from
  an untouched template.
- Cross-reference validators compare requirement identifiers (REQ-NNN)
  across two documents to catch scope drift.

The checks are deliberately lexical. A section that is present but still
holds template placeholder markup, or whose content is shorter than the
configured minimum, does not count as filled.
"""
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional


REQUIREMENT_ID = re.compile(r'REQ-\d{3}')

# "**REQ-001**: Title" or "### REQ-001: Title" with a real (non-placeholder) title
DECLARED_REQUIREMENT = re.compile(
    r'^(?:#{1,6}[ \t]*|\*\*)?(REQ-\d{3})\**[ \t]*:\**[ \t]*(?!<!--)(\S.*)$',
    re.MULTILINE,
)

_SECTION_END = re.compile(r'\n(?=[ \t]*(?:#{1,6}\s|---|\*\*[^*\n]+\*\*[ \t]*:))')
_LIST_ENTRY = re.compile(r'^[ \t]*(?:[-*+]|\d+\.)[ \t]+(?:\[[ xX]\][ \t]*)?(.*)$', re.MULTILINE)
_CHECKED_BOX = re.compile(r'\[[xX]\]')
_MARKDOWN_NOISE = re.compile(r'(?m)^[ \t]*(?:[-*+]|\d+\.)[ \t]+|\[[ xX]\]|[#*_>`|]')
_HTML_COMMENT = re.compile(r'<!--.*?-->', re.DOTALL)
_UNCHECKED_LINE = re.compile(r'(?m)^[ \t]*[-*+][ \t]+\[ \].*$')
_MEASURABLE = re.compile(
    r'\d|%|\b(?:increase|increases|reduce|reduces|decrease|raise|lower|reach|at least|at most|within|under)\b',
    re.IGNORECASE,
)
_BASELINE_REFERENCE = re.compile(r'\bA[01]\b|existing feature|already live|current behaviou?r', re.IGNORECASE)
_FEEDBACK_REFERENCE = re.compile(r'\bA2\b|user feedback|support ticket', re.IGNORECASE)

VALID_COMPONENT_TYPES = frozenset({
    'Page', 'Panel', 'Row', 'Col', 'Input', 'Textarea', 'Select', 'Button',
    'Text', 'Table', 'Tabs', 'Badge', 'Card', 'Upload', 'Alert', 'Divider',
    'Diagram', 'Box', 'Arrow', 'Layer', 'DiagramGroup',
})
PROTOTYPE_NAME = re.compile(r'^REQ-\d{3}-[\w-]+\.(?:json|html)$', re.UNICODE)


@dataclass(frozen=True)
class Verdict:
    satisfied: bool
    detail: str

    def __bool__(self) -> bool:
        return self.satisfied


@dataclass(frozen=True)
class ValidatorSettings:
    """Thresholds shared by the presence validators (from the `validators` config)."""
    min_section_chars: int = 20
    placeholder_markers: tuple = ('<!-- Fill in',)


DEFAULT_SETTINGS = ValidatorSettings()


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------

def extract_section(text: str, marker: str) -> Optional[str]:
    """
    Text that follows `marker`, up to the next heading, rule or bold label.

    The match is case-insensitive on the marker. A bold label (`**marker**`)
    is preferred over a heading or prose mention of the same words. Trailing
    `**` and `:` of a label are skipped, so content on the same line is
    included.

    Returns:
        Section body, or None when the marker does not occur
    """
    lowered = text.lower()
    needle = marker.lower()
    index = lowered.find('**' + needle)
    if index >= 0:
        index += 2
    else:
        index = lowered.find(needle)
    if index < 0:
        return None
    rest = text[index + len(marker):]
    rest = re.sub(r'^[*:]+', '', rest)
    end = _SECTION_END.search(rest)
    return rest[:end.start()] if end else rest


def meaningful_length(body: str) -> int:
    """Length of body once list markers, markdown punctuation and spacing are dropped."""
    stripped = _MARKDOWN_NOISE.sub('', body)
    return len(' '.join(stripped.split()))


def has_placeholder(body: str, placeholders: Iterable[str]) -> bool:
    return any(p in body for p in placeholders)


def strip_template_scaffolding(text: str) -> str:
    """Drop HTML comments and unchecked checkbox lines before free-text searches."""
    return _UNCHECKED_LINE.sub('', _HTML_COMMENT.sub('', text))


def requirement_ids(text: str) -> set[str]:
    """Every REQ-NNN mentioned anywhere in text."""
    return set(REQUIREMENT_ID.findall(text))


def declared_requirement_ids(text: str) -> list[str]:
    """REQ ids declared with a filled-in title, in document order, deduplicated."""
    seen = []
    for match in DECLARED_REQUIREMENT.finditer(text):
        req_id = match.group(1)
        if req_id not in seen:
            seen.append(req_id)
    return seen


def split_requirement_blocks(text: str) -> dict[str, str]:
    """Map each declared requirement id to the text of its block."""
    matches = list(DECLARED_REQUIREMENT.finditer(text))
    blocks = {}
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(text)
        blocks.setdefault(match.group(1), text[match.start():end])
    return blocks


# ---------------------------------------------------------------------------
# Presence validators
# ---------------------------------------------------------------------------

def section_filled(text: str, marker: str,
                   settings: ValidatorSettings = DEFAULT_SETTINGS) -> Verdict:
    body = extract_section(text, marker)
    if body is None:
        return Verdict(False, f"section '{marker}' not found")
    if has_placeholder(body, settings.placeholder_markers):
        return Verdict(False, f"section '{marker}' still contains template placeholder")
    length = meaningful_length(body)
    if length < settings.min_section_chars:
        return Verdict(
            False,
            f"section '{marker}' has {length} characters of content "
            f"(minimum {settings.min_section_chars})",
        )
    return Verdict(True, f"section '{marker}' filled")


def list_has_entries(text: str, marker: str,
                     settings: ValidatorSettings = DEFAULT_SETTINGS) -> Verdict:
    body = extract_section(text, marker)
    if body is None:
        return Verdict(False, f"section '{marker}' not found")
    entries = [
        entry.strip() for entry in _LIST_ENTRY.findall(body)
        if entry.strip() and not has_placeholder(entry, settings.placeholder_markers)
        and not entry.strip().startswith('<!--')
    ]
    if not entries:
        return Verdict(False, f"list '{marker}' has no entries")
    return Verdict(True, f"list '{marker}' has {len(entries)} entries")


def checkbox_checked(text: str, marker: str) -> Verdict:
    body = extract_section(text, marker)
    if body is None:
        return Verdict(False, f"section '{marker}' not found")
    if _CHECKED_BOX.search(body):
        return Verdict(True, f"'{marker}' has a checked option")
    return Verdict(False, f"no option checked under '{marker}'")


def labelled_value(text: str, label: str) -> Verdict:
    """`label: value` with a non-empty value on the same line."""
    pattern = re.compile(rf'{re.escape(label)}\**[ \t]*:\**[ \t]*(?!<!--)\S', re.IGNORECASE)
    if pattern.search(text):
        return Verdict(True, f"'{label}' given")
    return Verdict(False, f"'{label}' is empty")


def pattern_present(text: str, pattern: str, description: str) -> Verdict:
    if re.search(pattern, strip_template_scaffolding(text), re.IGNORECASE):
        return Verdict(True, f"{description} present")
    return Verdict(False, f"{description} missing")


def section_mentions_requirements(text: str, marker: str,
                                  settings: ValidatorSettings = DEFAULT_SETTINGS) -> Verdict:
    body = extract_section(text, marker)
    if body is None:
        return Verdict(False, f"section '{marker}' not found")
    if has_placeholder(body, settings.placeholder_markers):
        return Verdict(False, f"section '{marker}' still contains template placeholder")
    ids = sorted(requirement_ids(body))
    if not ids:
        return Verdict(False, f"section '{marker}' lists no REQ identifiers")
    return Verdict(True, f"section '{marker}' lists {', '.join(ids)}")


def declared_requirements(text: str) -> Verdict:
    ids = declared_requirement_ids(text)
    if not ids:
        return Verdict(False, "no requirement items declared (expected 'REQ-001: title')")
    return Verdict(True, f"{len(ids)} requirement items declared")


# ---------------------------------------------------------------------------
# Cross-reference validators
# ---------------------------------------------------------------------------

def identifiers_within(upstream: str, downstream: str) -> Verdict:
    """Every REQ id mentioned downstream must also appear upstream (no scope drift)."""
    upstream_ids = requirement_ids(upstream)
    downstream_ids = requirement_ids(downstream)
    if not downstream_ids:
        return Verdict(False, "downstream document mentions no REQ identifiers")
    if not upstream_ids:
        return Verdict(True, "upstream declares no identifiers; scope must be confirmed manually")
    drift = sorted(downstream_ids - upstream_ids)
    if drift:
        return Verdict(False, f"outside frozen scope: {', '.join(drift)}")
    return Verdict(True, f"all {len(downstream_ids)} identifiers within scope")


def identifiers_covered(upstream: str, downstream: str) -> Verdict:
    """Every REQ id mentioned upstream must also appear downstream."""
    upstream_ids = requirement_ids(upstream)
    missing = sorted(upstream_ids - requirement_ids(downstream))
    if missing:
        return Verdict(False, f"not carried downstream: {', '.join(missing)}")
    return Verdict(True, f"all {len(upstream_ids)} identifiers carried downstream")


def acceptance_per_requirement(text: str,
                               settings: ValidatorSettings = DEFAULT_SETTINGS) -> Verdict:
    blocks = split_requirement_blocks(text)
    if not blocks:
        return Verdict(False, "no requirement items declared")
    missing = [
        req_id for req_id, block in blocks.items()
        if not list_has_entries(block, 'Acceptance criteria', settings)
    ]
    if missing:
        return Verdict(False, f"acceptance criteria missing for {', '.join(missing)}")
    return Verdict(True, f"acceptance criteria defined for all {len(blocks)} requirements")


# ---------------------------------------------------------------------------
# Required-field checks per freeze point
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldCheck:
    """Named presence check against one document (document code, field label, check)."""
    document: str
    field: str
    check: Callable[[str, ValidatorSettings], Verdict]


PLAN_FIELD_CHECKS = (
    FieldCheck('B1', 'Planning goal',
               lambda text, s: section_filled(text, 'Core problem to solve', s)),
    FieldCheck('B1', 'Out of scope',
               lambda text, s: list_has_entries(text, 'Not included in this plan', s)),
    FieldCheck('B1', 'Problem source',
               lambda text, s: checkbox_checked(text, 'Problem source')),
    FieldCheck('B2', 'Requirement list',
               lambda text, s: declared_requirements(text)),
    FieldCheck('B2', 'Priority ranking',
               lambda text, s: list_has_entries(text, 'P0 items', s)),
    FieldCheck('B2', 'First release scope',
               lambda text, s: section_mentions_requirements(text, 'First release includes', s)),
)

VERSION_FIELD_CHECKS = (
    FieldCheck('C0', 'Version goal',
               lambda text, s: section_filled(text, 'Version goal', s)),
    FieldCheck('C0', 'Version boundary',
               lambda text, s: list_has_entries(text, 'Not included in this version', s)),
    FieldCheck('C1', 'Requirement list',
               lambda text, s: declared_requirements(text)),
    FieldCheck('C1', 'Acceptance criteria',
               lambda text, s: acceptance_per_requirement(text, s)),
)


# ---------------------------------------------------------------------------
# Review dimensions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DimensionResult:
    name: str
    verdict: Verdict


def plan_review_dimensions(b1: str, b2: str,
                           settings: ValidatorSettings = DEFAULT_SETTINGS) -> list[DimensionResult]:
    """Five planning review dimensions over the requirement plan and breakdown."""
    results = []

    goal = section_filled(b1, 'Core problem to solve', settings)
    criteria = extract_section(b1, 'Success criteria') or ''
    measurable = bool(list_has_entries(b1, 'Success criteria', settings)) and bool(
        _MEASURABLE.search(_MARKDOWN_NOISE.sub('', _HTML_COMMENT.sub('', criteria))))
    if goal and measurable:
        verdict = Verdict(True, "goal stated with a measurable success criterion")
    elif goal:
        verdict = Verdict(False, "add a measurable success criterion (a number, percentage or target)")
    else:
        verdict = Verdict(False, "describe the core problem in B1")
    results.append(DimensionResult('1. Goal clarity', verdict))

    has_scenario = labelled_value(b1, 'Trigger') and labelled_value(b1, 'User goal')
    if has_scenario:
        backed = _FEEDBACK_REFERENCE.search(strip_template_scaffolding(b1))
        verdict = Verdict(True, "scenario described" + (
            ", backed by user feedback" if backed else "; consider linking A2 feedback"))
    else:
        verdict = Verdict(False, "describe at least one scenario with trigger and user goal in B1")
    results.append(DimensionResult('2. Scenario realism', verdict))

    if _BASELINE_REFERENCE.search(strip_template_scaffolding(b1)):
        verdict = Verdict(True, "plan references the current baseline")
    else:
        verdict = Verdict(False, "reference A0/A1 in B1 to ground the plan in the current product")
    results.append(DimensionResult('3. Baseline consistency', verdict))

    not_doing = list_has_entries(b1, 'Not included in this plan', settings)
    first_release = section_mentions_requirements(b2, 'First release includes', settings)
    priorities = list_has_entries(b2, 'P0 items', settings)
    gaps = [label for label, ok in (('state what is out of scope', not_doing),
                                    ('define the first release', first_release),
                                    ('rank priorities', priorities)) if not ok]
    verdict = Verdict(not gaps, "scope boundary is clear" if not gaps else "please " + ", ".join(gaps))
    results.append(DimensionResult('4. Scope convergence', verdict))

    declared = declared_requirement_ids(b2)
    if declared and first_release:
        verdict = Verdict(True, f"can be versioned: {len(declared)} requirement items")
    else:
        verdict = Verdict(False, "split B2 into requirement items and mark the first release")
    results.append(DimensionResult('5. Versioning readiness', verdict))

    return results


def version_review_dimensions(b3: str, c0: str, c1: str,
                              item_texts: Optional[dict] = None,
                              settings: ValidatorSettings = DEFAULT_SETTINGS) -> list[DimensionResult]:
    """
    Five version review dimensions, plus requirement-item traceability when
    requirement item files exist.

    Args:
        b3: Frozen plan text
        c0: Version scope text ("" when absent)
        c1: Version requirement list text
        item_texts: {file name: text} of requirement item files
    """
    results = []

    goal = section_filled(c0, 'Version goal', settings)
    if not goal:
        goal = section_filled(c1, 'Version goal', settings)
    results.append(DimensionResult(
        '1. Version goal consistency',
        Verdict(True, "version goal defined") if goal
        else Verdict(False, "state the version goal in C0"),
    ))

    results.append(DimensionResult('2. Scope drift', identifiers_within(b3, c1)))

    acceptance = acceptance_per_requirement(c1, settings)
    results.append(DimensionResult('3. Plan coverage', acceptance))

    detail = section_filled(c1, 'Description', settings)
    if detail:
        bounded = list_has_entries(c1, 'Edge cases', settings)
        verdict = Verdict(True, "requirements described" + (
            " with edge cases" if bounded else "; consider adding edge cases"))
    else:
        verdict = Verdict(False, "describe each requirement in C1")
    results.append(DimensionResult('4. Requirement granularity', verdict))

    count = len(declared_requirement_ids(c1))
    ready = count >= 1 and bool(acceptance)
    results.append(DimensionResult(
        '5. Execution readiness',
        Verdict(True, f"{count} requirements ready for delivery") if ready
        else Verdict(False, "every requirement needs acceptance criteria"),
    ))

    if item_texts:
        untraced = []
        for name in sorted(item_texts):
            match = REQUIREMENT_ID.match(name)
            req_id = match.group(0) if match else None
            if req_id is None or req_id not in requirement_ids(c1) or (
                    requirement_ids(b3) and req_id not in requirement_ids(b3)):
                untraced.append(name)
        results.append(DimensionResult(
            '6. Requirement item traceability',
            Verdict(False, f"not traceable to C1/B3: {', '.join(untraced)}") if untraced
            else Verdict(True, f"{len(item_texts)} requirement items traced"),
        ))

    return results


# ---------------------------------------------------------------------------
# UI prototype helpers
# ---------------------------------------------------------------------------

def invalid_component_types(node, valid: frozenset = VALID_COMPONENT_TYPES) -> list[str]:
    """Component types in a UI description tree that are not in the allowed set."""
    found: set[str] = set()

    def walk(current) -> None:
        if not isinstance(current, dict):
            return
        node_type = current.get('type')
        if node_type is not None and node_type not in valid:
            found.add(str(node_type))
        children = current.get('children')
        if isinstance(children, list):
            for child in children:
                walk(child)

    walk(node)
    return sorted(found)


def prototype_name_ok(filename: str) -> bool:
    return bool(PROTOTYPE_NAME.match(filename))
