"""
Markdown templates for prdgate documents.

Template text carries `<!-- Fill in: ... -->` placeholders and the section
labels the validators scan for. An untouched template therefore fails every
presence check until the operator replaces the placeholders.
"""
from typing import Iterable, Optional


BYPASS_MARKER = "<!-- prdgate:bypassed -->"


A0_TEMPLATE = """# A0 Product Definition

**Project**: {project}
**Created**: {date}

---

## 1. Product Positioning

**Product summary**:
<!-- Fill in: what the product is and who it serves -->

**Target users**:
<!-- Fill in: primary user groups -->

---

## 2. Core Capabilities

**Core capabilities**:
1.
2.

---

## 3. Constraints

**Architecture constraints**:
<!-- Fill in: platforms, integrations and limits the product must respect -->
"""

A1_TEMPLATE = """# A1 Feature Inventory

**Project**: {project}
**Created**: {date}

---

## 1. Live Features

| Feature | Entry point | Status | Notes |
|---------|-------------|--------|-------|
| <!-- Fill in --> | | | |

---

## 2. Known Flow Breaks

**Known flow breaks**:
<!-- Fill in: flows that are broken or incomplete today -->
"""

A2_TEMPLATE = """# A2 Feedback Summary

**Project**: {project}
**Created**: {date}

---

## 1. User Feedback

**User feedback**:
<!-- Fill in: quotes, tickets and interview notes -->

---

## 2. Data Signals

**Data signals**:
<!-- Fill in: metrics and anomalies worth acting on -->

---

## 3. Deferred Items

**Deferred items**:
-
"""

B1_TEMPLATE = """# B1 Requirement Plan

**Iteration**: {iteration}
**Created**: {date}
**Status**: Draft

---

## 1. Planning Goal

**Core problem to solve**:
<!-- Fill in: the concrete problem this plan addresses, traceable to A1/A2 -->

**Problem source**:
- [ ] A1: a documented break in an existing feature or flow (section: ____)
- [ ] A2: real user feedback or a data anomaly (feedback: ____)
- [ ] Business or compliance constraint change (details: ____)

**Why a separate planning round**:
<!-- Fill in: why a small fix is not enough -->

---

## 2. Scenarios

**Scenario 1**:
- Trigger:
- User goal:
- Current pain point:

---

## 3. Scope

**Included in this plan**:
1.
2.

**Not included in this plan**:
1.
2.

**Rationale**:
<!-- Fill in: why the excluded items are out -->

---

## 4. Constraints

- Architecture limits:
- Capabilities relied on:

---

## 5. Success Criteria

**Success criteria**:
1.
2.

---

**Author**:
"""

B2_TEMPLATE = """# B2 Requirement Breakdown

**Iteration**: {iteration}
**Created**: {date}
**Status**: Draft

---

## 1. Requirement Items

<!-- Fill in: one block per requirement item, numbered REQ-001, REQ-002, ... -->

**REQ-001**:
- Source:
- Description:
- Priority: P0 / P1 / P2

---

## 2. Priorities

**P0 items**:
1.

**P1 items**:
1.

**P2 items**:
1.

---

## 3. Release Scope

**First release includes**:
<!-- Fill in: REQ ids that enter the first release -->

**Deferred requirements**:
-
"""

C0_TEMPLATE = """# C0 Version Scope

**Iteration**: {iteration}
**Created**: {date}

---

## 1. Version Goal

**Version goal**:
<!-- Fill in: what this version delivers, derived from the frozen plan (B3) -->

---

## 2. Version Boundary

**Included in this version**:
<!-- Fill in: REQ ids taken from the frozen plan -->

**Not included in this version**:
1.

---

## 3. Delivery

**Batch**: 1 of 1
"""

C1_TEMPLATE = """# C1 Version Requirements

**Iteration**: {iteration}
**Created**: {date}

---

## Requirements

### REQ-001: <!-- Fill in: title -->

**Description**:
<!-- Fill in: what the feature does for the user -->

**Business rules**:
-

**Edge cases**:
-

**Acceptance criteria**:
- [ ] <!-- Fill in: a verifiable condition -->
"""

REQUIREMENT_ITEM_TEMPLATE = """# {req_id}: {title}

**Iteration**: {iteration}
**Created**: {date}

---

**Story**:
<!-- Fill in: As a <user>, I want <capability> so that <benefit> -->

**Business rules**:
-

**Acceptance criteria**:
- [ ] <!-- Fill in: a verifiable condition -->
"""

TEMPLATES = {
    'A0': A0_TEMPLATE,
    'A1': A1_TEMPLATE,
    'A2': A2_TEMPLATE,
    'B1': B1_TEMPLATE,
    'B2': B2_TEMPLATE,
    'C0': C0_TEMPLATE,
    'C1': C1_TEMPLATE,
}


def render_template(code: str, **values) -> str:
    """
    Render the template for a document code.

    Raises:
        KeyError: If no template exists for the code (frozen artifacts have none)
    """
    return TEMPLATES[code].format(**values)


def render_requirement_item(req_id: str, title: str, iteration: int, date: str) -> str:
    return REQUIREMENT_ITEM_TEMPLATE.format(req_id=req_id, title=title, iteration=iteration, date=date)


def render_frozen_artifact(title: str, iteration: int, frozen_at: str,
                           signature: Optional[str], report_lines: Iterable[str],
                           snapshots: Iterable[tuple], bypassed: bool = False) -> str:
    """
    Render a frozen artifact (B3 or C3).

    Args:
        title: Heading, e.g. "B3 Frozen Plan"
        report_lines: Gate report lines to embed (ignored when bypassed)
        snapshots: (label, text) pairs of source documents at freeze time
        bypassed: Gate was skipped with --force
    """
    lines = [
        f"# {title}",
        "",
        f"**Iteration**: {iteration}",
        f"**Frozen at**: {frozen_at}",
        f"**Signed by**: {signature or '-'}",
        "",
        "---",
        "",
        "## Gate Result",
        "",
    ]
    if bypassed:
        lines.extend([
            BYPASS_MARKER,
            "**BYPASSED**: frozen with --force; no existence, field or review checks were run.",
        ])
    else:
        lines.append("**PASSED**: all gate checks passed.")
        lines.append("")
        lines.extend(report_lines)

    for label, text in snapshots:
        lines.extend(["", "---", "", f"## Snapshot: {label}", "", text.rstrip()])

    return "\n".join(lines) + "\n"


def render_review_report(title: str, iteration: int, reviewed_at: str,
                         sources: Iterable[str], report_lines: Iterable[str],
                         passed: bool, freeze_command: str) -> str:
    """Render a standalone review report (R1 or R2). A review never freezes."""
    lines = [
        f"# {title}",
        "",
        f"**Iteration**: {iteration}",
        f"**Reviewed at**: {reviewed_at}",
        "",
        "**Reviewed documents**:",
    ]
    lines.extend(f"- {name}" for name in sources)
    lines.extend(["", "---", "", "## Result", ""])
    if passed:
        lines.append(f"**PASSED**: the freeze conditions are met (run: {freeze_command}).")
    else:
        lines.append("**NOT PASSED**: fix the unchecked items before freezing.")
    lines.append("")
    lines.extend(report_lines)
    lines.extend(["", "---", "", "## Reviewer notes", "", "<!-- Fill in: reviewer notes -->"])
    return "\n".join(lines) + "\n"


def is_bypassed_artifact(text: str) -> bool:
    return BYPASS_MARKER in text
