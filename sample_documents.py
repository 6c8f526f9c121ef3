"""
Shared test support: the script-style TestRunner, filled-in document
fixtures and project helpers.

Each text passes every required-field check and review dimension of its
freeze point; the templates in prdgate.templates fail them.
"""

FILLED_B1 = """# B1 Requirement Plan

**Iteration**: 1
**Status**: Draft

---

## 1. Planning Goal

**Core problem to solve**:
Finance users cannot export the monthly report, so they rebuild it by hand in spreadsheets.

**Problem source**:
- [x] A1: a documented break in an existing feature or flow (section: Reports)
- [ ] A2: real user feedback or a data anomaly (feedback: ____)
- [ ] Business or compliance constraint change (details: ____)

**Why a separate planning round**:
Export touches permissions, formatting and storage at once.

---

## 2. Scenarios

**Scenario 1**:
- Trigger: month-end close
- User goal: send the report to the CFO
- Current pain point: copying figures takes two hours

---

## 3. Scope

**Included in this plan**:
1. PDF export of the monthly report

**Not included in this plan**:
1. Scheduled email delivery

**Rationale**:
Delivery depends on the notification service rewrite.

---

## 4. Constraints

- Architecture limits: reuse the report renderer described in A0

---

## 5. Success Criteria

**Success criteria**:
1. Reduce report preparation time from two hours to 10 minutes

---

**Author**: Alice
"""

FILLED_B2 = """# B2 Requirement Breakdown

**Iteration**: 1

---

## 1. Requirement Items

**REQ-001**: PDF export of the monthly report
- Source: B1 scope item 1
- Description: export the monthly report as a PDF
- Priority: P0

**REQ-002**: Export permission check
- Source: B1 constraints
- Description: only finance roles may export
- Priority: P1

---

## 2. Priorities

**P0 items**:
1. REQ-001

**P1 items**:
1. REQ-002

---

## 3. Release Scope

**First release includes**:
REQ-001, REQ-002

**Deferred requirements**:
- none
"""

FILLED_C0 = """# C0 Version Scope

**Iteration**: 1

---

## 1. Version Goal

**Version goal**:
Ship PDF export of the monthly report for finance users.

---

## 2. Version Boundary

**Included in this version**:
REQ-001, REQ-002

**Not included in this version**:
1. Scheduled email delivery
"""

FILLED_C1 = """# C1 Version Requirements

**Iteration**: 1

---

## Requirements

### REQ-001: PDF export of the monthly report

**Description**:
Finance users export the monthly report as a PDF from the report page.

**Business rules**:
- The PDF matches the on-screen report

**Edge cases**:
- An empty month produces a PDF with a notice

**Acceptance criteria**:
- [ ] The exported PDF opens and matches the on-screen totals

### REQ-002: Export permission check

**Description**:
Only users with a finance role see the export button at all.

**Acceptance criteria**:
- [ ] Users without a finance role do not see the export button
"""


class TestRunner:
    """Simple test runner with assertions."""

    __test__ = False

    def __init__(self):
        self.passed = 0
        self.failed = 0
        self.errors = []

    def test(self, name: str, condition: bool, msg: str = ""):
        """Run a single test assertion."""
        if condition:
            print(f"  ✅ {name}")
            self.passed += 1
        else:
            print(f"  ❌ {name}: {msg}")
            self.failed += 1
            self.errors.append(f"{name}: {msg}")

    def summary(self) -> int:
        """Print summary and return exit code."""
        total = self.passed + self.failed
        print()
        print(f"{'='*50}")
        print(f"Results: {self.passed}/{total} tests passed")
        if self.errors:
            print("\nFailures:")
            for err in self.errors:
                print(f"  - {err}")
        return 0 if self.failed == 0 else 1


class FakePrompter:
    """Scripted answers for the Confirmation Gate."""

    def __init__(self, texts=(), confirms=()):
        self.texts = list(texts)
        self.confirms = list(confirms)
        self.shown = []
        self.asked = []

    def confirm(self, message, default=False):
        self.asked.append(message)
        return self.confirms.pop(0) if self.confirms else default

    def text(self, message, default=""):
        self.asked.append(message)
        return self.texts.pop(0) if self.texts else default

    def show(self, message, detail=None):
        self.shown.append(message)


def make_project(directory, with_iteration=True):
    """Initialized project in `directory`, with iteration 1 started by default."""
    from prdgate.workflow import Project, init_project, new_iteration

    init_project(str(directory), 'checkout')
    project = Project.open(str(directory))
    if with_iteration:
        new_iteration(project)
    return project


def write_doc(project, code, text):
    """Write a document directly, bypassing the create-once workflow."""
    from prdgate.documents import DocumentKind

    kind = DocumentKind.from_code(code)
    path = project.store.path_for(kind, project.iteration if kind.per_iteration else None)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding='utf-8')
    return path
