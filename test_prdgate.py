#!/usr/bin/env python3
"""
prdgate Test Suite

Run with: python3 test_prdgate.py   (or: pytest)

Tests the library components:
- Content validators
- Rule registry and rule engine
- Check history and statistics
- Audit log
- Configuration cascade
- Logger
- Confirmation gate
- Project state and document store
- Workflow document creation
"""
import contextlib
import io
import json
import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))

from sample_documents import (
    FILLED_B1,
    FILLED_B2,
    FILLED_C0,
    FILLED_C1,
    FakePrompter,
    TestRunner,
    make_project,
    write_doc,
)


def test_section_validators(runner: TestRunner):
    """Test presence validators on labelled sections."""
    print("\n📦 Testing section validators...")
    from prdgate.templates import render_template
    from prdgate.validators import ValidatorSettings, extract_section, section_filled

    template = render_template('B1', iteration=1, date='2026-01-05')
    verdict = section_filled(template, 'Core problem to solve')
    runner.test("Untouched template rejected", not verdict.satisfied, verdict.detail)
    runner.test("Placeholder named in detail", 'placeholder' in verdict.detail, verdict.detail)

    one_sentence = "**Core problem to solve**:\nFinance users cannot export the monthly report today.\n"
    verdict = section_filled(one_sentence, 'Core problem to solve')
    runner.test("One real sentence accepted", verdict.satisfied, verdict.detail)

    short = "**Core problem to solve**:\nExport.\n\n**Problem source**:\n- [x] A1\n"
    verdict = section_filled(short, 'Core problem to solve')
    runner.test("Too-short section rejected", not verdict.satisfied, verdict.detail)
    runner.test("Minimum reported", 'minimum 20' in verdict.detail, verdict.detail)

    verdict = section_filled("# Nothing here\n", 'Core problem to solve')
    runner.test("Missing section rejected", not verdict.satisfied and 'not found' in verdict.detail,
                verdict.detail)

    strict = ValidatorSettings(min_section_chars=200)
    runner.test("Threshold is configurable",
                not section_filled(one_sentence, 'Core problem to solve', strict).satisfied)

    custom = ValidatorSettings(placeholder_markers=('TODO',))
    todo = "**Core problem to solve**:\nTODO write the real problem statement here later\n"
    runner.test("Custom placeholder marker rejected",
                not section_filled(todo, 'Core problem to solve', custom).satisfied)

    body = extract_section(FILLED_B1, 'Success criteria') or ""
    runner.test("Bold label preferred over heading", 'Reduce report' in body, repr(body))

    inline = "**Version goal**: Ship PDF export for finance users this month\n"
    runner.test("Same-line content counts", section_filled(inline, 'Version goal').satisfied)


def test_presence_validators(runner: TestRunner):
    """Test checkbox, list, label and declaration validators."""
    print("\n📦 Testing presence validators...")
    from prdgate.templates import render_template
    from prdgate.validators import (
        checkbox_checked,
        declared_requirement_ids,
        declared_requirements,
        labelled_value,
        list_has_entries,
        pattern_present,
    )

    b1_template = render_template('B1', iteration=1, date='2026-01-05')
    runner.test("Unchecked problem source rejected",
                not checkbox_checked(b1_template, 'Problem source').satisfied)
    runner.test("Checked problem source accepted",
                checkbox_checked(FILLED_B1, 'Problem source').satisfied)

    runner.test("Empty numbered list rejected",
                not list_has_entries(b1_template, 'Not included in this plan').satisfied)
    runner.test("List with entry accepted",
                list_has_entries(FILLED_B1, 'Not included in this plan').satisfied)
    runner.test("Placeholder list entry rejected",
                not list_has_entries("**Acceptance criteria**:\n- [ ] <!-- Fill in: x -->\n",
                                     'Acceptance criteria').satisfied)

    runner.test("Empty label rejected", not labelled_value("- Trigger:\n- User goal:\n", 'Trigger').satisfied)
    runner.test("Filled label accepted", labelled_value("- Trigger: month-end close\n", 'Trigger').satisfied)

    runner.test("B2 template declares nothing",
                declared_requirement_ids(render_template('B2', iteration=1, date='x')) == [])
    runner.test("C1 template declares nothing",
                declared_requirement_ids(render_template('C1', iteration=1, date='x')) == [])
    runner.test("B2 declarations found",
                declared_requirement_ids(FILLED_B2) == ['REQ-001', 'REQ-002'],
                str(declared_requirement_ids(FILLED_B2)))
    runner.test("C1 heading declarations found",
                declared_requirement_ids(FILLED_C1) == ['REQ-001', 'REQ-002'],
                str(declared_requirement_ids(FILLED_C1)))
    runner.test("declared_requirements verdict", declared_requirements(FILLED_B2).satisfied)

    runner.test("Pattern inside comment ignored",
                not pattern_present("<!-- mention A0 -->\n", r'\bA0\b', 'baseline reference').satisfied)
    runner.test("Pattern in prose found",
                pattern_present("See A0 for constraints\n", r'\bA0\b', 'baseline reference').satisfied)


def test_cross_reference_validators(runner: TestRunner):
    """Test identifier cross-references between documents."""
    print("\n📦 Testing cross-reference validators...")
    from prdgate.templates import render_template
    from prdgate.validators import acceptance_per_requirement, identifiers_covered, identifiers_within

    runner.test("C1 within B2 scope", identifiers_within(FILLED_B2, FILLED_C1).satisfied)

    drifted = FILLED_C1 + "\n### REQ-003: Scheduled delivery\n"
    verdict = identifiers_within(FILLED_B2, drifted)
    runner.test("Scope drift detected", not verdict.satisfied, verdict.detail)
    runner.test("Drifted id named", 'REQ-003' in verdict.detail, verdict.detail)

    runner.test("Downstream without ids rejected",
                not identifiers_within(FILLED_B2, "no identifiers here").satisfied)
    verdict = identifiers_within("plan without ids", FILLED_C1)
    runner.test("Upstream without ids defers to manual check", verdict.satisfied, verdict.detail)

    verdict = identifiers_covered(FILLED_B2, "Only REQ-001 is delivered")
    runner.test("Uncovered upstream id reported",
                not verdict.satisfied and 'REQ-002' in verdict.detail, verdict.detail)

    runner.test("Every requirement has acceptance", acceptance_per_requirement(FILLED_C1).satisfied)
    missing = (FILLED_C1.split('### REQ-002')[0]
               + "### REQ-002: Export permission check\n\n**Description**:\nOnly finance roles.\n")
    verdict = acceptance_per_requirement(missing)
    runner.test("Missing acceptance reported",
                not verdict.satisfied and 'REQ-002' in verdict.detail, verdict.detail)
    runner.test("C1 template has no acceptance",
                not acceptance_per_requirement(render_template('C1', iteration=1, date='x')).satisfied)


def test_field_checks_and_dimensions(runner: TestRunner):
    """Test named field checks and review dimensions."""
    print("\n📦 Testing field checks and review dimensions...")
    from prdgate.templates import render_template
    from prdgate.validators import (
        DEFAULT_SETTINGS,
        PLAN_FIELD_CHECKS,
        VERSION_FIELD_CHECKS,
        plan_review_dimensions,
        version_review_dimensions,
    )

    filled = {'B1': FILLED_B1, 'B2': FILLED_B2, 'C0': FILLED_C0, 'C1': FILLED_C1}
    templates = {code: render_template(code, iteration=1, date='2026-01-05')
                 for code in ('B1', 'B2', 'C0', 'C1')}

    failed = [c.field for c in PLAN_FIELD_CHECKS if not c.check(filled[c.document], DEFAULT_SETTINGS)]
    runner.test("Filled plan passes field checks", failed == [], str(failed))
    failed = [c.field for c in PLAN_FIELD_CHECKS if not c.check(templates[c.document], DEFAULT_SETTINGS)]
    runner.test("Template fails every plan field check", len(failed) == len(PLAN_FIELD_CHECKS), str(failed))

    failed = [c.field for c in VERSION_FIELD_CHECKS if not c.check(filled[c.document], DEFAULT_SETTINGS)]
    runner.test("Filled version passes field checks", failed == [], str(failed))
    failed = [c.field for c in VERSION_FIELD_CHECKS if not c.check(templates[c.document], DEFAULT_SETTINGS)]
    runner.test("Template fails every version field check",
                len(failed) == len(VERSION_FIELD_CHECKS), str(failed))

    dims = plan_review_dimensions(FILLED_B1, FILLED_B2)
    runner.test("Five plan dimensions", len(dims) == 5, str([d.name for d in dims]))
    runner.test("Filled plan passes review", all(d.verdict for d in dims),
                str([(d.name, d.verdict.detail) for d in dims if not d.verdict]))

    vague = FILLED_B1.replace("Reduce report preparation time from two hours to 10 minutes",
                              "Users are happier with reporting")
    dims = plan_review_dimensions(vague, FILLED_B2)
    runner.test("Unmeasurable success criterion fails goal clarity", not dims[0].verdict.satisfied,
                dims[0].verdict.detail)

    dims = plan_review_dimensions(templates['B1'], templates['B2'])
    runner.test("Template plan fails review", not any(d.verdict for d in dims),
                str([d.name for d in dims if d.verdict]))

    b3 = "# B3 Frozen Plan\n\n" + FILLED_B2
    dims = version_review_dimensions(b3, FILLED_C0, FILLED_C1)
    runner.test("Five version dimensions without items", len(dims) == 5, str(len(dims)))
    runner.test("Filled version passes review", all(d.verdict for d in dims),
                str([(d.name, d.verdict.detail) for d in dims if not d.verdict]))

    dims = version_review_dimensions(b3, FILLED_C0, FILLED_C1, {'REQ-001-pdf-export.md': 'text'})
    runner.test("Traceability dimension added with items", len(dims) == 6 and dims[5].verdict.satisfied,
                str([(d.name, d.verdict.detail) for d in dims]))

    dims = version_review_dimensions(b3, FILLED_C0, FILLED_C1, {'REQ-009-extra.md': 'text'})
    runner.test("Untraceable item fails", not dims[5].verdict.satisfied, dims[5].verdict.detail)


def test_ui_helpers(runner: TestRunner):
    """Test UI prototype helpers."""
    print("\n📦 Testing UI helpers...")
    from prdgate.validators import invalid_component_types, prototype_name_ok

    tree = {'type': 'Page', 'children': [
        {'type': 'Button'},
        {'type': 'Carousel', 'children': [{'type': 'Marquee'}]},
    ]}
    runner.test("Unknown component types found",
                invalid_component_types(tree) == ['Carousel', 'Marquee'], str(invalid_component_types(tree)))
    runner.test("Non-dict tree has no types", invalid_component_types([1, 2]) == [])

    runner.test("Valid prototype name", prototype_name_ok('REQ-001-login.json'))
    runner.test("Missing REQ prefix", not prototype_name_ok('login.json'))
    runner.test("Wrong extension", not prototype_name_ok('REQ-001-login.png'))


def test_rule_registry(runner: TestRunner):
    """Test registry loading and filtering."""
    print("\n📦 Testing rule registry...")
    from prdgate.errors import ConfigurationError
    from prdgate.rules import CheckOptions, Severity, load_registry

    registry = load_registry()
    ids = [rule.id for rule in registry]
    runner.test("Bundled registry loads", len(registry) == 16, str(ids))
    runner.test("Registry order kept", ids[:4] == ['D001', 'D002', 'D003', 'D004'], str(ids))
    runner.test("Lookup is case-insensitive", registry.get('f001') is not None)
    runner.test("Severity parsed", registry.get('V002').severity is Severity.LOW)
    runner.test("Manual rules flagged", registry.get('P001').is_manual)

    selected = [r.id for r in registry.select(CheckOptions(category='v'))]
    runner.test("Category filter", selected == ['V001', 'V002', 'V003', 'V004'], str(selected))

    for options, label in ((CheckOptions(rule_id='Z999'), "rule"), (CheckOptions(category='X'), "category")):
        try:
            registry.select(options)
            runner.test(f"Unknown {label} rejected", False, "no error")
        except ValueError:
            runner.test(f"Unknown {label} rejected", True)

    with tempfile.TemporaryDirectory() as tmpdir:
        cases = {
            'missing': None,
            'malformed': "rules: [\n",
            'unknown category': (
                "categories: {D: Docs}\nrules:\n"
                "  - {id: Q001, category: Q, description: x, severity: HIGH, scope: project}\n"
            ),
            'no checker': (
                "categories: {D: Docs}\nrules:\n"
                "  - {id: D999, category: D, description: x, severity: HIGH, scope: project}\n"
            ),
            'bad severity': (
                "categories: {D: Docs}\nrules:\n"
                "  - {id: D001, category: D, description: x, severity: URGENT, scope: project}\n"
            ),
        }
        for label, content in cases.items():
            path = Path(tmpdir) / f"{label.replace(' ', '_')}.yaml"
            if content is not None:
                path.write_text(content)
            try:
                load_registry(str(path))
                runner.test(f"Registry error: {label}", False, "loaded")
            except ConfigurationError:
                runner.test(f"Registry error: {label}", True)


def test_rule_engine_scopes(runner: TestRunner):
    """Test applicability, manual rules and the checked list."""
    print("\n📦 Testing rule engine scopes...")
    from prdgate.rules import CheckOptions, RuleContext, RuleEngine, load_registry

    registry = load_registry()
    with tempfile.TemporaryDirectory() as tmpdir:
        project = make_project(tmpdir)
        context = RuleContext(project.state, project.store, project.settings)
        engine = RuleEngine()

        report = engine.run(registry, context, CheckOptions(rule_id='F001'))
        skipped = [s['rule_id'] for s in report.skipped]
        runner.test("Inapplicable rule skipped", skipped == ['F001'], str(report.to_dict()))
        runner.test("Skipped rule is not a finding", not report.violations and not report.warnings)
        runner.test("Skipped rule not checked", report.checked_rules == [])
        runner.test("Skip reason given", report.skipped[0]['reason'] == 'version is not frozen',
                    report.skipped[0]['reason'])

        report = engine.run(registry, context)
        runner.test("Fresh iteration passes", report.passed, str(report.to_dict()))
        for rule_id in ('D003', 'D004', 'F002', 'F003'):
            runner.test(f"{rule_id} checked silently", rule_id in report.checked_rules,
                        str(report.checked_rules))
        manual = [s for s in report.skipped if s['rule_id'] in ('P001', 'P002')]
        runner.test("Manual rules skipped", len(manual) == 2 and all('manual' in s['reason'] for s in manual),
                    str(manual))
        summary = report.summary()
        runner.test("Summary counts consistent",
                    summary['total'] + summary['skipped'] == len(registry), str(summary))


def test_rule_engine_findings(runner: TestRunner):
    """Test violations, warnings and idempotence."""
    print("\n📦 Testing rule engine findings...")
    from prdgate.rules import CheckOptions, RuleContext, RuleEngine, load_registry

    registry = load_registry()
    with tempfile.TemporaryDirectory() as tmpdir:
        project = make_project(tmpdir)
        engine = RuleEngine()
        write_doc(project, 'C0', FILLED_C0)
        write_doc(project, 'B1', FILLED_B1)

        context = RuleContext(project.state, project.store, project.settings)
        first = engine.run(registry, context)
        runner.test("Version doc before freeze is a violation",
                    [v.rule_id for v in first.violations] == ['F002'], str(first.to_dict()))
        runner.test("Violation carries severity", first.violations[0].severity == 'CRITICAL')
        runner.test("Run fails", not first.passed)
        runner.test("Unconfirmed start warned",
                    [w.rule_id for w in first.warnings] == ['F003'], str(first.to_dict()))

        second = engine.run(registry, context)
        runner.test("Re-run is idempotent", first.to_dict() == second.to_dict())

        project.state.iteration().plan.frozen = True
        report = engine.run(registry, context, CheckOptions(rule_id='D003'))
        runner.test("State without artifact is inconsistent",
                    len(report.violations) == 1 and 'B3 is missing' in report.violations[0].message,
                    str(report.to_dict()))

        entry = first.history_entry('2026-01-05T10:00:00Z')
        runner.test("History entry tallies", entry['violations_by_rule'] == {'F002': 1}
                    and entry['warnings_by_rule'] == {'F003': 1}, str(entry))


def test_rule_severity_downgrade(runner: TestRunner):
    """Test that LOW severity findings never fail a run."""
    print("\n📦 Testing severity semantics...")
    from prdgate.rules import CheckOptions, RuleContext, RuleEngine, load_registry

    registry = load_registry()
    page = json.dumps({'type': 'Page', 'children': [{'type': 'Button'}]})
    with tempfile.TemporaryDirectory() as tmpdir:
        project = make_project(tmpdir)
        proto_dir = project.store.ui_prototype_dir(project.iteration)
        proto_dir.mkdir(parents=True)
        (proto_dir / 'REQ-001-login.json').write_text(page)
        (proto_dir / 'REQ-001-login.html').write_text('<html></html>')
        (proto_dir / 'Login Page.json').write_text(page)
        (proto_dir / 'Login Page.html').write_text('<html></html>')
        (proto_dir / 'index.md').write_text('# Prototypes\n')

        context = RuleContext(project.state, project.store, project.settings)
        report = RuleEngine().run(registry, context, CheckOptions(category='V'))
        runner.test("Naming issues are warnings", [w.rule_id for w in report.warnings] == ['V002', 'V002'],
                    str(report.to_dict()))
        runner.test("LOW severity recorded", all(w.severity == 'LOW' for w in report.warnings))
        runner.test("Advisory findings do not fail", report.passed, str(report.to_dict()))

        (proto_dir / 'REQ-002-report.json').write_text(
            json.dumps({'type': 'Page', 'children': [{'type': 'Carousel'}]}))
        report = RuleEngine().run(registry, context, CheckOptions(category='V'))
        rule_ids = sorted(v.rule_id for v in report.violations)
        runner.test("Unpaired and invalid prototype are violations", rule_ids == ['V001', 'V004'],
                    str(report.to_dict()))

        (proto_dir / 'index.md').unlink()
        report = RuleEngine().run(registry, context, CheckOptions(rule_id='V003'))
        runner.test("Missing index reported", [v.rule_id for v in report.violations] == ['V003'])


def test_undecodable_documents(runner: TestRunner):
    """Test that files which are not UTF-8 become findings, not aborted runs."""
    print("\n📦 Testing undecodable documents...")
    from prdgate.cli import main
    from prdgate.documents import DocumentKind
    from prdgate.errors import UnreadableDocumentError
    from prdgate.history import CheckHistory
    from prdgate.rules import CheckOptions, RuleContext, RuleEngine, load_registry

    registry = load_registry()
    with tempfile.TemporaryDirectory() as tmpdir:
        project = make_project(tmpdir)
        proto_dir = project.store.ui_prototype_dir(project.iteration)
        proto_dir.mkdir(parents=True)
        (proto_dir / 'REQ-001-a.json').write_bytes(b'{"type": "P\xff"}')
        (proto_dir / 'REQ-001-a.html').write_text('<html></html>')
        (proto_dir / 'index.md').write_text('# Prototypes\n')

        context = RuleContext(project.state, project.store, project.settings)
        report = RuleEngine().run(registry, context, CheckOptions(rule_id='V004'))
        runner.test("Undecodable prototype is a V004 violation",
                    [v.rule_id for v in report.violations] == ['V004'], str(report.to_dict()))
        runner.test("Violation names the encoding", bool(report.violations)
                    and 'UTF-8' in report.violations[0].message, str(report.to_dict()))

        write_doc(project, 'B3', "# B3 Frozen Plan\n\nREQ-001 PDF export\n")
        c1_path = project.store.path_for(DocumentKind.C1, project.iteration)
        c1_path.write_bytes(b'### REQ-001: Export \xff\n')
        try:
            project.store.read(DocumentKind.C1, project.iteration)
            runner.test("Store raises UnreadableDocumentError", False, "decoded")
        except UnreadableDocumentError as e:
            runner.test("Store raises UnreadableDocumentError", e.path == str(c1_path), e.path)

        report = RuleEngine().run(registry, context, CheckOptions(rule_id='S003'))
        runner.test("Rule reading the file reports it", 'S003' in report.checked_rules
                    and [v.rule_id for v in report.violations] == ['S003'], str(report.to_dict()))
        runner.test("Finding points at the file", bool(report.violations)
                    and report.violations[0].location == str(c1_path), str(report.to_dict()))

        cwd = os.getcwd()
        os.chdir(tmpdir)
        stdout = io.StringIO()
        try:
            with contextlib.redirect_stdout(stdout):
                code = main(['check-rules', '--json'])
        finally:
            os.chdir(cwd)
        data = json.loads(stdout.getvalue())
        rule_ids = {v['rule_id'] for v in data['violations']}
        runner.test("check-rules completes with violations", code == 1 and {'V004', 'S003'} <= rule_ids,
                    stdout.getvalue())
        runner.test("Run recorded in history", len(CheckHistory(tmpdir).load()) == 1)


def test_check_history(runner: TestRunner):
    """Test the bounded FIFO history store."""
    print("\n📦 Testing check history...")
    from prdgate.history import CheckHistory, get_history_path

    with tempfile.TemporaryDirectory() as tmpdir:
        history = CheckHistory(tmpdir)
        runner.test("Empty history", history.load() == [])

        for i in range(101):
            history.append({'timestamp': '2026-01-05T10:00:00Z', 'passed': True, 'seq': i})
        entries = history.load()
        runner.test("History capped at 100", len(entries) == 100, str(len(entries)))
        runner.test("Oldest entry evicted", entries[0]['seq'] == 1, str(entries[0]))
        runner.test("Newest entry last", entries[-1]['seq'] == 100, str(entries[-1]))

        small = CheckHistory(tmpdir, max_entries=3)
        small.append({'seq': 'x'})
        runner.test("Smaller cap trims existing history", len(small.load()) == 3)

        oversized = CheckHistory(tmpdir, max_entries=500)
        runner.test("Cap never exceeds 100", oversized.max_entries == 100, str(oversized.max_entries))
        for i in range(105):
            oversized.append({'seq': i})
        runner.test("Oversized cap still keeps 100", len(oversized.load()) == 100,
                    str(len(oversized.load())))

        get_history_path(tmpdir).write_text("{ not json")
        runner.test("Corrupt history reads as empty", history.load() == [])
        runner.test("Append after corruption works", history.append({'seq': 0}) and len(history.load()) == 1)

        get_history_path(tmpdir).write_bytes(b'[{"seq": "\xff"}]')
        runner.test("Undecodable history reads as empty", history.load() == [])


def test_history_recording(runner: TestRunner):
    """Test that check runs record history unless suppressed."""
    print("\n📦 Testing history recording...")
    from prdgate.errors import ConfigurationError
    from prdgate.history import CheckHistory
    from prdgate.workflow import Project, run_checks

    with tempfile.TemporaryDirectory() as tmpdir:
        project = make_project(tmpdir)
        run_checks(project)
        history = CheckHistory(tmpdir)
        entries = history.load()
        runner.test("Run recorded", len(entries) == 1, str(entries))
        runner.test("Entry shape", set(entries[0]) == {
            'timestamp', 'passed', 'summary', 'violations_by_rule', 'warnings_by_rule'}, str(entries[0]))

        run_checks(project, no_log=True)
        runner.test("--no-log suppresses history", len(history.load()) == 1)

        Path(tmpdir, '.prd', 'config.local.yaml').write_text("history:\n  enabled: false\n")
        run_checks(Project.open(tmpdir))
        runner.test("Disabled history not written", len(history.load()) == 1)

        Path(tmpdir, '.prd', 'config.local.yaml').write_text("history:\n  max_entries: 500\n")
        try:
            Project.open(tmpdir)
            runner.test("History cap above 100 rejected", False, "accepted")
        except ConfigurationError:
            runner.test("History cap above 100 rejected", True)


def test_compute_stats(runner: TestRunner):
    """Test statistics aggregation and rendering."""
    print("\n📦 Testing statistics...")
    from prdgate.history import compute_stats, render_stats
    from prdgate.rules import load_registry

    now = datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc)
    history = [
        {'timestamp': '2026-01-01T09:00:00Z', 'passed': False, 'summary': {'violations': 2},
         'violations_by_rule': {'F002': 2}, 'warnings_by_rule': {}},
        {'timestamp': '2026-01-09T09:00:00Z', 'passed': False, 'summary': {'violations': 1},
         'violations_by_rule': {'F002': 1}, 'warnings_by_rule': {'F003': 1}},
        {'timestamp': '2026-01-09T10:00:00Z', 'passed': True, 'summary': {'violations': 0},
         'violations_by_rule': {}, 'warnings_by_rule': {'F003': 1}},
        {'timestamp': '2026-01-10T08:00:00Z', 'passed': True, 'summary': {'violations': 0},
         'violations_by_rule': {}, 'warnings_by_rule': {}},
    ]
    stats = compute_stats(history, now=now)
    runner.test("Total checks", stats.total_checks == 4)
    runner.test("Pass rate rounded percent", stats.pass_rate == 50, str(stats.pass_rate))
    runner.test("Top violation aggregated", stats.top_violations[0] == {'rule_id': 'F002', 'count': 3},
                str(stats.top_violations))
    runner.test("Warnings aggregated", stats.warnings_by_rule == {'F003': 2}, str(stats.warnings_by_rule))
    days = [d['date'] for d in stats.recent_trend]
    runner.test("Trend covers trailing window only", days == ['2026-01-09', '2026-01-10'], str(days))
    runner.test("Per-day pass rate", stats.recent_trend[0]['pass_rate'] == 50
                and stats.recent_trend[0]['violations'] == 1, str(stats.recent_trend[0]))

    empty = compute_stats([])
    runner.test("Empty history stats", empty.total_checks == 0 and empty.pass_rate == 0)

    text = render_stats(stats, load_registry())
    runner.test("Report names top rule", 'Focus on [F002]' in text, text)
    runner.test("Report shows pass rate", 'Pass rate' in text, text)
    runner.test("Empty report hints at check-rules", 'prd check-rules' in render_stats(empty))


def test_audit_log(runner: TestRunner):
    """Test audit log writes, rendering and failure handling."""
    print("\n📦 Testing audit log...")
    from prdgate.audit import AuditLog
    from prdgate.confirmation import ConfirmationRecord

    with tempfile.TemporaryDirectory() as tmpdir:
        audit = AuditLog(tmpdir, 1)
        runner.test("Entry written", audit.record('planning', 'gate_evaluated', {'outcome': 'failed'}))
        entries = audit.entries('planning')
        runner.test("Entry readable", len(entries) == 1 and entries[0]['iteration'] == 1, str(entries))
        runner.test("Entry fields", set(entries[0]) == {'timestamp', 'stage', 'action', 'iteration', 'data'})
        runner.test("Per-iteration directory", audit.log_path('planning').parent.name == 'iteration-01')

        record = ConfirmationRecord('plan_freeze', False, 'Alice', 'interactive',
                                    '2026-01-05T10:00:00Z', 'declined')
        audit.record_confirmation('planning', record)
        last = audit.entries('planning')[-1]
        runner.test("Rejection logged", last['data']['decision'] == 'rejected', str(last))

        markdown = audit.markdown_path('planning').read_text()
        runner.test("Rendering regenerated", '**Entries**: 2' in markdown and 'rejected' in markdown, markdown)

        with audit.log_path('planning').open('a') as f:
            f.write("not json\n")
        runner.test("Malformed line skipped", len(audit.entries('planning')) == 2)

        runner.test("Project-level directory", AuditLog(tmpdir, 0).directory.name == 'project')

    with tempfile.TemporaryDirectory() as tmpdir:
        Path(tmpdir, '.prd').write_text("a file where a directory should be")
        audit = AuditLog(tmpdir, 1)
        try:
            ok = audit.record('planning', 'gate_evaluated', {})
            runner.test("Failed write reported, not raised", ok is False)
        except OSError as e:
            runner.test("Failed write reported, not raised", False, str(e))


def test_config(runner: TestRunner):
    """Test configuration cascade and validation."""
    print("\n📦 Testing configuration...")
    from prdgate.config import AUTO_CONFIRM_ENV, GateConfig
    from prdgate.errors import ConfigurationError

    with tempfile.TemporaryDirectory() as tmpdir:
        config = GateConfig(tmpdir)
        runner.test("Default min chars", config.min_section_chars == 20)
        runner.test("Default placeholder", config.placeholder_markers == ('<!-- Fill in',))
        runner.test("Default history cap", config.history_max_entries == 100)
        runner.test("Auto-confirm off by default", config.auto_confirm is False)

        prd_dir = Path(tmpdir, '.prd')
        prd_dir.mkdir()
        (prd_dir / 'config.yaml').write_text("validators:\n  min_section_chars: 40\n")
        runner.test("Project config applied", GateConfig(tmpdir).min_section_chars == 40)

        (prd_dir / 'config.local.yaml').write_text("validators:\n  min_section_chars: 10\n")
        config = GateConfig(tmpdir)
        runner.test("Local config wins", config.min_section_chars == 10)
        runner.test("Placeholder kept through merge", config.placeholder_markers == ('<!-- Fill in',))
        runner.test("Sources recorded", len(config.sources) >= 2, str(config.sources))

        os.environ[AUTO_CONFIRM_ENV] = '1'
        try:
            runner.test("Env enables auto-confirm", GateConfig(tmpdir).auto_confirm is True)
        finally:
            os.environ.pop(AUTO_CONFIRM_ENV, None)

        (prd_dir / 'config.local.yaml').unlink()
        invalid = {
            'zero cap': "history:\n  max_entries: 0\n",
            'unknown level': "logging:\n  level: loud\n",
            'wrong type': "validators:\n  min_section_chars: many\n",
            'not a mapping': "- a\n- b\n",
            'bool as int': "history:\n  max_entries: true\n",
            'cap above 100': "history:\n  max_entries: 500\n",
        }
        for label, content in invalid.items():
            (prd_dir / 'config.yaml').write_text(content)
            try:
                GateConfig(tmpdir)
                runner.test(f"Invalid config: {label}", False, "accepted")
            except ConfigurationError:
                runner.test(f"Invalid config: {label}", True)


def test_logger(runner: TestRunner):
    """Test JSON logger levels, context and handlers."""
    print("\n📦 Testing logger...")
    from prdgate.logger import FileHandler, JsonLogger, StderrHandler, get_logger

    stream = io.StringIO()
    logger = JsonLogger('info', [StderrHandler(stream)], {'command': 'test'})
    logger.debug("hidden")
    logger.info("shown", rule='D001')
    logger.bind(iteration=2).warning("bound")

    records = [json.loads(line) for line in stream.getvalue().splitlines()]
    runner.test("Level filter", len(records) == 2, str(records))
    runner.test("Base context", records[0]['command'] == 'test' and records[0]['rule'] == 'D001')
    runner.test("Bound context", records[1]['iteration'] == 2 and records[1]['level'] == 'warning')
    runner.test("UTC timestamp", records[0]['timestamp'].endswith('Z'))

    with tempfile.TemporaryDirectory() as tmpdir:
        log_path = Path(tmpdir, 'nested', 'prd.log')
        JsonLogger('info', [FileHandler(log_path)]).info("to file")
        runner.test("File handler creates dirs", log_path.exists())

        blocker = Path(tmpdir, 'blocker')
        blocker.write_text("x")
        try:
            JsonLogger('info', [FileHandler(blocker / 'prd.log')]).error("nowhere")
            runner.test("Broken destination ignored", True)
        except OSError as e:
            runner.test("Broken destination ignored", False, str(e))

        logger = get_logger({'destinations': ['file']}, tmpdir)
        runner.test("Default log file", isinstance(logger.handlers[0], FileHandler)
                    and logger.handlers[0].path == Path(tmpdir) / '.prd' / 'logs' / 'prdgate.log')
        runner.test("No file handler without project", get_logger({'destinations': ['file']}).handlers == [])


def test_confirmation_gate(runner: TestRunner):
    """Test confirmation modes, rejection and audit records."""
    print("\n📦 Testing confirmation gate...")
    from prdgate.audit import AuditLog
    from prdgate.config import AUTO_CONFIRM_ENV, GateConfig
    from prdgate.confirmation import ConfirmationGate, ConfirmationKind

    os.environ.pop(AUTO_CONFIRM_ENV, None)
    with tempfile.TemporaryDirectory() as tmpdir:
        audit = AuditLog(tmpdir, 1)
        config = GateConfig(tmpdir)

        def gate(prompter=None):
            return ConfirmationGate(audit, config, prompter or FakePrompter())

        record = gate().confirm(ConfirmationKind.PLAN_FREEZE, pre_confirmed=True)
        runner.test("Pre-confirmed freeze needs signature",
                    not record.approved and 'signature' in record.reason, str(record))

        prompter = FakePrompter()
        record = gate(prompter).confirm(ConfirmationKind.PLAN_FREEZE, {'summary': 'REPORT'},
                                        pre_confirmed=True, signature='Alice')
        runner.test("Pre-confirmed with signature approved",
                    record.approved and record.signature == 'Alice' and record.method == 'pre_confirmed',
                    str(record))
        runner.test("Summary shown", prompter.shown == ['REPORT'], str(prompter.shown))
        runner.test("No prompt when pre-confirmed", prompter.asked == [], str(prompter.asked))

        record = gate().confirm(ConfirmationKind.PLAN_START, pre_confirmed=True)
        runner.test("Pre-confirmed start needs no signature", record.approved)

        record = gate(FakePrompter(texts=[''])).confirm(ConfirmationKind.VERSION_FREEZE)
        runner.test("Empty signature rejected", not record.approved and record.reason == 'empty signature',
                    str(record))

        record = gate(FakePrompter(texts=['Bob'], confirms=[True])).confirm(ConfirmationKind.VERSION_FREEZE)
        runner.test("Interactive approval", record.approved and record.signature == 'Bob'
                    and record.method == 'interactive', str(record))

        record = gate(FakePrompter(confirms=[True, False])).confirm(ConfirmationKind.PLAN_START)
        runner.test("Unmet start condition rejected",
                    not record.approved and record.reason == 'start condition 2 not met', str(record))

        os.environ[AUTO_CONFIRM_ENV] = '1'
        try:
            prompter = FakePrompter()
            record = ConfirmationGate(audit, GateConfig(tmpdir), prompter).confirm(
                ConfirmationKind.VERSION_FREEZE)
            runner.test("Automatic mode approves", record.approved and record.method == 'automatic'
                        and record.signature == 'automation', str(record))
            runner.test("Automatic mode never prompts", prompter.asked == [])
        finally:
            os.environ.pop(AUTO_CONFIRM_ENV, None)

        decisions = [e['data']['decision'] for e in audit.entries('planning')]
        runner.test("Planning decisions audited", decisions == ['rejected', 'approved', 'approved', 'rejected'],
                    str(decisions))
        decisions = [e['data']['decision'] for e in audit.entries('version')]
        runner.test("Version decisions audited", decisions == ['rejected', 'approved', 'approved'],
                    str(decisions))


def test_project_state(runner: TestRunner):
    """Test state persistence and error taxonomy."""
    print("\n📦 Testing project state...")
    from prdgate.errors import ConfigurationError, PreconditionError
    from prdgate.project_state import (
        ProjectState,
        find_project_root,
        get_state_path,
        load_state,
        save_state,
    )

    with tempfile.TemporaryDirectory() as tmpdir:
        try:
            load_state(tmpdir)
            runner.test("Missing state is a precondition error", False, "loaded")
        except PreconditionError as e:
            runner.test("Missing state is a precondition error", 'prd init' in str(e), str(e))

        state = ProjectState('demo', current_iteration=2)
        state.iteration(2).plan.frozen = True
        state.iteration(2).plan.signature = 'Alice'
        save_state(tmpdir, state)
        loaded = load_state(tmpdir)
        runner.test("State round trip", loaded.is_frozen('plan', 2) and
                    loaded.iteration(2).plan.signature == 'Alice' and loaded.current_iteration == 2)
        runner.test("No temp file left", not get_state_path(tmpdir).with_suffix('.tmp').exists())

        subdir = Path(tmpdir, '02_iterations', 'iteration-02')
        subdir.mkdir(parents=True)
        runner.test("Project root found from subdirectory",
                    find_project_root(str(subdir)) == str(Path(tmpdir).resolve()))

        try:
            ProjectState('demo').iteration()
            runner.test("No iteration is a precondition error", False, "returned")
        except PreconditionError as e:
            runner.test("No iteration is a precondition error", e.remediation == 'prd iteration new')

        for label, content in (('corrupt', "{ nope"), ('old format', json.dumps({'version': '0.1'}))):
            get_state_path(tmpdir).write_text(content)
            try:
                load_state(tmpdir)
                runner.test(f"State {label} rejected", False, "loaded")
            except ConfigurationError:
                runner.test(f"State {label} rejected", True)


def test_document_store(runner: TestRunner):
    """Test document paths and create-once semantics."""
    print("\n📦 Testing document store...")
    from prdgate.documents import DocumentKind, DocumentStore, slugify
    from prdgate.errors import DocumentExistsError

    with tempfile.TemporaryDirectory() as tmpdir:
        store = DocumentStore(tmpdir)
        path = store.create(DocumentKind.B1, 1, "text")
        runner.test("Iteration path", path == Path(tmpdir) / '02_iterations' / 'iteration-01' / 'B1_requirement_plan.md')
        runner.test("Baseline path", store.path_for(DocumentKind.A0).parent.name == '01_baseline')
        try:
            store.create(DocumentKind.B1, 1, "again")
            runner.test("Create once", False, "overwrote")
        except DocumentExistsError:
            runner.test("Create once", store.read(DocumentKind.B1, 1) == "text")

        try:
            store.path_for(DocumentKind.B1)
            runner.test("Iteration required for B1", False, "no error")
        except ValueError:
            runner.test("Iteration required for B1", True)

        runner.test("Missing optional reads empty", store.read_optional(DocumentKind.C1, 1) == "")
        runner.test("First requirement id", store.next_requirement_id(1) == 'REQ-001')
        store.create_requirement_item(1, 'REQ-001', 'PDF export', "item")
        runner.test("Next requirement id", store.next_requirement_id(1) == 'REQ-002')

        Path(tmpdir, '02_iterations', 'iteration-03').mkdir()
        Path(tmpdir, '02_iterations', 'notes').mkdir()
        runner.test("Iterations listed", store.list_iterations() == [1, 3], str(store.list_iterations()))
        runner.test("Slug", slugify('PDF export / monthly') == 'PDF-export-monthly')


def test_workflow_documents(runner: TestRunner):
    """Test document creation order and preconditions."""
    print("\n📦 Testing workflow document creation...")
    from prdgate.documents import DocumentKind
    from prdgate.errors import PreconditionError
    from prdgate.project_state import load_state
    from prdgate.workflow import (
        create_baseline_doc,
        create_plan_doc,
        create_requirement_item,
        create_version_doc,
        iteration_status,
        new_iteration,
    )

    with tempfile.TemporaryDirectory() as tmpdir:
        project = make_project(tmpdir, with_iteration=False)
        try:
            create_plan_doc(project, 'B1', prompter=FakePrompter())
            runner.test("Planning needs an iteration", False, "created")
        except PreconditionError as e:
            runner.test("Planning needs an iteration", e.remediation == 'prd iteration new')

        path = create_baseline_doc(project, 'A0')
        runner.test("Baseline created", path.exists() and 'checkout' in path.read_text())
        try:
            create_baseline_doc(project, 'B1')
            runner.test("B1 is not a baseline doc", False, "created")
        except ValueError:
            runner.test("B1 is not a baseline doc", True)

        runner.test("First iteration", new_iteration(project) == 1)
        runner.test("Iteration persisted", load_state(tmpdir).current_iteration == 1)

        try:
            create_plan_doc(project, 'B2')
            runner.test("B2 requires B1", False, "created")
        except PreconditionError as e:
            runner.test("B2 requires B1", e.remediation == 'prd plan create B1')

        path, record = create_plan_doc(project, 'B1', prompter=FakePrompter(confirms=[True, True, True, False]))
        runner.test("Declined start creates nothing", path is None and not record.approved)
        runner.test("B1 absent after decline", not project.store.exists(DocumentKind.B1, 1))

        path, record = create_plan_doc(project, 'B1', prompter=FakePrompter(confirms=[True] * 4))
        runner.test("Confirmed start creates B1", path is not None and path.exists())
        runner.test("Start confirmation persisted", load_state(tmpdir).iteration(1).start_confirmed)

        path, record = create_plan_doc(project, 'B2')
        runner.test("B2 needs no further confirmation", path.exists() and record is None)

        for label, call in (('version scope', lambda: create_version_doc(project, 'C0')),
                            ('requirement item', lambda: create_requirement_item(project, 'PDF export'))):
            try:
                call()
                runner.test(f"{label} requires frozen plan", False, "created")
            except PreconditionError as e:
                runner.test(f"{label} requires frozen plan", e.remediation == 'prd freeze-plan')

        status = iteration_status(project)
        runner.test("Next step suggested", status['next_step'] == 'prd freeze-plan', str(status))

        actions = [e['action'] for e in project.audit().entries('planning')]
        runner.test("Creation audited", actions.count('document_created') == 2, str(actions))


def main():
    """Run all tests."""
    print("🧪 prdgate Test Suite")
    print("=" * 50)

    os.environ['NO_COLOR'] = '1'
    os.environ.pop('PRDGATE_AUTO_CONFIRM', None)

    runner = TestRunner()

    test_section_validators(runner)
    test_presence_validators(runner)
    test_cross_reference_validators(runner)
    test_field_checks_and_dimensions(runner)
    test_ui_helpers(runner)
    test_rule_registry(runner)
    test_rule_engine_scopes(runner)
    test_rule_engine_findings(runner)
    test_rule_severity_downgrade(runner)
    test_undecodable_documents(runner)
    test_check_history(runner)
    test_history_recording(runner)
    test_compute_stats(runner)
    test_audit_log(runner)
    test_config(runner)
    test_logger(runner)
    test_confirmation_gate(runner)
    test_project_state(runner)
    test_document_store(runner)
    test_workflow_documents(runner)

    return runner.summary()


if __name__ == '__main__':
    sys.exit(main())
