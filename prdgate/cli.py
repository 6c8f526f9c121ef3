"""
prdgate CLI

A command-line interface for the PRD workflow gates.

Usage:
    prd init <name>                 # Initialize a project here
    prd iteration new|list|current  # Manage iterations
    prd plan create B1|B2           # Draft the requirement plan
    prd freeze-plan                 # Gate + confirm + freeze the plan (B3)
    prd version create C0|C1        # Draft the version documents
    prd freeze-version              # Gate + confirm + freeze the version (C3)
    prd review plan|version         # Gate checks only, writes R1/R2
    prd change <description>        # Classify and record a change
    prd check-rules                 # Standalone rule check
    prd stats                       # Statistics over past rule checks

Exit codes: 0 success, 1 gate failure, violations, rejection or error.
"""
import argparse
import json
import os
import sys

from . import __version__
from .colors import success, error, warning, info, header, hint, dim
from .documents import DocumentKind
from .errors import PrdGateError
from .freeze_gate import FreezeGateController, FreezeOptions, FreezePoint, render_gate_report
from .history import CheckHistory, compute_stats, render_stats
from .rules import CheckOptions, load_registry, render_report
from .workflow import (
    CHANGE_TYPES,
    Project,
    create_baseline_doc,
    create_plan_doc,
    create_requirement_item,
    create_version_doc,
    has_deferred_feedback,
    init_project,
    iteration_status,
    new_iteration,
    request_change,
    run_checks,
)


def print_json(data) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False, default=str))


def cmd_init(args) -> int:
    directory = os.path.abspath(args.dir or os.getcwd())
    state = init_project(directory, args.name)
    print(success(f"✓ Project '{state.project_name}' initialized in {directory}"))
    print(hint("  Next: prd baseline create A0"))
    return 0


def cmd_iteration(args) -> int:
    project = Project.open(command='iteration')

    if args.action == 'new':
        number = new_iteration(project)
        print(success(f"✓ Iteration {number} created"))
        print(dim(f"  {project.store.iteration_dir(number)}"))
        if has_deferred_feedback(project):
            print(warning("  A2 lists deferred items; consider them for this planning round."))
        print(hint("  Next: prd plan create B1"))
    elif args.action == 'list':
        numbers = project.store.list_iterations()
        if not numbers:
            print(dim("No iterations yet (run: prd iteration new)"))
        for number in numbers:
            marker = '*' if number == project.iteration else ' '
            frozen = [s for s in ('plan', 'version') if project.state.is_frozen(s, number)]
            suffix = f" (frozen: {', '.join(frozen)})" if frozen else ""
            print(f" {marker} iteration {number}{suffix}")
    else:
        if project.iteration < 1:
            print(dim("No active iteration"))
        else:
            print(info(f"Current iteration: {project.iteration}"))
    return 0


def cmd_baseline(args) -> int:
    project = Project.open(command='baseline')
    path = create_baseline_doc(project, args.doc)
    print(success(f"✓ Created {path}"))
    return 0


def cmd_plan(args) -> int:
    project = Project.open(command='plan')
    path, confirmation = create_plan_doc(project, args.doc, pre_confirmed=args.pm_confirmed,
                                         prompter=args.prompter)
    if path is None:
        reason = confirmation.reason if confirmation else "not confirmed"
        print(error(f"✗ Planning start not confirmed ({reason}); nothing was created"), file=sys.stderr)
        return 1
    print(success(f"✓ Created {path}"))
    return 0


def cmd_version(args) -> int:
    project = Project.open(command='version')
    path = create_version_doc(project, args.doc)
    print(success(f"✓ Created {path}"))
    return 0


def cmd_req(args) -> int:
    project = Project.open(command='req')
    path = create_requirement_item(project, " ".join(args.title))
    print(success(f"✓ Created {path}"))
    return 0


def cmd_status(args) -> int:
    project = Project.open(command='status')
    status = iteration_status(project)

    if args.json:
        print_json(status)
        return 0

    print(header(f"Project: {status['project']}"))
    baseline = " ".join(
        f"{code}{success('✓') if ok else dim('·')}" for code, ok in status['baseline'].items())
    print(f"  Baseline: {baseline}")

    if status['iteration'] < 1:
        print(dim("  No active iteration"))
    else:
        print(f"  Iteration: {status['iteration']}")
        for code, exists in status['documents'].items():
            kind = DocumentKind.from_code(code)
            mark = success('✓') if exists else dim('·')
            print(f"    {mark} {code} {kind.label}")
        for stage in ('plan', 'version'):
            data = status[stage]
            if data['frozen']:
                note = warning(" (bypassed)") if data['bypassed'] else ""
                signer = data['signature'] or '-'
                print(f"  {stage.capitalize()}: {success('frozen')} by {signer}{note}")
            else:
                print(f"  {stage.capitalize()}: {dim('open')}")
        print(f"  Requirement items: {status['requirement_items']}")

    print(hint(f"  Next: {status['next_step']}"))
    return 0


def cmd_check(args) -> int:
    project = Project.open(command='check-rules')
    options = CheckOptions(category=args.category, rule_id=args.rule)
    try:
        report, registry = run_checks(project, options, no_log=args.no_log)
    except ValueError as e:
        print(error(f"✗ {e}"), file=sys.stderr)
        return 1

    if args.json:
        print_json(report.to_dict())
    else:
        print(render_report(report, registry))
    return 0 if report.passed else 1


def _freeze(args, point: FreezePoint) -> int:
    project = Project.open(command=f"freeze-{point.value}")
    options = FreezeOptions(
        force=args.force,
        pre_confirmed=args.pm_confirmed,
        signature=args.signature,
        output_format='json' if args.json else 'text',
    )
    controller = FreezeGateController(project.root, project.state, project.config,
                                      store=project.store, logger=project.logger)
    if args.prompter is not None:
        controller.confirmation_gate.prompter = args.prompter
    outcome = controller.freeze(point, options)

    if args.json:
        print_json(outcome.to_dict())
        return outcome.exit_code

    if outcome.confirmation is None:
        print(render_gate_report(outcome.report))
    if outcome.frozen:
        label = "Plan" if point is FreezePoint.PLAN else "Version"
        print(success(f"✓ {label} frozen: {outcome.artifact_path}"))
        if outcome.report.bypassed:
            print(warning("  Recorded as BYPASSED: the gate checks were skipped"))
    elif outcome.confirmation is not None:
        reason = outcome.confirmation.reason or "not confirmed"
        print(error(f"✗ Freeze not confirmed ({reason}); nothing was written"), file=sys.stderr)
    else:
        print(error("✗ Freeze gate failed; fix the items above and retry"), file=sys.stderr)
    return outcome.exit_code


def cmd_freeze_plan(args) -> int:
    return _freeze(args, FreezePoint.PLAN)


def cmd_freeze_version(args) -> int:
    return _freeze(args, FreezePoint.VERSION)


def cmd_review(args) -> int:
    project = Project.open(command='review')
    point = FreezePoint(args.stage)
    controller = FreezeGateController(project.root, project.state, project.config,
                                      store=project.store, logger=project.logger)
    outcome = controller.review(point)

    if args.json:
        print_json(outcome.to_dict())
        return outcome.exit_code

    print(render_gate_report(outcome.report))
    if outcome.path is None:
        print(error("✗ Review needs every required document; nothing was written"), file=sys.stderr)
        return outcome.exit_code
    print(success(f"✓ Review report written: {outcome.path}"))
    if outcome.report.passed:
        print(hint(f"  Next: prd freeze-{point.value}"))
    return outcome.exit_code


def cmd_change(args) -> int:
    project = Project.open(command='change')
    request = request_change(project, " ".join(args.description), args.type)

    if args.json:
        print_json(request.to_dict())
        return 0 if request.accepted else 1

    print(header(f"Change request ({request.phase.replace('_', ' ')})"))
    for line in request.guidance:
        print(f"  - {line}")
    if request.frozen_artifact:
        note = "recorded" if request.recorded else "NOT recorded (audit write failed)"
        print(dim(f"  Audit: {note} against {request.frozen_artifact}"))
    if not request.accepted:
        print(error("✗ New requirements are refused after the plan freeze"), file=sys.stderr)
        return 1
    print(success("✓ Change accepted"))
    return 0


def cmd_stats(args) -> int:
    project = Project.open(command='stats')
    history = CheckHistory(project.root, project.config.history_max_entries, project.logger)
    stats = compute_stats(
        history.load(),
        top_n=project.config.get('stats', 'top_n'),
        trend_days=project.config.get('stats', 'trend_days'),
    )
    if args.json:
        print_json(stats.to_dict())
    else:
        print(render_stats(stats, load_registry(project.config.rules_file)))
    return 0


def _add_freeze_arguments(parser) -> None:
    parser.add_argument('--force', action='store_true',
                        help='Skip all gate checks (recorded as BYPASSED)')
    parser.add_argument('--pm-confirmed', action='store_true',
                        help='Confirmation already happened out of band (requires --signature)')
    parser.add_argument('--signature', help='Signature recorded with the freeze')
    parser.add_argument('--json', action='store_true', help='Output the outcome as JSON')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='prd',
        description='prdgate - workflow gates for product requirement documents',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
    prd init checkout                   # Initialize a project here
    prd iteration new                   # Start iteration 1
    prd plan create B1                  # Confirm start conditions, draft B1
    prd freeze-plan                     # Gate, confirm with signature, write B3
    prd freeze-plan --pm-confirmed --signature Alice
    prd review plan                     # Write R1 without freezing
    prd change --type priority "Move REQ-002 to batch 2"
    prd check-rules --category F        # Only flow-order rules
    prd check-rules --rule S003 --json  # One rule, machine-readable
    prd stats                           # Pass rate, top rules, 7-day trend

Environment Variables:
    PRDGATE_AUTO_CONFIRM=1              # Approve confirmations without prompting
    NO_COLOR=1                          # Disable coloured output
'''
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    subparsers = parser.add_subparsers(dest='command', help='Command')

    init_parser = subparsers.add_parser('init', help='Initialize a prdgate project')
    init_parser.add_argument('name', help='Project name')
    init_parser.add_argument('--dir', help='Target directory (default: current)')

    iteration_parser = subparsers.add_parser('iteration', help='Manage iterations')
    iteration_parser.add_argument('action', choices=['new', 'list', 'current'])

    baseline_parser = subparsers.add_parser('baseline', help='Baseline documents')
    baseline_parser.add_argument('action', choices=['create'])
    baseline_parser.add_argument('doc', choices=['A0', 'A1', 'A2'])

    plan_parser = subparsers.add_parser('plan', help='Planning documents')
    plan_parser.add_argument('action', choices=['create'])
    plan_parser.add_argument('doc', choices=['B1', 'B2'])
    plan_parser.add_argument('--pm-confirmed', action='store_true',
                             help='Start conditions already confirmed out of band')

    version_parser = subparsers.add_parser('version', help='Version documents')
    version_parser.add_argument('action', choices=['create'])
    version_parser.add_argument('doc', choices=['C0', 'C1'])

    req_parser = subparsers.add_parser('req', help='Requirement items')
    req_parser.add_argument('action', choices=['create'])
    req_parser.add_argument('title', nargs='+', help='Requirement title')

    status_parser = subparsers.add_parser('status', help='Show iteration status')
    status_parser.add_argument('--json', action='store_true', help='Output JSON')

    check_parser = subparsers.add_parser('check-rules', aliases=['check'],
                                         help='Run the rule engine')
    check_parser.add_argument('--category', help='Only rules of this category (D, F, S, V, P)')
    check_parser.add_argument('--rule', help='Only this rule id')
    check_parser.add_argument('--json', action='store_true', help='Output JSON')
    check_parser.add_argument('--no-log', action='store_true',
                              help='Do not record this run in the check history')

    freeze_plan_parser = subparsers.add_parser('freeze-plan', help='Freeze the plan (B3)')
    _add_freeze_arguments(freeze_plan_parser)

    freeze_version_parser = subparsers.add_parser('freeze-version', help='Freeze the version (C3)')
    _add_freeze_arguments(freeze_version_parser)

    review_parser = subparsers.add_parser('review',
                                          help='Review a stage and write R1/R2 without freezing')
    review_parser.add_argument('stage', choices=['plan', 'version'])
    review_parser.add_argument('--json', action='store_true', help='Output JSON')

    change_parser = subparsers.add_parser('change', help='Classify and record a requirement change')
    change_parser.add_argument('description', nargs='+', help='What changes')
    change_parser.add_argument('--type', choices=CHANGE_TYPES, default='refine',
                               help='Kind of change (default: refine)')
    change_parser.add_argument('--json', action='store_true', help='Output JSON')

    stats_parser = subparsers.add_parser('stats', help='Statistics over the check history')
    stats_parser.add_argument('--json', action='store_true', help='Output JSON')

    return parser


COMMANDS = {
    'init': cmd_init,
    'iteration': cmd_iteration,
    'baseline': cmd_baseline,
    'plan': cmd_plan,
    'version': cmd_version,
    'req': cmd_req,
    'status': cmd_status,
    'check-rules': cmd_check,
    'check': cmd_check,
    'freeze-plan': cmd_freeze_plan,
    'freeze-version': cmd_freeze_version,
    'review': cmd_review,
    'change': cmd_change,
    'stats': cmd_stats,
}


def main(argv=None, prompter=None) -> int:
    """
    CLI entry point.

    Args:
        argv: Arguments (defaults to sys.argv[1:])
        prompter: Prompter override for confirmations

    Returns:
        Exit code
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    args.prompter = prompter

    if not args.command:
        args.command = 'status'
        args.json = False

    try:
        return COMMANDS[args.command](args)
    except PrdGateError as e:
        print(error(f"✗ {e}"), file=sys.stderr)
        return 1
    except ValueError as e:
        print(error(f"✗ {e}"), file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
