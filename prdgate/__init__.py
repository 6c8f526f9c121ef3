"""
prdgate - workflow gates for product requirement documents

Tracks the documents of each iteration, decides whether a stage may be
frozen, requires an explicit confirmation before the freeze is committed,
and keeps an audit trail plus a bounded history of rule checks.

Architecture:
- documents.py: Convention-based document paths and file I/O
- validators.py: Pure text validators (presence and cross-reference)
- rules.py: Rule registry (rules.yaml) and the rule engine
- history.py: Bounded check history and statistics
- freeze_gate.py: Freeze gate state machine and pipeline
- confirmation.py: Human-in-the-loop confirmation gate
- audit.py: Append-only per-iteration audit log
- project_state.py: ProjectState persistence (.prd/state.json)
- config.py: Configuration loading (global → project → local)
- workflow.py: Command-level operations used by cli.py

Usage:
    from prdgate.workflow import Project
    from prdgate.freeze_gate import FreezeGateController, FreezeOptions, FreezePoint

    project = Project.open('/path/to/project')
    controller = FreezeGateController(project.root, project.state, project.config)
    report = controller.evaluate(FreezePoint.PLAN)

    if not report.passed:
        print("Plan is not ready to freeze")
"""

__version__ = "1.0.0"
