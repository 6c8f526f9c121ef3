"""
Convention-based document store.

Maps (iteration, document kind) to a path on disk and provides existence
and read/write primitives. Nothing here interprets document content.
"""
import re
from enum import Enum
from pathlib import Path
from typing import Optional

from .errors import DocumentExistsError, UnreadableDocumentError


BASELINE_DIR = "01_baseline"
ITERATIONS_DIR = "02_iterations"
REQUIREMENT_ITEMS_DIR = "C1_requirements"
UI_PROTOTYPES_DIR = "C1_ui_prototypes"

_ITEM_NAME = re.compile(r'^REQ-(\d{3})-.+\.md$')


class DocumentKind(Enum):
    """Document kinds: (code, file name, lives in iteration dir, label, create command)."""

    A0 = ("A0", "A0_product_definition.md", False, "product definition", "prd baseline create A0")
    A1 = ("A1", "A1_feature_inventory.md", False, "feature inventory", "prd baseline create A1")
    A2 = ("A2", "A2_feedback_summary.md", False, "feedback summary", "prd baseline create A2")
    B1 = ("B1", "B1_requirement_plan.md", True, "requirement plan", "prd plan create B1")
    B2 = ("B2", "B2_requirement_breakdown.md", True, "requirement breakdown", "prd plan create B2")
    B3 = ("B3", "B3_frozen_plan.md", True, "frozen plan", "prd freeze-plan")
    C0 = ("C0", "C0_version_scope.md", True, "version scope", "prd version create C0")
    C1 = ("C1", "C1_version_requirements.md", True, "version requirements", "prd version create C1")
    C3 = ("C3", "C3_frozen_version.md", True, "frozen version", "prd freeze-version")
    R1 = ("R1", "R1_plan_review.md", True, "plan review", "prd review plan")
    R2 = ("R2", "R2_version_review.md", True, "version review", "prd review version")

    def __init__(self, code: str, filename: str, per_iteration: bool,
                 label: str, create_command: str):
        self.code = code
        self.filename = filename
        self.per_iteration = per_iteration
        self.label = label
        self.create_command = create_command

    @classmethod
    def from_code(cls, code: str) -> "DocumentKind":
        try:
            return cls[code.upper()]
        except KeyError:
            raise ValueError(f"Unknown document type: {code}") from None


BASELINE_KINDS = (DocumentKind.A0, DocumentKind.A1, DocumentKind.A2)


def iteration_dirname(number: int) -> str:
    return f"iteration-{number:02d}"


def slugify(title: str) -> str:
    slug = re.sub(r'[^\w-]+', '-', title.strip(), flags=re.UNICODE).strip('-')
    return slug or 'item'


class DocumentStore:
    """File I/O for project documents, rooted at the project directory."""

    def __init__(self, project_dir: str):
        self.root = Path(project_dir)

    def baseline_dir(self) -> Path:
        return self.root / BASELINE_DIR

    def iterations_root(self) -> Path:
        return self.root / ITERATIONS_DIR

    def iteration_dir(self, number: int) -> Path:
        return self.iterations_root() / iteration_dirname(number)

    def path_for(self, kind: DocumentKind, iteration: Optional[int] = None) -> Path:
        if not kind.per_iteration:
            return self.baseline_dir() / kind.filename
        if not iteration or iteration < 1:
            raise ValueError(f"{kind.code} belongs to an iteration; none given")
        return self.iteration_dir(iteration) / kind.filename

    def exists(self, kind: DocumentKind, iteration: Optional[int] = None) -> bool:
        return self.path_for(kind, iteration).is_file()

    def read(self, kind: DocumentKind, iteration: Optional[int] = None) -> str:
        return self.read_path(self.path_for(kind, iteration))

    @staticmethod
    def read_path(path: Path) -> str:
        """
        Read a document file as UTF-8.

        Raises:
            UnreadableDocumentError: If the bytes are not valid UTF-8
        """
        try:
            return Path(path).read_text(encoding='utf-8')
        except UnicodeDecodeError as e:
            raise UnreadableDocumentError(path, e.reason) from e

    def read_optional(self, kind: DocumentKind, iteration: Optional[int] = None) -> str:
        """Document text, or "" when the document does not exist."""
        if not self.exists(kind, iteration):
            return ""
        return self.read(kind, iteration)

    def create(self, kind: DocumentKind, iteration: Optional[int], text: str) -> Path:
        """
        Create a document once.

        Raises:
            DocumentExistsError: If the file is already present
        """
        path = self.path_for(kind, iteration)
        if path.exists():
            raise DocumentExistsError(f"File already exists: {path.name}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding='utf-8')
        return path

    def write_artifact(self, kind: DocumentKind, iteration: int, text: str) -> Path:
        """Write a generated document (B3/C3 artifact, R1/R2 review), replacing any file there."""
        path = self.path_for(kind, iteration)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding='utf-8')
        return path

    def list_iterations(self) -> list[int]:
        root = self.iterations_root()
        if not root.is_dir():
            return []
        numbers = []
        for child in root.iterdir():
            match = re.fullmatch(r'iteration-(\d+)', child.name)
            if child.is_dir() and match:
                numbers.append(int(match.group(1)))
        return sorted(numbers)

    def requirement_items_dir(self, iteration: int) -> Path:
        return self.iteration_dir(iteration) / REQUIREMENT_ITEMS_DIR

    def requirement_item_paths(self, iteration: int) -> list[Path]:
        """Requirement item files (REQ-NNN-*.md), sorted by name."""
        items_dir = self.requirement_items_dir(iteration)
        if not items_dir.is_dir():
            return []
        return sorted(p for p in items_dir.iterdir() if p.is_file() and p.suffix == '.md')

    def next_requirement_id(self, iteration: int) -> str:
        numbers = [
            int(m.group(1))
            for m in (_ITEM_NAME.match(p.name) for p in self.requirement_item_paths(iteration))
            if m
        ]
        return f"REQ-{max(numbers, default=0) + 1:03d}"

    def create_requirement_item(self, iteration: int, req_id: str, title: str, text: str) -> Path:
        path = self.requirement_items_dir(iteration) / f"{req_id}-{slugify(title)}.md"
        if path.exists():
            raise DocumentExistsError(f"File already exists: {path.name}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding='utf-8')
        return path

    def ui_prototype_dir(self, iteration: int) -> Path:
        return self.iteration_dir(iteration) / UI_PROTOTYPES_DIR
