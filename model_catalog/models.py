from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional


@dataclass
class Category:
    """
    A folder above the minimum scan depth, mirrored as a node of the category tree.
    """
    name: str
    path: str               # root-relative, POSIX separators
    depth: int
    parent_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class Model:
    """
    One model leaf. `path` is the join key between disk and catalog.
    """
    name: str
    path: str
    category_id: Optional[int] = None
    author_id: Optional[int] = None
    notes: str = ""
    thumbnail_path: str = ""
    hidden: bool = False
    id: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    scanned_at: Optional[str] = None

    # Joined fields
    tag_ids: List[int] = field(default_factory=list)


@dataclass
class ModelFile:
    model_id: int
    file_path: str
    file_name: str
    file_ext: str           # lowercase, with leading dot
    file_size: int = 0
    id: Optional[int] = None


@dataclass
class ScanStatus:
    running: bool = False
    total: int = 0
    processed: int = 0
    new: int = 0
    removed: int = 0
    message: str = ""

    def as_dict(self) -> dict:
        return {
            'running': self.running,
            'total': self.total,
            'processed': self.processed,
            'new': self.new,
            'removed': self.removed,
            'message': self.message,
        }


class DirKind(Enum):
    EXCLUDED = 'excluded'
    CATEGORY = 'category'
    MODEL_LEAF = 'model_leaf'
    UNCLASSIFIED = 'unclassified'


@dataclass
class DirClassification:
    """
    Result of classifying one directory during the walk.
    `rule` names the detection rule that matched for model leaves.
    """
    kind: DirKind
    rule: Optional[str] = None
    files: List[Path] = field(default_factory=list)


@dataclass
class MergeResult:
    target_id: int
    source_id: int
    moved: int = 0
    duplicates: int = 0
    renamed: int = 0
    missing: int = 0
