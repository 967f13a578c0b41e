"""MIME part tree shared by the structural and full-body decoders."""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Union

# Media types treated as attachments even without a filename or disposition
ATTACHMENT_TYPE_PREFIXES = (
    "application/pdf",
    "application/zip",
    "application/x-zip-compressed",
    "application/msword",
    "application/vnd.openxmlformats",
    "application/vnd.ms-excel",
    "application/octet-stream",
    "image/",
    "audio/",
    "video/",
)

BODY_TYPES = ("text/plain", "text/html")


@dataclass
class Leaf:
    """A single, non-multipart body part.

    ``payload`` holds the still transfer-encoded bytes when the part was read
    from a full message, and stays None for parts built from BODYSTRUCTURE.
    """

    content_type: str
    params: Dict[str, str] = field(default_factory=dict)
    disposition: Optional[str] = None
    disposition_params: Dict[str, str] = field(default_factory=dict)
    content_id: str = ""
    encoding: str = ""
    size: int = 0
    payload: Optional[bytes] = None

    @property
    def filename(self) -> str:
        return self.disposition_params.get("filename") or self.params.get("name") or ""

    @property
    def charset(self) -> Optional[str]:
        return self.params.get("charset")


@dataclass
class Multipart:
    subtype: str
    children: List["Part"] = field(default_factory=list)


Part = Union[Leaf, Multipart]


def is_attachment(leaf: Leaf) -> bool:
    """Decide whether a non-body leaf is an attachment."""
    if leaf.disposition == "attachment":
        return True
    if leaf.filename:
        return True
    if leaf.disposition == "inline" and leaf.content_id:
        return True
    return leaf.content_type.startswith(ATTACHMENT_TYPE_PREFIXES)


class PartVisitor:
    """Depth-first walk over a part tree; subclasses override visit_leaf."""

    def visit(self, part: Part) -> None:
        if isinstance(part, Multipart):
            self.visit_multipart(part)
        else:
            self.visit_leaf(part)

    def visit_multipart(self, part: Multipart) -> None:
        for child in part.children:
            self.visit(child)

    def visit_leaf(self, leaf: Leaf) -> None:
        raise NotImplementedError


class PartClassifier(PartVisitor):
    """Splits leaves into the first text/plain and text/html bodies and attachments."""

    def __init__(self):
        self.bodies: Dict[str, Leaf] = {}
        self.attachments: List[Leaf] = []

    def visit_leaf(self, leaf: Leaf) -> None:
        if (
            leaf.content_type in BODY_TYPES
            and leaf.content_type not in self.bodies
            and leaf.disposition != "attachment"
        ):
            self.bodies[leaf.content_type] = leaf
        elif is_attachment(leaf):
            self.attachments.append(leaf)


def classify(root: Part) -> PartClassifier:
    classifier = PartClassifier()
    classifier.visit(root)
    return classifier


def iter_leaves(part: Part) -> Iterator[Leaf]:
    if isinstance(part, Multipart):
        for child in part.children:
            yield from iter_leaves(child)
    else:
        yield part
