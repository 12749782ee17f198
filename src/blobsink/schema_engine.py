from __future__ import annotations

import json
import logging
import os
import threading
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)

DELIMITER = ","
PARTITION_PLACEHOLDER = "{partition}"


class SchemaLoadError(Exception):
    pass


# ----------------------------
# Schema files
# ----------------------------
class SchemaColumn(BaseModel):
    header: str = ""
    path: str
    default: str = ""
    enclosure: str = ""


class SchemaDefinition(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    identify: str
    filename: str
    partitions: int = Field(default=1, ge=1)
    columns: List[SchemaColumn] = Field(alias="fields")


class PartitionRotator:
    """Round-robin over 1..count; every call to advance() hands out the next slot."""

    def __init__(self, count: int):
        if count < 1:
            raise ValueError("partition count must be >= 1")
        self.count = count
        self._current = 1
        self._lock = threading.Lock()

    @property
    def current(self) -> int:
        return self._current

    def advance(self) -> int:
        with self._lock:
            taken = self._current
            self._current = 1 if taken >= self.count else taken + 1
            return taken


class Schema:
    def __init__(self, definition: SchemaDefinition):
        self.definition = definition
        self.rotator = PartitionRotator(definition.partitions)

    @property
    def name(self) -> str:
        return self.definition.name

    def next_filename(self) -> str:
        partition = self.rotator.advance()
        return self.definition.filename.replace(PARTITION_PLACEHOLDER, str(partition))

    def header_row(self) -> str:
        return DELIMITER.join(f"{c.enclosure}{c.header}{c.enclosure}" for c in self.definition.columns)


def load_schema_file(path: str) -> Schema:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        schema = Schema(SchemaDefinition.model_validate(raw))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise SchemaLoadError(f"invalid schema file {path}: {e}") from e

    probe = ET.Element("probe")
    definition = schema.definition
    for expr in [definition.identify] + [c.path for c in definition.columns]:
        try:
            select(probe, expr)
        except (SyntaxError, TypeError) as e:
            raise SchemaLoadError(f"invalid path {expr!r} in schema file {path}: {e}") from e
    return schema


def load_schemas(directory: str) -> List[Schema]:
    """
    Loads every *.json file in the directory, in filename order.
    Any bad file fails the whole load.
    """
    try:
        filenames = sorted(os.listdir(directory))
    except OSError as e:
        raise SchemaLoadError(f"cannot read schema directory {directory}: {e}") from e

    schemas: List[Schema] = []
    for filename in filenames:
        if not filename.endswith(".json"):
            continue
        logger.info("loading %s...", filename)
        schemas.append(load_schema_file(os.path.join(directory, filename)))
        logger.info("loaded %s.", filename)
    return schemas


# ----------------------------
# Path expressions
# ----------------------------
TEXT_STEP = "text()"


def _split_tail(expr: str):
    """Peels a trailing /text() or /@attr off an expression; returns (path, tail)."""
    expr = expr.strip()
    if expr.endswith("/" + TEXT_STEP):
        return expr[: -len(TEXT_STEP) - 1], TEXT_STEP
    head, sep, last = expr.rpartition("/")
    if sep and last.startswith("@") and "[" not in last:
        return head, last
    return expr, None


def _tail_value(node: ET.Element, tail: Optional[str]) -> Optional[str]:
    """Value the tail step reads off a node; None when that node has nothing to select."""
    if tail is None:
        return node.text
    if tail == TEXT_STEP:
        return node.text or None
    return node.get(tail[1:])


def _find(root: ET.Element, expr: str) -> List[ET.Element]:
    """
    ElementTree's XPath subset, evaluated with the document node as context:
    "//a" searches everywhere, "/doc/a" and "doc/a" both start at the root element.
    """
    # stand-in for the document node; ElementTree has no parent links so root is untouched
    document = ET.Element("document")
    document.append(root)
    if expr.startswith("//"):
        return document.findall("." + expr)
    steps = expr.lstrip("/")
    if not steps:
        return [root]
    return document.findall("./" + steps)


def select(root: ET.Element, expr: str) -> List[ET.Element]:
    """
    Elements the expression selects. With a /@attr or /text() tail only the
    elements that actually carry that attribute or text count.
    """
    path, tail = _split_tail(expr)
    nodes = _find(root, path)
    if tail is None:
        return nodes
    return [node for node in nodes if _tail_value(node, tail) is not None]


def select_value(root: ET.Element, expr: str) -> Optional[str]:
    _, tail = _split_tail(expr)
    nodes = select(root, expr)
    if not nodes:
        return None
    return _tail_value(nodes[0], tail)


# ----------------------------
# Engine
# ----------------------------
@dataclass(frozen=True)
class RowTarget:
    schema: str
    filename: str
    row: str
    header: str


def parse_document(body: bytes) -> ET.Element:
    return ET.fromstring(body)


class SchemaEngine:
    def __init__(self, schemas: List[Schema]):
        self.schemas = schemas

    def extract_row(self, schema: Schema, root: ET.Element) -> str:
        values = []
        for column in schema.definition.columns:
            value = select_value(root, column.path)
            if value is None or value == "":
                value = column.default
            values.append(f"{column.enclosure}{value}{column.enclosure}")
        return DELIMITER.join(values)

    def evaluate(self, root: ET.Element) -> List[RowTarget]:
        targets: List[RowTarget] = []
        for schema in self.schemas:
            if not select(root, schema.definition.identify):
                continue
            row = self.extract_row(schema, root)
            targets.append(RowTarget(
                schema=schema.name,
                filename=schema.next_filename(),
                row=row,
                header=schema.header_row(),
            ))
        return targets
