"""Parsing of SQL Server showplan XML into operator trees."""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class ExecutionPlanNode:
    """One operator (``RelOp``) of an execution plan."""
    node_id: str
    physical_op: str
    logical_op: str
    estimate_rows: float = 0.0
    estimate_cpu: float = 0.0
    estimate_io: float = 0.0
    subtree_cost: float = 0.0
    estimated_row_size: int = 0
    total_cost_percentage: float = 0.0
    object_name: Optional[str] = None
    output_list: Optional[str] = None
    warnings: Optional[str] = None
    statement_text: Optional[str] = None
    children: List["ExecutionPlanNode"] = field(default_factory=list)

    def walk(self) -> Iterator["ExecutionPlanNode"]:
        """Depth-first iteration over this node and its descendants."""
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'node_id': self.node_id,
            'physical_op': self.physical_op,
            'logical_op': self.logical_op,
            'estimate_rows': self.estimate_rows,
            'estimate_cpu': self.estimate_cpu,
            'estimate_io': self.estimate_io,
            'subtree_cost': self.subtree_cost,
            'estimated_row_size': self.estimated_row_size,
            'total_cost_percentage': self.total_cost_percentage,
            'object_name': self.object_name,
            'output_list': self.output_list,
            'warnings': self.warnings,
            'statement_text': self.statement_text,
            'children': [child.to_dict() for child in self.children],
        }


def _local(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def _float(value: Optional[str]) -> float:
    try:
        return float(value) if value is not None else 0.0
    except ValueError:
        return 0.0


def _child_relops(element: ET.Element) -> Iterator[ET.Element]:
    """RelOps directly below ``element``, not descending into them."""
    for child in element:
        if _local(child.tag) == "RelOp":
            yield child
        else:
            yield from _child_relops(child)


def _own_elements(element: ET.Element) -> Iterator[ET.Element]:
    """Descendants of a RelOp that do not belong to a nested RelOp."""
    for child in element:
        if _local(child.tag) == "RelOp":
            continue
        yield child
        yield from _own_elements(child)


def _object_name(relop: ET.Element) -> Optional[str]:
    for element in _own_elements(relop):
        if _local(element.tag) == "Object":
            parts = [element.get(key) for key in ("Database", "Schema", "Table", "Index")]
            name = ".".join(part for part in parts if part)
            return name or None
    return None


def _output_list(relop: ET.Element) -> Optional[str]:
    for child in relop:
        if _local(child.tag) != "OutputList":
            continue
        columns = []
        for ref in child:
            column = ref.get("Column")
            if not column:
                continue
            table = ref.get("Table")
            columns.append(f"{table}.{column}" if table else column)
        return ", ".join(columns) or None
    return None


def _warnings(relop: ET.Element) -> Optional[str]:
    for child in relop:
        if _local(child.tag) != "Warnings":
            continue
        names = [key for key, value in child.attrib.items() if value in ("1", "true")]
        names.extend(_local(warning.tag) for warning in child)
        return ", ".join(names) or None
    return None


def _build_node(relop: ET.Element, statement_cost: float) -> ExecutionPlanNode:
    children = [_build_node(child, statement_cost) for child in _child_relops(relop)]
    subtree_cost = _float(relop.get("EstimatedTotalSubtreeCost"))
    own_cost = max(subtree_cost - sum(child.subtree_cost for child in children), 0.0)

    return ExecutionPlanNode(
        node_id=relop.get("NodeId", ""),
        physical_op=relop.get("PhysicalOp", ""),
        logical_op=relop.get("LogicalOp", ""),
        estimate_rows=_float(relop.get("EstimateRows")),
        estimate_cpu=_float(relop.get("EstimateCPU")),
        estimate_io=_float(relop.get("EstimateIO")),
        subtree_cost=subtree_cost,
        estimated_row_size=int(_float(relop.get("AvgRowSize"))),
        total_cost_percentage=round(own_cost / statement_cost * 100, 2) if statement_cost > 0 else 0.0,
        object_name=_object_name(relop),
        output_list=_output_list(relop),
        warnings=_warnings(relop),
        children=children,
    )


def parse_showplan(xml_text: str) -> List[ExecutionPlanNode]:
    """Parse showplan XML into one operator tree per planned statement.

    Args:
        xml_text: Document produced by ``SET STATISTICS XML`` or ``SHOWPLAN_XML``.

    Returns:
        Root nodes in statement order. Statements without a query plan
        (``SET``, ``DECLARE`` ...) are skipped.

    Raises:
        xml.etree.ElementTree.ParseError: If the document is not valid XML.
    """
    root = ET.fromstring(xml_text)
    roots: List[ExecutionPlanNode] = []

    for statement in root.iter():
        if _local(statement.tag) != "StmtSimple":
            continue
        query_plan = next((c for c in statement if _local(c.tag) == "QueryPlan"), None)
        if query_plan is None:
            continue
        relop = next((c for c in query_plan if _local(c.tag) == "RelOp"), None)
        if relop is None:
            continue

        statement_cost = _float(statement.get("StatementSubTreeCost")) or _float(
            relop.get("EstimatedTotalSubtreeCost")
        )
        node = _build_node(relop, statement_cost)
        node.statement_text = statement.get("StatementText")
        roots.append(node)

    return roots
