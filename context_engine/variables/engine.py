"""
Session Variable Engine

Recomputes session variable state from the active path.

Messages carry operations as tags::

    <var op="set" path="stats.hp" value="50"/>
    <var op="push" path="inventory">"sword"</var>

Tag values are parsed as JSON when possible, otherwise kept as text.

Computation starts from the nearest snapshot on the path (newest first) or
from the declared initial values, then applies every later operation in
document order. Failed operations are recorded and skipped.
"""

import copy
import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from config import VariableConfig, VariableDefinition
from context_engine.errors import VariableOperationError
from context_engine.models import (
    MessageNode,
    VariableChange,
    VariableErrorRecord,
    VariableOp,
    VariableOperation,
    VariableState,
)
from context_engine.variables.paths import (
    MISSING,
    canonical_path,
    delete_path,
    lookup,
    normalize_number,
    parse_path,
    set_path,
    to_number,
)

logger = logging.getLogger(__name__)

VAR_TAG_PATTERN = re.compile(r"<var\b([^>]*?)(?:/>|>(.*?)</var>)", re.DOTALL)
ATTR_PATTERN = re.compile(r"([\w-]+)\s*=\s*\"([^\"]*)\"")

_DELETE = object()


def parse_value(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    stripped = raw.strip()
    if not stripped:
        return ""
    try:
        return json.loads(stripped)
    except ValueError:
        return stripped


def parse_operations(
    text: str,
    node_id: Optional[str] = None,
) -> Tuple[List[VariableOperation], List[VariableErrorRecord]]:
    """Extract variable operations from message text, in document order."""
    operations: List[VariableOperation] = []
    errors: List[VariableErrorRecord] = []
    if not text or "<var" not in text:
        return operations, errors

    for match in VAR_TAG_PATTERN.finditer(text):
        attrs = dict(ATTR_PATTERN.findall(match.group(1)))
        op_name = attrs.get("op", "").strip().lower()
        path = attrs.get("path", "").strip()
        raw_value = match.group(2) if match.group(2) is not None else attrs.get("value")

        if not path:
            errors.append(VariableErrorRecord(
                path="", op=op_name or "?", message="Missing path attribute", node_id=node_id,
            ))
            continue
        try:
            op = VariableOp(op_name)
        except ValueError:
            errors.append(VariableErrorRecord(
                path=path, op=op_name or "?", message=f"Unknown operation '{op_name}'", node_id=node_id,
            ))
            continue

        operations.append(VariableOperation(
            op=op, path=path, value=parse_value(raw_value), node_id=node_id,
        ))

    return operations, errors


def strip_variable_tags(text: str) -> str:
    """Remove variable tags from message text."""
    if not text or "<var" not in text:
        return text
    return VAR_TAG_PATTERN.sub("", text).strip()


def _type_zero(value: Any) -> Any:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return 0
    if isinstance(value, float):
        return 0.0
    if isinstance(value, str):
        return ""
    if isinstance(value, list):
        return []
    if isinstance(value, dict):
        return {}
    return _DELETE


class VariableEngine:
    """
    Applies variable operations under a VariableConfig.

    Declared paths come from config.definitions. A definition also covers
    everything nested below its path (for strict mode and readonly).
    """

    def __init__(self, config: Optional[VariableConfig] = None):
        self.config = config or VariableConfig()
        self._definitions: Dict[str, VariableDefinition] = {}
        for definition in self.config.definitions:
            self._definitions[canonical_path(definition.path)] = definition

    def initial_values(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        for path, definition in self._definitions.items():
            set_path(values, path, copy.deepcopy(definition.initial_value))
        return values

    def compute(self, path_nodes: List[MessageNode], use_snapshots: bool = True) -> VariableState:
        """
        Compute variable state for a root-to-leaf path.

        Args:
            path_nodes: Active path, oldest first
            use_snapshots: Resume from the nearest snapshot when True
        """
        start = 0
        state: Optional[VariableState] = None

        if use_snapshots:
            for i in range(len(path_nodes) - 1, -1, -1):
                snapshot = path_nodes[i].metadata.session_variable_snapshot
                if snapshot is not None:
                    state = VariableState(
                        values=copy.deepcopy(snapshot.get("values", {})),
                        snapshot_node_id=path_nodes[i].id,
                    )
                    start = i + 1
                    break

        if state is None:
            state = VariableState(values=self.initial_values())

        for node in path_nodes[start:]:
            if not node.is_enabled or node.metadata.is_compression_node:
                continue
            operations, errors = parse_operations(node.content, node.id)
            state.errors.extend(errors)
            for operation in operations:
                self.apply(state, operation)

        if state.errors:
            logger.debug(f"[VariableEngine] {len(state.errors)} recoverable error(s)")
        return state

    def apply(self, state: VariableState, operation: VariableOperation) -> bool:
        """
        Apply one operation to state in place.

        Returns:
            True if applied, False if it was rejected and recorded as an error
        """
        try:
            self._apply(state, operation)
            return True
        except VariableOperationError as e:
            state.errors.append(VariableErrorRecord(
                path=e.path, op=e.op, message=e.message, node_id=e.node_id,
            ))
            return False

    def create_snapshot(self, state: VariableState) -> Dict[str, Any]:
        """Snapshot payload stored on a compression node."""
        return {
            "values": copy.deepcopy(state.values),
            "created_at": datetime.now().isoformat(),
        }

    def _apply(self, state: VariableState, operation: VariableOperation) -> None:
        op = operation.op
        node_id = operation.node_id

        def fail(message: str) -> VariableOperationError:
            return VariableOperationError(operation.path, op.value, message, node_id)

        try:
            path = canonical_path(operation.path)
        except ValueError as e:
            raise fail(str(e))

        owner = self._owning_definition(path)
        if self.config.strict_mode and owner is None:
            raise fail(f"Undeclared variable path '{path}' (strict mode)")
        if owner is not None and (owner.readonly or owner.computed):
            kind = "computed" if owner.computed else "read-only"
            raise fail(f"Variable '{canonical_path(owner.path)}' is {kind}")

        old_value = lookup(state.values, path)
        current = None if old_value is MISSING else old_value
        new_value = self._evaluate(op, current, operation.value, path, fail)

        if new_value is _DELETE:
            delete_path(state.values, path)
        else:
            new_value = self._clamp(path, new_value)
            try:
                set_path(state.values, path, new_value)
            except TypeError as e:
                raise fail(str(e))

        state.changes.append(VariableChange(
            path=path,
            op=op,
            old_value=copy.deepcopy(current),
            new_value=None if new_value is _DELETE else copy.deepcopy(new_value),
            node_id=node_id,
        ))

    def _evaluate(self, op: VariableOp, current: Any, value: Any, path: str, fail) -> Any:
        if op == VariableOp.SET:
            return copy.deepcopy(value)

        if op in (VariableOp.ADD, VariableOp.SUB, VariableOp.MUL, VariableOp.DIV):
            left, right = to_number(current), to_number(value)
            if op == VariableOp.ADD:
                return normalize_number(left + right)
            if op == VariableOp.SUB:
                return normalize_number(left - right)
            if op == VariableOp.MUL:
                return normalize_number(left * right)
            if right == 0:
                raise fail("Division by zero")
            return normalize_number(left / right)

        if op == VariableOp.APPEND:
            if isinstance(current, list):
                return current + [copy.deepcopy(value)]
            prefix = "" if current is None else str(current)
            return prefix + ("" if value is None else str(value))

        if op == VariableOp.PUSH:
            if current is None:
                return [copy.deepcopy(value)]
            if not isinstance(current, list):
                raise fail(f"Cannot push to non-list value at '{path}'")
            return current + [copy.deepcopy(value)]

        if op == VariableOp.REMOVE:
            if value is None:
                return _DELETE
            if isinstance(current, list):
                return [item for item in current if item != value]
            if isinstance(current, dict):
                return {k: v for k, v in current.items() if k != str(value)}
            raise fail(f"Cannot remove from value at '{path}'")

        if op == VariableOp.MERGE:
            if not isinstance(value, dict):
                raise fail("Merge operand must be an object")
            if current is None:
                return copy.deepcopy(value)
            if not isinstance(current, dict):
                raise fail(f"Cannot merge into non-object value at '{path}'")
            merged = dict(current)
            merged.update(copy.deepcopy(value))
            return merged

        if op == VariableOp.RESET:
            return self._reset_value(path, current)

        raise fail(f"Unsupported operation '{op.value}'")

    def _reset_value(self, path: str, current: Any) -> Any:
        """
        Value for a reset.

        1. the path's own declared initial value
        2. the matching sub-value inside the nearest declared ancestor's initial value
        3. the zero value of the current value's type
        4. otherwise the path is deleted
        """
        definition = self._definitions.get(path)
        if definition is not None:
            return copy.deepcopy(definition.initial_value)

        tokens = parse_path(path)
        for size in range(len(tokens) - 1, 0, -1):
            ancestor = self._definitions.get(canonical_path(tokens[:size]))
            if ancestor is None:
                continue
            sub_value = lookup(ancestor.initial_value, tokens[size:])
            if sub_value is not MISSING:
                return copy.deepcopy(sub_value)
            break

        return _type_zero(current)

    def _owning_definition(self, path: str) -> Optional[VariableDefinition]:
        """The definition for path or its nearest declared ancestor."""
        tokens = parse_path(path)
        for size in range(len(tokens), 0, -1):
            definition = self._definitions.get(canonical_path(tokens[:size]))
            if definition is not None:
                return definition
        return None

    def _clamp(self, path: str, value: Any) -> Any:
        definition = self._definitions.get(path)
        if definition is None or isinstance(value, bool) or not isinstance(value, (int, float)):
            return value
        if definition.min is not None and value < definition.min:
            value = definition.min
        if definition.max is not None and value > definition.max:
            value = definition.max
        return normalize_number(value)


__all__ = [
    "VariableEngine",
    "parse_operations",
    "parse_value",
    "strip_variable_tags",
]
