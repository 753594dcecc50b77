"""
Capability model: the (module, sub-module) x (all/create/read/update/delete)
grant matrix shared by clinic-level and staff-level permission records.

Three pure operations live here so the stores and the evaluator stay thin:

- ``validate_module_permission`` / ``validate_permission_list`` turn untrusted
  request payloads into typed records, rejecting malformed shapes.
- ``clamp_to_ceiling`` narrows a staff submission to what the clinic itself
  holds, reporting every grant it removed.
- ``evaluate_grant`` answers a single (module, action, sub-module) question
  against a list of module records.
"""
from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Final

from ..errors import ValidationError


class Action(str, Enum):
    ALL = "all"
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: str | Action) -> Action:
        if isinstance(value, Action):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Unknown action '{value}'", details={"field": "action"}
            ) from None


ACTION_KEYS: Final[tuple[str, ...]] = tuple(action.value for action in Action)
CRUD_ACTIONS: Final[tuple[Action, ...]] = (
    Action.CREATE,
    Action.READ,
    Action.UPDATE,
    Action.DELETE,
)


@dataclass(frozen=True)
class ActionSet:
    all: bool = False
    create: bool = False
    read: bool = False
    update: bool = False
    delete: bool = False

    def allows(self, action: Action | str) -> bool:
        """True if ``action`` is granted directly or implied by ``all``."""
        action = Action.parse(action)
        if self.all:
            return True
        return bool(getattr(self, action.value))

    def has_any(self) -> bool:
        return any(getattr(self, key) for key in ACTION_KEYS)

    def to_dict(self) -> dict[str, bool]:
        return {key: bool(getattr(self, key)) for key in ACTION_KEYS}

    def crud_dict(self) -> dict[str, bool]:
        return {action.value: self.allows(action) for action in CRUD_ACTIONS}


NO_ACTIONS: Final[ActionSet] = ActionSet()


@dataclass(frozen=True)
class SubModulePermission:
    name: str
    actions: ActionSet = NO_ACTIONS
    path: str = ""
    icon: str = ""
    order: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "path": self.path,
            "icon": self.icon,
            "order": self.order,
            "actions": self.actions.to_dict(),
        }


@dataclass(frozen=True)
class ModulePermission:
    module: str
    actions: ActionSet = NO_ACTIONS
    sub_modules: tuple[SubModulePermission, ...] = field(default_factory=tuple)

    def find_sub_module(self, name: str) -> SubModulePermission | None:
        return next((sub for sub in self.sub_modules if sub.name == name), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "module": self.module,
            "actions": self.actions.to_dict(),
            "subModules": [sub.to_dict() for sub in self.sub_modules],
        }


def find_module(
    modules: Sequence[ModulePermission], name: str
) -> ModulePermission | None:
    return next((entry for entry in modules if entry.module == name), None)


def dump_permissions(modules: Sequence[ModulePermission]) -> list[dict[str, Any]]:
    return [entry.to_dict() for entry in modules]


# ---------------------------------------------------------------------------
# Validation of untrusted input
# ---------------------------------------------------------------------------


def _fail(message: str, field_path: str) -> ValidationError:
    return ValidationError(message, details={"field": field_path})


def _validate_actions(raw: Any, field_path: str, label: str) -> ActionSet:
    if not isinstance(raw, Mapping):
        raise _fail(f"{label} must have an actions object", field_path)

    for key in raw:
        if key not in ACTION_KEYS:
            raise _fail(f"{label} action '{key}' is not a valid action", f"{field_path}.{key}")

    values: dict[str, bool] = {}
    for key in ACTION_KEYS:
        if key not in raw:
            raise _fail(f"{label} action '{key}' is required", f"{field_path}.{key}")
        value = raw[key]
        if not isinstance(value, bool):
            raise _fail(f"{label} action '{key}' must be a boolean", f"{field_path}.{key}")
        values[key] = value
    return ActionSet(**values)


def _validate_sub_module(raw: Any, field_path: str) -> SubModulePermission:
    if not isinstance(raw, Mapping):
        raise _fail("Sub-module entry must be an object", field_path)

    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        raise _fail("Sub-module must have a valid name", f"{field_path}.name")

    if raw.get("subModules"):
        raise _fail(
            f"Sub-module '{name}' cannot contain nested sub-modules",
            f"{field_path}.subModules",
        )

    path = raw.get("path", "")
    icon = raw.get("icon", "")
    order = raw.get("order", 0)
    if path is None:
        path = ""
    if icon is None:
        icon = ""
    if not isinstance(path, str):
        raise _fail("Sub-module path must be a string", f"{field_path}.path")
    if not isinstance(icon, str):
        raise _fail("Sub-module icon must be a string", f"{field_path}.icon")
    if isinstance(order, bool) or not isinstance(order, int):
        raise _fail("Sub-module order must be an integer", f"{field_path}.order")

    return SubModulePermission(
        name=name,
        path=path,
        icon=icon,
        order=order,
        actions=_validate_actions(raw.get("actions"), f"{field_path}.actions", "Sub-module"),
    )


def validate_module_permission(raw: Any, field_path: str = "permission") -> ModulePermission:
    """Validate one module entry from a request body.

    Raises:
        ValidationError: naming the offending field when the entry is malformed
    """
    if not isinstance(raw, Mapping):
        raise _fail("Each permission must be an object", field_path)

    module = raw.get("module")
    if not isinstance(module, str) or not module.strip():
        raise _fail("Each permission must have a valid module", f"{field_path}.module")

    actions = _validate_actions(raw.get("actions"), f"{field_path}.actions", "Module")

    raw_sub_modules = raw.get("subModules")
    if raw_sub_modules is None:
        raw_sub_modules = []
    if not isinstance(raw_sub_modules, list):
        raise _fail("subModules must be an array", f"{field_path}.subModules")

    sub_modules: list[SubModulePermission] = []
    seen: set[str] = set()
    for index, raw_sub in enumerate(raw_sub_modules):
        sub = _validate_sub_module(raw_sub, f"{field_path}.subModules[{index}]")
        if sub.name in seen:
            raise _fail(
                f"Duplicate sub-module '{sub.name}' in module '{module}'",
                f"{field_path}.subModules[{index}].name",
            )
        seen.add(sub.name)
        sub_modules.append(sub)

    return ModulePermission(module=module, actions=actions, sub_modules=tuple(sub_modules))


def validate_permission_list(raw: Any) -> list[ModulePermission]:
    if not isinstance(raw, list):
        raise _fail("Permissions must be an array", "permissions")

    modules: list[ModulePermission] = []
    seen: set[str] = set()
    for index, entry in enumerate(raw):
        module = validate_module_permission(entry, f"permissions[{index}]")
        if module.module in seen:
            raise _fail(
                f"Duplicate module '{module.module}'", f"permissions[{index}].module"
            )
        seen.add(module.module)
        modules.append(module)
    return modules


# ---------------------------------------------------------------------------
# Loading stored documents
# ---------------------------------------------------------------------------


def _stored_flag(value: Any) -> bool:
    # Older rows stored flags as the strings "true"/"false".
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return value is True


def _load_actions(raw: Any) -> ActionSet:
    if not isinstance(raw, Mapping):
        return NO_ACTIONS
    return ActionSet(**{key: _stored_flag(raw.get(key)) for key in ACTION_KEYS})


def load_permissions(raw: Any) -> list[ModulePermission]:
    """Lenient reader for persisted module lists; never raises on shape."""
    if not isinstance(raw, list):
        return []

    modules: list[ModulePermission] = []
    for entry in raw:
        if not isinstance(entry, Mapping) or not entry.get("module"):
            continue
        sub_modules = []
        for sub in entry.get("subModules") or []:
            if not isinstance(sub, Mapping) or not sub.get("name"):
                continue
            order = sub.get("order")
            sub_modules.append(
                SubModulePermission(
                    name=str(sub["name"]),
                    path=str(sub.get("path") or ""),
                    icon=str(sub.get("icon") or ""),
                    order=order if isinstance(order, int) and not isinstance(order, bool) else 0,
                    actions=_load_actions(sub.get("actions")),
                )
            )
        modules.append(
            ModulePermission(
                module=str(entry["module"]),
                actions=_load_actions(entry.get("actions")),
                sub_modules=tuple(sub_modules),
            )
        )
    return modules


# ---------------------------------------------------------------------------
# Delegation ceiling
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClampResult:
    permissions: list[ModulePermission]
    dropped: list[str]


def _clamp_actions(
    requested: ActionSet, ceiling: ActionSet, label: str, dropped: list[str]
) -> ActionSet:
    values: dict[str, bool] = {"all": requested.all and ceiling.all}
    if requested.all and not ceiling.all:
        dropped.append(f"{label}.all")

    for action in CRUD_ACTIONS:
        wanted = requested.allows(action)
        permitted = ceiling.allows(action)
        values[action.value] = wanted and permitted
        if getattr(requested, action.value) and not permitted:
            dropped.append(f"{label}.{action.value}")
    return ActionSet(**values)


def sub_module_ceiling(ceiling_module: ModulePermission, name: str) -> ActionSet:
    """Actions the clinic holds on a sub-module.

    A configured sub-module entry decides on its own; an absent or empty one
    inherits the module-level actions.
    """
    sub = ceiling_module.find_sub_module(name)
    if sub is not None and sub.actions.has_any():
        return sub.actions
    return ceiling_module.actions


def clamp_to_ceiling(
    submission: Sequence[ModulePermission], ceiling: Sequence[ModulePermission]
) -> ClampResult:
    """Drop every staff grant the clinic does not itself hold.

    Flags are compared after ``all`` expansion on both sides, so a staff
    ``all`` under a partial clinic grant becomes exactly the clinic's actions.
    Modules the clinic lacks entirely are removed from the result.
    """
    result: list[ModulePermission] = []
    dropped: list[str] = []

    for requested in submission:
        ceiling_module = find_module(ceiling, requested.module)
        if ceiling_module is None:
            dropped.extend(_granted_labels(requested))
            continue

        actions = _clamp_actions(
            requested.actions, ceiling_module.actions, requested.module, dropped
        )
        sub_modules = tuple(
            replace(
                sub,
                actions=_clamp_actions(
                    sub.actions,
                    sub_module_ceiling(ceiling_module, sub.name),
                    f"{requested.module}/{sub.name}",
                    dropped,
                ),
            )
            for sub in requested.sub_modules
        )
        result.append(replace(requested, actions=actions, sub_modules=sub_modules))

    return ClampResult(permissions=result, dropped=dropped)


def _granted_labels(module: ModulePermission) -> list[str]:
    labels = [
        f"{module.module}.{key}" for key in ACTION_KEYS if getattr(module.actions, key)
    ]
    for sub in module.sub_modules:
        labels.extend(
            f"{module.module}/{sub.name}.{key}"
            for key in ACTION_KEYS
            if getattr(sub.actions, key)
        )
    return labels


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def resolve_actions(
    modules: Sequence[ModulePermission], module: str, sub_module: str | None = None
) -> ActionSet | None:
    """Actions that decide a question about ``module``/``sub_module``.

    Returns None when the module is absent. A sub-module entry with at least
    one flag set decides alone; otherwise the module-level actions apply.
    """
    entry = find_module(modules, module)
    if entry is None:
        return None
    if sub_module:
        return sub_module_ceiling(entry, sub_module)
    return entry.actions


def evaluate_grant(
    modules: Sequence[ModulePermission],
    module: str,
    action: Action | str,
    sub_module: str | None = None,
) -> tuple[bool, str | None]:
    action = Action.parse(action)
    actions = resolve_actions(modules, module, sub_module)
    if actions is None:
        return False, f"You do not have access to {module}"
    if actions.allows(action):
        return True, None
    return False, f"You do not have {action.value} permission for {sub_module or module}"
