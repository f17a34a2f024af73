"""Turn an untrusted raw plan into a validated, enriched Plan."""

from __future__ import annotations

import math
import re
from typing import Any

from jsonschema import Draft7Validator

from calcplan.core.errors import PlanValidationError, ScriptSyntaxError
from calcplan.core.models import Buff, Detail, DetailKind, Plan, PlanInput
from calcplan.core.vocabulary import (
    AMPLIFYING_REACTIONS,
    CONTEXT_NAMES,
    HELPER_NAMES,
    MAX_BUFFS,
    MAX_DETAILS,
    SCALE_STATS,
    canonical_element_override,
    canonical_reaction,
    is_allowed_buff_key,
)
from calcplan.sandbox.lexer import OP, tokenize
from calcplan.sandbox.nodes import referenced_names
from calcplan.sandbox.parser import parse_expression
from calcplan.utils.logger import setup_logger
from calcplan.validation.buff_filter import BuffFilter
from calcplan.validation.enrichment import PlanEnricher
from calcplan.validation.eviction import EvictionPolicy
from calcplan.validation.pruning import prune_special_rows

logger = setup_logger(__name__)

MAX_EXPRESSION_LENGTH = 400

# -----------------------------------------------------------------------------
# Raw payload schemas (model JSON uses camelCase keys)
# -----------------------------------------------------------------------------
_SCALAR = {"type": ["number", "boolean", "string"]}

DETAIL_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "kind": {"type": "string"},
        "talent": {"type": "string"},
        "table": {"type": "string", "minLength": 1},
        "key": {"type": "string", "pattern": r"^[A-Za-z0-9_]+(,[A-Za-z0-9_]+)*$"},
        "ele": {"type": "string"},
        "stat": {"type": "string", "enum": sorted(SCALE_STATS)},
        "reaction": {"type": "string"},
        "pick": {"type": "integer", "minimum": 0, "maximum": 10},
        "params": {"type": "object", "additionalProperties": _SCALAR},
        "check": {"type": "string"},
        "cons": {"type": "integer", "minimum": 1, "maximum": 6},
        "dmgExpr": {"type": "string"},
    },
}

BUFF_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "sort": {"type": "integer"},
        "cons": {"type": "integer", "minimum": 1, "maximum": 6},
        "tree": {"type": "integer", "minimum": 1, "maximum": 10},
        "check": {"type": "string"},
        "data": {"type": "object", "additionalProperties": {"type": ["number", "string"]}},
    },
    "required": ["title"],
}

PLAN_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "mainAttr": {"type": "string"},
        "defDmgKey": {"type": "string"},
        "details": {"type": "array"},
        "buffs": {"type": "array"},
    },
}

_NESTED_FIELDS = ("params", "data")
DETAIL_KINDS = frozenset(k.value for k in DetailKind)
_ALLOWED_NAMES = frozenset(CONTEXT_NAMES) | frozenset(HELPER_NAMES)
_ATTR_TOKEN_RE = re.compile(r"^[A-Za-z][A-Za-z0-9]*$")


def strip_invalid_fields(raw: dict[str, Any], validator: Draft7Validator, where: str, errors: list[str]) -> dict[str, Any]:
    """Copy of ``raw`` without the fields the schema rejects; nested map entries are dropped one by one."""
    cleaned = dict(raw)
    for error in validator.iter_errors(raw):
        path = list(error.absolute_path)
        if not path:
            if error.validator == "required":
                continue
            errors.append(f"{where}: {error.message}")
            continue
        field = path[0]
        if field in _NESTED_FIELDS and len(path) >= 2 and isinstance(cleaned.get(field), dict):
            nested = dict(cleaned[field])
            nested.pop(path[1], None)
            cleaned[field] = nested
            logger.debug(f"{where}.{field}.{path[1]} dropped: {error.message}")
        else:
            cleaned.pop(field, None)
            logger.debug(f"{where}.{field} dropped: {error.message}")
    return cleaned


def check_expression(text: str) -> str | None:
    """Return the trimmed expression if it parses and reads only context names and helpers."""
    text = (text or "").strip()
    if not text:
        return None
    if len(text) > MAX_EXPRESSION_LENGTH:
        logger.debug(f"Expression rejected: {len(text)} characters")
        return None
    try:
        if any(t.kind == OP and t.value == "=>" for t in tokenize(text)):
            return None
        node = parse_expression(f"({text})")
        names = referenced_names(node)
    except ScriptSyntaxError as e:
        logger.debug(f"Expression {text!r} rejected: {e}")
        return None
    except RecursionError:
        logger.debug(f"Expression rejected: nested too deeply ({len(text)} characters)")
        return None
    unknown = names - _ALLOWED_NAMES
    if unknown:
        logger.debug(f"Expression {text!r} rejected: unknown names {sorted(unknown)}")
        return None
    return text


def normalize_main_attr(value: Any) -> str:
    tokens: list[str] = []
    for part in str(value or "").split(","):
        token = part.strip()
        if token and _ATTR_TOKEN_RE.match(token) and token not in tokens:
            tokens.append(token)
    return ",".join(tokens)


class PlanValidator:
    """Structural validation, caps, enrichment, pruning and buff filtering."""

    def __init__(self, policy: EvictionPolicy | None = None):
        self.detail_validator = Draft7Validator(DETAIL_SCHEMA)
        self.buff_validator = Draft7Validator(BUFF_SCHEMA)
        self.plan_validator = Draft7Validator(PLAN_SCHEMA)
        self.enricher = PlanEnricher(policy=policy)
        self.buff_filter = BuffFilter()

    def validate(self, raw: Any, input: PlanInput) -> Plan:
        """Validate a raw plan payload; raises PlanValidationError with a specific message."""
        plan = self.parse(raw, input)
        refined = self.refine(plan, input)
        if not refined.details:
            raise PlanValidationError(
                "no valid details",
                errors=[f"all {len(plan.details)} details were pruned as unsupported by the input"],
            )
        return refined

    # -------------------------------------------------------------------------
    # Structural pass
    # -------------------------------------------------------------------------
    def parse(self, raw: Any, input: PlanInput) -> Plan:
        if not isinstance(raw, dict):
            raise PlanValidationError("plan must be a JSON object")
        errors: list[str] = []
        raw = strip_invalid_fields(raw, self.plan_validator, "plan", errors)

        main_attr = normalize_main_attr(raw.get("mainAttr"))

        rejected: list[tuple[str, str]] = []
        details: list[Detail] = []
        for i, item in enumerate(raw.get("details") or []):
            detail = self._parse_detail(item, i, input, errors, rejected)
            if detail is not None and all(d.identity() != detail.identity() for d in details):
                details.append(detail)

        # Zero details outranks a missing mainAttr in the reported failure
        if not details:
            if not main_attr:
                errors.insert(0, "mainAttr is empty")
            raise PlanValidationError("no valid details", errors=errors, rejected_tables=rejected)
        if not main_attr:
            raise PlanValidationError("mainAttr is empty")
        if rejected:
            logger.debug(f"Rejected tables for {input.name}: {rejected}")

        buffs: list[Buff] = []
        for i, item in enumerate(raw.get("buffs") or []):
            buff = self._parse_buff(item, i, input, errors)
            if buff is not None:
                buffs.append(buff)

        if len(details) > MAX_DETAILS or len(buffs) > MAX_BUFFS:
            logger.debug(f"Capping {len(details)} details / {len(buffs)} buffs to {MAX_DETAILS} / {MAX_BUFFS}")

        default_key = raw.get("defDmgKey")
        keys = {d.damage_key for d in details}
        return Plan(
            main_attr_list=main_attr,
            default_damage_key=default_key.strip() if default_key and default_key.strip() in keys else None,
            details=details[:MAX_DETAILS],
            buffs=buffs[:MAX_BUFFS],
        )

    def _parse_detail(
        self,
        item: Any,
        index: int,
        input: PlanInput,
        errors: list[str],
        rejected: list[tuple[str, str]],
    ) -> Detail | None:
        where = f"details[{index}]"
        if not isinstance(item, dict):
            errors.append(f"{where}: not an object")
            return None
        d = strip_invalid_fields(item, self.detail_validator, where, errors)

        kind_raw = str(d.get("kind") or "dmg").strip().lower()
        kind = DetailKind(kind_raw) if kind_raw in DETAIL_KINDS else DetailKind.DMG

        reaction = canonical_reaction(input.game, d.get("reaction"))
        if d.get("reaction") and reaction is None:
            errors.append(f"{where}: unknown reaction {d['reaction']!r}")
        if kind == DetailKind.REACTION:
            if reaction is None:
                errors.append(f"{where}: reaction detail without a valid reaction id")
                return None
            # Amplifying reactions are element overrides on a damage row
            if reaction in AMPLIFYING_REACTIONS:
                kind = DetailKind.DMG

        talent = str(d.get("talent") or "").strip() or None
        table = str(d.get("table") or "").strip() or None
        if kind != DetailKind.REACTION:
            if not input.has_table(talent, table):
                rejected.append((talent or "?", table or "?"))
                return None

        element = canonical_element_override(input.game, d.get("ele"))
        if kind == DetailKind.DMG and element is None and reaction in AMPLIFYING_REACTIONS:
            element = reaction

        title = str(d.get("title") or "").strip() or table or reaction
        try:
            return Detail(
                title=title,
                kind=kind,
                talent=talent if kind != DetailKind.REACTION or talent in input.tables else None,
                table=table if kind != DetailKind.REACTION else None,
                key=d.get("key"),
                element=element if kind == DetailKind.DMG else None,
                scale_stat=d.get("stat"),
                reaction=reaction if kind == DetailKind.REACTION else None,
                pick=d.get("pick"),
                params=self._params(d.get("params")),
                check_expr=check_expression(d.get("check")),
                raw_expr=check_expression(d.get("dmgExpr")),
                cons=d.get("cons"),
            )
        except ValueError as e:
            errors.append(f"{where}: {e}")
            return None

    def _params(self, params: Any) -> dict[str, Any] | None:
        if not isinstance(params, dict):
            return None
        cleaned = {
            str(k): v for k, v in params.items()
            if isinstance(v, (bool, str)) or (isinstance(v, (int, float)) and math.isfinite(v))
        }
        return cleaned or None

    def _parse_buff(self, item: Any, index: int, input: PlanInput, errors: list[str]) -> Buff | None:
        where = f"buffs[{index}]"
        if not isinstance(item, dict):
            errors.append(f"{where}: not an object")
            return None
        b = strip_invalid_fields(item, self.buff_validator, where, errors)
        title = str(b.get("title") or "").strip()
        if not title:
            return None

        data: dict[str, float | str] = {}
        for key, value in (b.get("data") or {}).items():
            key = str(key).strip()
            if not is_allowed_buff_key(input.game, key):
                logger.debug(f"{where}: unknown buff key {key!r} dropped")
                continue
            if isinstance(value, str):
                expr = check_expression(value)
                if expr is not None:
                    data[key] = expr
            elif isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
                data[key] = float(value)
        if not [k for k in data if not k.startswith("_")]:
            return None

        check = b.get("check")
        try:
            return Buff(
                title=title,
                sort=b.get("sort"),
                constellation_req=b.get("cons"),
                trace_req=b.get("tree"),
                check_expr=check_expression(check) if check else None,
                data=data,
            )
        except ValueError as e:
            errors.append(f"{where}: {e}")
            return None

    # -------------------------------------------------------------------------
    # Semantic pass
    # -------------------------------------------------------------------------
    def refine(self, plan: Plan, input: PlanInput) -> Plan:
        """Enrich, prune and filter a structurally valid plan."""
        for detail in plan.details:
            if detail.kind != DetailKind.REACTION and not input.has_table(detail.talent, detail.table):
                raise PlanValidationError(
                    "detail references a table outside the allowed list",
                    rejected_tables=[(detail.talent or "?", detail.table or "?")],
                )

        details = self.enricher.enrich(plan.details[:MAX_DETAILS], input)
        details = prune_special_rows(details, input)
        buffs = self.buff_filter.filter(plan.buffs[:MAX_BUFFS], input)

        keys = {d.damage_key for d in details}
        default_key = plan.default_damage_key if plan.default_damage_key in keys else None
        return Plan(
            main_attr_list=plan.main_attr_list,
            default_damage_key=default_key,
            details=details,
            buffs=buffs,
        )
