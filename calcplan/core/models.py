from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Game(str, Enum):
    """Game variant a plan is compiled for."""

    GS = "gs"
    SR = "sr"


class TalentKey(str, Enum):
    """Ability block a table belongs to."""

    A = "a"
    A2 = "a2"
    A3 = "a3"
    E = "e"
    E1 = "e1"
    E2 = "e2"
    Q = "q"
    Q2 = "q2"
    T = "t"
    T2 = "t2"
    Z = "z"
    ME = "me"
    ME2 = "me2"
    MT = "mt"
    MT1 = "mt1"
    MT2 = "mt2"


class DetailKind(str, Enum):
    DMG = "dmg"
    HEAL = "heal"
    SHIELD = "shield"
    REACTION = "reaction"


class Provenance(str, Enum):
    """Code path that produced a script, written into its createdBy export."""

    MODEL_ASSISTED = "calcplan:model-assisted"
    UPSTREAM_DERIVED = "calcplan:upstream-derived"
    UPSTREAM_DIRECT = "calcplan:upstream-direct"
    HEURISTIC = "calcplan:heuristic"


TALENT_KEYS = frozenset(k.value for k in TalentKey)


class PlanInput(BaseModel):
    """Structured description of one character's abilities (immutable)."""

    model_config = ConfigDict(frozen=True)

    game: Game = Field(..., description="Game variant")
    name: str = Field(..., description="Character display name")
    element: str = Field(default="", description="Element name or id")
    weapon: str | None = Field(default=None, description="Weapon type")
    star: int | None = Field(default=None, ge=1, le=5, description="Rarity")
    tables: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Talent key -> allowed table names (authoritative whitelist)",
    )
    table_units: dict[str, dict[str, str]] = Field(
        default_factory=dict, description="Talent key -> table -> unit hint text"
    )
    table_samples: dict[str, dict[str, Any]] = Field(
        default_factory=dict, description="Talent key -> table -> sample value at a typical level"
    )
    table_text_samples: dict[str, dict[str, str]] = Field(
        default_factory=dict, description="Talent key -> table -> value text (e.g. '80%ATK×3')"
    )
    talent_desc: dict[str, str] = Field(
        default_factory=dict, description="Talent key -> free-text description"
    )
    buff_hints: list[str] = Field(
        default_factory=list, description="Passive/constellation hint lines"
    )

    @field_validator("tables")
    @classmethod
    def normalize_tables(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        """Trim and de-duplicate table names, keeping first occurrence order."""
        normalized: dict[str, list[str]] = {}
        for talent, names in v.items():
            if talent not in TALENT_KEYS:
                raise ValueError(f"Unknown talent key: {talent!r}")
            seen: list[str] = []
            for name in names or []:
                name = str(name or "").strip()
                if name and name not in seen:
                    seen.append(name)
            normalized[talent] = seen
        return normalized

    @field_validator("buff_hints")
    @classmethod
    def drop_empty_hints(cls, v: list[str]) -> list[str]:
        return [h.strip() for h in v if h and h.strip()]

    def has_table(self, talent: str | None, table: str | None) -> bool:
        """Return True if (talent, table) is part of the whitelist."""
        if not talent or not table:
            return False
        return table in self.tables.get(talent, [])

    def hint_text(self) -> str:
        """All hint and description text joined, used as evidence for enrichment."""
        parts = list(self.buff_hints)
        parts.extend(self.talent_desc.values())
        return "\n".join(parts)


class Detail(BaseModel):
    """One showcase row of the rendered script."""

    title: str = Field(..., min_length=1, description="Display title")
    kind: DetailKind = Field(default=DetailKind.DMG, description="Row kind")
    talent: str | None = Field(default=None, description="Talent key the table belongs to")
    table: str | None = Field(default=None, description="Table name, member of tables[talent]")
    key: str | None = Field(default=None, description="Damage bucket key (defaults to talent)")
    element: str | None = Field(default=None, description="Element/reaction override")
    scale_stat: str | None = Field(default=None, description="atk|hp|def|mastery")
    reaction: str | None = Field(default=None, description="Reaction id for reaction rows")
    pick: int | None = Field(default=None, ge=0, le=10, description="Index into array tables")
    params: dict[str, Any] | None = Field(default=None, description="Static parameters")
    check_expr: str | None = Field(default=None, description="Boolean gate expression")
    raw_expr: str | None = Field(default=None, description="Verbatim composite expression")
    cons: int | None = Field(default=None, ge=1, le=6, description="Constellation requirement")

    @model_validator(mode="after")
    def check_kind_fields(self) -> Detail:
        if self.kind == DetailKind.REACTION:
            if not self.reaction:
                raise ValueError("reaction detail requires a reaction id")
        elif not self.talent or not self.table:
            raise ValueError(f"{self.kind.value} detail requires talent and table")
        return self

    @property
    def damage_key(self) -> str:
        """Bucket key used by the script (explicit key, else the talent)."""
        if self.key and self.key.strip():
            return self.key.strip()
        return self.talent or ""

    def identity(self) -> tuple[Any, ...]:
        """Key used to detect duplicate rows."""
        return (
            self.kind, self.talent, self.table, self.damage_key,
            self.element, self.reaction, self.pick, self.raw_expr,
        )


class Buff(BaseModel):
    """Conditional or constant stat modifier definition."""

    title: str = Field(..., min_length=1, description="Display title")
    sort: int | None = Field(default=None, description="Display order hint")
    constellation_req: int | None = Field(default=None, ge=1, le=6)
    trace_req: int | None = Field(default=None, ge=1, le=10)
    check_expr: str | None = Field(default=None, description="Boolean gate expression")
    data: dict[str, float | str] = Field(
        default_factory=dict, description="Buff key -> numeric value or expression text"
    )

    def effect_keys(self) -> list[str]:
        return [k for k in self.data if not k.startswith("_")]


class Plan(BaseModel):
    """Validated intermediate representation between planner output and script."""

    main_attr_list: str = Field(..., min_length=1, description="Comma-separated main attributes")
    default_damage_key: str | None = Field(default=None)
    details: list[Detail] = Field(default_factory=list, max_length=20)
    buffs: list[Buff] = Field(default_factory=list, max_length=30)


class ModelSettings(BaseModel):
    """Generative-model configuration."""

    enabled: bool = Field(default=False)
    model: str = Field(default="gpt-4o-mini")
    base_url: str | None = Field(default=None, description="OpenAI-compatible endpoint")
    api_key_env: str = Field(default="CALCPLAN_LLM_API_KEY")
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    timeout_s: float = Field(default=30.0, gt=0)
    max_attempts: int = Field(default=3, ge=1, le=10)


class CacheOptions(BaseModel):
    """Response cache configuration."""

    enabled: bool = Field(default=True)
    root_dir: str | None = Field(default=None, description="Disk cache root; memory cache if unset")
    force: bool = Field(default=False, description="Skip cache reads (writes still happen)")
    version: str = Field(default="calc-plan/v1", description="Fingerprint version tag")


class CompilerSettings(BaseModel):
    model: ModelSettings = Field(default_factory=ModelSettings)
    cache: CacheOptions = Field(default_factory=CacheOptions)
    log_level: str = Field(default="INFO")


class Attempt(BaseModel):
    """Retry state threaded through the model path."""

    model_config = ConfigDict(frozen=True)

    number: int = Field(default=1, ge=1, description="1-based attempt number")
    max_attempts: int = Field(default=3, ge=1)
    last_error: str | None = Field(default=None, description="Failure of the previous attempt")

    @property
    def is_final(self) -> bool:
        return self.number >= self.max_attempts

    @property
    def exhausted(self) -> bool:
        return self.number > self.max_attempts

    def next(self, error: str) -> Attempt:
        return self.model_copy(update={"number": self.number + 1, "last_error": error})


class CompileResult(BaseModel):
    """Outcome of one compile invocation."""

    script: str = Field(..., description="Rendered script text")
    used_model: bool = Field(..., description="Whether the model path produced the script")
    error: str | None = Field(default=None, description="Non-fatal diagnostic")
    provenance: Provenance = Field(..., description="createdBy tag written into the script")
    attempts: int = Field(default=0, ge=0, description="Model attempts made")
