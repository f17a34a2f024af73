"""Closed vocabularies shared by the planner, validator, renderer and sandbox.

Every table here is immutable. Anything that needs to vary per run is passed
explicitly through the objects that use it.
"""

import re

from calcplan.core.models import Game

TALENT_ORDER: tuple[str, ...] = (
    "a", "a2", "a3", "e", "e1", "e2", "q", "q2", "t", "t2", "z",
    "me", "me2", "mt", "mt1", "mt2",
)

CORE_TALENTS: dict[Game, tuple[str, ...]] = {
    Game.GS: ("a", "e", "q"),
    Game.SR: ("a", "e", "q", "t"),
}

DEFAULT_MAIN_ATTR = "atk,cpct,cdmg"

MAX_DETAILS = 20
MAX_BUFFS = 30

SCALE_STATS: frozenset[str] = frozenset({"atk", "hp", "def", "mastery"})

# Reaction ids, canonical spelling. Lookup is case-insensitive.
REACTIONS: dict[Game, tuple[str, ...]] = {
    Game.GS: (
        "vaporize", "melt", "aggravate", "spread",
        "swirl", "crystallize", "bloom", "hyperBloom", "burgeon", "burning",
        "superConduct", "electroCharged", "overloaded", "shatter",
        "lunarCharged", "lunarBloom", "lunarCrystallize",
    ),
    Game.SR: (
        "shock", "burn", "windShear", "bleed", "entanglement",
        "physicalBreak", "fireBreak", "iceBreak", "lightningBreak",
        "windBreak", "quantumBreak", "imaginaryBreak", "superBreak",
    ),
}

AMPLIFYING_REACTIONS = frozenset({"vaporize", "melt", "aggravate", "spread"})

TRANSFORMATIVE_REACTIONS: dict[Game, frozenset[str]] = {
    Game.GS: frozenset(REACTIONS[Game.GS]) - AMPLIFYING_REACTIONS,
    Game.SR: frozenset(REACTIONS[Game.SR]),
}

# Element overrides accepted on a damage detail.
ELEMENT_OVERRIDES: dict[Game, frozenset[str]] = {
    Game.GS: frozenset({
        "phy", "scene", "vaporize", "melt", "aggravate", "spread", "swirl",
        "crystallize", "bloom", "hyperBloom", "burgeon", "burning",
        "superConduct", "electroCharged", "overloaded", "shatter",
        "lunarCharged", "lunarBloom", "lunarCrystallize",
    }),
    Game.SR: frozenset({
        "scene", "shock", "burn", "windShear", "bleed", "entanglement",
        "skillDot", "physicalBreak", "fireBreak", "iceBreak", "lightningBreak",
        "windBreak", "quantumBreak", "imaginaryBreak", "superBreak", "elation",
    }),
}

# Reaction word evidence, keyed by canonical reaction id.
REACTION_EVIDENCE: dict[str, str] = {
    "vaporize": r"蒸发|vaporiz",
    "melt": r"融化|melt",
    "aggravate": r"超激化|aggravat|quicken|激化",
    "spread": r"蔓激化|spread|quicken|激化",
    "swirl": r"扩散|swirl",
    "crystallize": r"结晶|crystalliz",
    "bloom": r"绽放|bloom",
    "hyperBloom": r"超绽放|hyperbloom",
    "burgeon": r"烈绽放|burgeon",
    "burning": r"燃烧|burning",
    "superConduct": r"超导|superconduct",
    "electroCharged": r"感电|electro-?charged",
    "overloaded": r"超载|overload",
    "shatter": r"碎冰|shatter",
    "lunarCharged": r"月感电|lunar.?charged",
    "lunarBloom": r"月绽放|lunar.?bloom",
    "lunarCrystallize": r"月结晶|lunar.?crystalliz",
    "shock": r"触电|shock",
    "burn": r"灼烧|burn",
    "windShear": r"风化|wind.?shear",
    "bleed": r"裂伤|bleed",
    "entanglement": r"纠缠|entangle",
    "superBreak": r"超击破|super.?break",
}
for _elem in ("physical", "fire", "ice", "lightning", "wind", "quantum", "imaginary"):
    REACTION_EVIDENCE[f"{_elem}Break"] = r"击破|break"

# Amplifying/catalyzing reaction that an element can trigger.
ELEMENT_AMP_REACTION: dict[str, str] = {
    "pyro": "vaporize", "火": "vaporize",
    "hydro": "vaporize", "水": "vaporize",
    "cryo": "melt", "冰": "melt",
    "electro": "aggravate", "雷": "aggravate",
    "dendro": "spread", "草": "spread",
}

# Transformative reaction showcased for an element when hints mention EM or reactions.
ELEMENT_TRANSFORMATIVE_REACTION: dict[str, str] = {
    "anemo": "swirl", "风": "swirl",
    "geo": "crystallize", "岩": "crystallize",
    "dendro": "bloom", "草": "bloom",
    "hydro": "bloom", "水": "bloom",
    "electro": "hyperBloom", "雷": "hyperBloom",
    "pyro": "burgeon", "火": "burgeon",
    "cryo": "shatter", "冰": "shatter",
}

REACTION_TITLES: dict[str, str] = {
    "swirl": "Swirl DMG",
    "crystallize": "Crystallize Shield",
    "bloom": "Bloom DMG",
    "hyperBloom": "Hyperbloom DMG",
    "burgeon": "Burgeon DMG",
    "shatter": "Shatter DMG",
    "burning": "Burning DMG",
    "overloaded": "Overloaded DMG",
    "superConduct": "Superconduct DMG",
    "electroCharged": "Electro-Charged DMG",
}

_SCOPED_SUFFIX = "(Def|Ignore|Dmg|Enemydmg|Plus|Pct|Cpct|Cdmg|Multi|Elevated)"

BUFF_KEY_PATTERNS: dict[Game, tuple[re.Pattern, ...]] = {
    Game.GS: tuple(re.compile(p) for p in (
        r"^(hp|atk|def)(Base|Plus|Pct|Inc)?$",
        r"^(mastery|cpct|cdmg|heal|recharge|dmg|phy|shield)(Plus|Pct|Inc)?$",
        r"^(enemyDef|enemyIgnore|ignore)$",
        r"^(kx|fykx|multi|fyplus|fypct|fybase|fyinc|fycdmg|elevated)$",
        r"^(vaporize|melt|crystallize|burning|superConduct|swirl|electroCharged|shatter|"
        r"overloaded|bloom|burgeon|hyperBloom|aggravate|spread|lunarCharged|lunarBloom|"
        r"lunarCrystallize)$",
        rf"^(a|a2|a3|e|q|nightsoul){_SCOPED_SUFFIX}$",
    )),
    Game.SR: tuple(re.compile(p) for p in (
        r"^(hp|atk|def|speed)(Base|Plus|Pct|Inc)?$",
        r"^(speed|recharge|cpct|cdmg|heal|dmg|enemydmg|effPct|effDef|shield|stance)(Plus|Pct|Inc)?$",
        r"^(enemyDef|enemyIgnore|ignore)$",
        r"^(kx|multi)$",
        rf"^(a|a2|a3|e|q|t|me|mt|dot|break){_SCOPED_SUFFIX}$",
        r"^elation(Pct|Enemydmg|Merrymake|Def|Ignore)?$",
    )),
}

# Context names a deferred script expression may reference.
CONTEXT_NAMES: tuple[str, ...] = (
    "talent", "attr", "calc", "params", "cons", "weapon", "trees",
    "element", "currentTalent",
)

# Helper functions callable from script expressions.
HELPER_NAMES: tuple[str, ...] = (
    "dmg", "heal", "shield", "reaction", "calc", "toRatio",
    "num", "pick", "sum", "isList", "min", "max", "round",
)


def canonical_reaction(game: Game, value: str | None) -> str | None:
    """Return the canonical reaction id for a game, or None if unrecognised."""
    if not value:
        return None
    wanted = str(value).strip().lower()
    for reaction in REACTIONS[game]:
        if reaction.lower() == wanted:
            return reaction
    return None


def canonical_element_override(game: Game, value: str | None) -> str | None:
    if not value:
        return None
    wanted = str(value).strip()
    for ele in ELEMENT_OVERRIDES[game]:
        if ele.lower() == wanted.lower():
            return ele
    return None


def is_allowed_buff_key(game: Game, key: str) -> bool:
    """Check a buff data key against the per-game vocabulary."""
    key = str(key or "").strip()
    if not key:
        return False
    # Underscore keys are display-only values
    if key.startswith("_"):
        return True
    return any(p.match(key) for p in BUFF_KEY_PATTERNS[game])


def talent_sort_key(talent: str) -> int:
    try:
        return TALENT_ORDER.index(talent)
    except ValueError:
        return len(TALENT_ORDER)
