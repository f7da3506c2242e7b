# Copyright (c) 2024 torchtorch Authors.
# Licensed under the Apache License, Version 2.0

from __future__ import annotations

import re
from typing import Dict, FrozenSet, Optional, Set

_COUNTRY_ALIASES: Dict[str, str] = {
    "usa": "united states",
    "us": "united states",
    "u.s.": "united states",
    "u.s.a.": "united states",
    "united states of america": "united states",
    "america": "united states",
    "uk": "united kingdom",
    "u.k.": "united kingdom",
    "great britain": "united kingdom",
    "britain": "united kingdom",
    "england": "united kingdom",
    "scotland": "united kingdom",
    "wales": "united kingdom",
    "uae": "united arab emirates",
    "drc": "democratic republic of the congo",
    "dr congo": "democratic republic of the congo",
    "congo-kinshasa": "democratic republic of the congo",
    "congo-brazzaville": "republic of the congo",
    "czechia": "czech republic",
    "south korea": "south korea",
    "republic of korea": "south korea",
    "korea": "south korea",
    "north korea": "north korea",
    "dprk": "north korea",
    "russian federation": "russia",
    "burma": "myanmar",
    "ivory coast": "cote d'ivoire",
    "côte d'ivoire": "cote d'ivoire",
    "türkiye": "turkey",
    "turkiye": "turkey",
    "holland": "netherlands",
    "the netherlands": "netherlands",
    "the bahamas": "bahamas",
    "the gambia": "gambia",
    "viet nam": "vietnam",
    "lao pdr": "laos",
    "palestinian territories": "palestine",
    "gaza": "palestine",
    "west bank": "palestine",
    "eswatini": "eswatini",
    "swaziland": "eswatini",
    "east timor": "timor-leste",
}

_CONTINENTS: Dict[str, tuple] = {
    "africa": (
        "algeria", "angola", "benin", "botswana", "burkina faso", "burundi", "cameroon", "cape verde",
        "central african republic", "chad", "comoros", "democratic republic of the congo",
        "republic of the congo", "cote d'ivoire", "djibouti", "egypt", "equatorial guinea", "eritrea",
        "eswatini", "ethiopia", "gabon", "gambia", "ghana", "guinea", "guinea-bissau", "kenya", "lesotho",
        "liberia", "libya", "madagascar", "malawi", "mali", "mauritania", "mauritius", "morocco",
        "mozambique", "namibia", "niger", "nigeria", "rwanda", "senegal", "sierra leone", "somalia",
        "south africa", "south sudan", "sudan", "tanzania", "togo", "tunisia", "uganda", "zambia",
        "zimbabwe",
    ),
    "asia": (
        "afghanistan", "armenia", "azerbaijan", "bangladesh", "bhutan", "brunei", "cambodia", "china",
        "georgia", "india", "indonesia", "japan", "kazakhstan", "kyrgyzstan", "laos", "malaysia",
        "maldives", "mongolia", "myanmar", "nepal", "north korea", "pakistan", "philippines",
        "singapore", "south korea", "sri lanka", "taiwan", "tajikistan", "thailand", "timor-leste",
        "turkmenistan", "uzbekistan", "vietnam", "hong kong",
    ),
    "europe": (
        "albania", "andorra", "austria", "belarus", "belgium", "bosnia and herzegovina", "bulgaria",
        "croatia", "cyprus", "czech republic", "denmark", "estonia", "finland", "france", "germany",
        "greece", "hungary", "iceland", "ireland", "italy", "kosovo", "latvia", "liechtenstein",
        "lithuania", "luxembourg", "malta", "moldova", "monaco", "montenegro", "netherlands",
        "north macedonia", "norway", "poland", "portugal", "romania", "russia", "san marino", "serbia",
        "slovakia", "slovenia", "spain", "sweden", "switzerland", "ukraine", "united kingdom",
        "vatican city",
    ),
    "middle east": (
        "bahrain", "iran", "iraq", "israel", "jordan", "kuwait", "lebanon", "oman", "palestine",
        "qatar", "saudi arabia", "syria", "turkey", "united arab emirates", "yemen",
    ),
    "north america": (
        "antigua and barbuda", "bahamas", "barbados", "belize", "canada", "costa rica", "cuba",
        "dominica", "dominican republic", "el salvador", "grenada", "guatemala", "haiti", "honduras",
        "jamaica", "mexico", "nicaragua", "panama", "puerto rico", "saint kitts and nevis",
        "saint lucia", "saint vincent and the grenadines", "trinidad and tobago", "united states",
    ),
    "south america": (
        "argentina", "bolivia", "brazil", "chile", "colombia", "ecuador", "guyana", "paraguay", "peru",
        "suriname", "uruguay", "venezuela",
    ),
    "oceania": (
        "australia", "fiji", "kiribati", "marshall islands", "micronesia", "nauru", "new zealand",
        "palau", "papua new guinea", "samoa", "solomon islands", "tonga", "tuvalu", "vanuatu",
    ),
}

COUNTRY_CONTINENT: Dict[str, str] = {c: cont for cont, cs in _CONTINENTS.items() for c in cs}

# Words in trend titles that name a continent-level region.
CONTINENT_TITLE_TERMS: Dict[str, str] = {
    "africa": "africa",
    "african": "africa",
    "asia": "asia",
    "asian": "asia",
    "europe": "europe",
    "european": "europe",
    "middle east": "middle east",
    "middle eastern": "middle east",
    "north america": "north america",
    "north american": "north america",
    "caribbean": "north america",
    "central america": "north america",
    "south america": "south america",
    "south american": "south america",
    "latin america": "south america",
    "oceania": "oceania",
    "pacific islands": "oceania",
}

# Hand-maintained neighbours, including cross-continent land borders and
# close maritime neighbours. Symmetric closure is built below.
_ADJACENCY_SEED: Dict[str, tuple] = {
    "france": ("spain", "belgium", "luxembourg", "germany", "switzerland", "italy", "monaco", "andorra", "united kingdom"),
    "germany": ("denmark", "poland", "czech republic", "austria", "switzerland", "netherlands", "belgium", "luxembourg"),
    "spain": ("portugal", "andorra", "morocco"),
    "italy": ("switzerland", "austria", "slovenia", "san marino", "vatican city"),
    "poland": ("czech republic", "slovakia", "ukraine", "belarus", "lithuania", "russia"),
    "ukraine": ("russia", "belarus", "moldova", "romania", "hungary", "slovakia"),
    "russia": ("finland", "estonia", "latvia", "belarus", "georgia", "azerbaijan", "kazakhstan", "china", "mongolia", "north korea"),
    "turkey": ("greece", "bulgaria", "georgia", "armenia", "iran", "iraq", "syria", "cyprus"),
    "egypt": ("israel", "palestine", "libya", "sudan", "jordan", "saudi arabia"),
    "israel": ("lebanon", "syria", "jordan", "palestine"),
    "iran": ("iraq", "afghanistan", "pakistan", "armenia", "azerbaijan", "turkmenistan"),
    "iraq": ("syria", "jordan", "saudi arabia", "kuwait"),
    "saudi arabia": ("jordan", "kuwait", "qatar", "united arab emirates", "oman", "yemen", "bahrain"),
    "india": ("pakistan", "china", "nepal", "bhutan", "bangladesh", "myanmar", "sri lanka"),
    "china": ("mongolia", "north korea", "vietnam", "laos", "myanmar", "nepal", "bhutan", "pakistan", "afghanistan", "kazakhstan", "kyrgyzstan", "tajikistan", "taiwan", "hong kong"),
    "thailand": ("myanmar", "laos", "cambodia", "malaysia"),
    "vietnam": ("laos", "cambodia"),
    "malaysia": ("singapore", "indonesia", "brunei"),
    "indonesia": ("timor-leste", "papua new guinea", "philippines"),
    "japan": ("south korea",),
    "south korea": ("north korea",),
    "australia": ("new zealand", "papua new guinea"),
    "united states": ("canada", "mexico", "cuba", "bahamas"),
    "mexico": ("guatemala", "belize"),
    "guatemala": ("belize", "honduras", "el salvador"),
    "honduras": ("el salvador", "nicaragua"),
    "nicaragua": ("costa rica",),
    "costa rica": ("panama",),
    "panama": ("colombia",),
    "cuba": ("haiti", "jamaica", "bahamas"),
    "haiti": ("dominican republic",),
    "dominican republic": ("puerto rico",),
    "colombia": ("venezuela", "ecuador", "peru", "brazil"),
    "brazil": ("venezuela", "guyana", "suriname", "peru", "bolivia", "paraguay", "argentina", "uruguay"),
    "argentina": ("chile", "bolivia", "paraguay", "uruguay"),
    "peru": ("ecuador", "bolivia", "chile"),
    "kenya": ("ethiopia", "somalia", "south sudan", "uganda", "tanzania"),
    "sudan": ("south sudan", "chad", "libya", "ethiopia", "eritrea", "central african republic"),
    "nigeria": ("niger", "chad", "cameroon", "benin"),
    "south africa": ("namibia", "botswana", "zimbabwe", "mozambique", "eswatini", "lesotho"),
    "morocco": ("algeria",),
    "algeria": ("tunisia", "libya", "niger", "mali", "mauritania"),
    "pakistan": ("afghanistan",),
    "afghanistan": ("tajikistan", "uzbekistan", "turkmenistan"),
}


def _build_adjacency() -> Dict[str, FrozenSet[str]]:
    adj: Dict[str, Set[str]] = {}
    for a, bs in _ADJACENCY_SEED.items():
        for b in bs:
            adj.setdefault(a, set()).add(b)
            adj.setdefault(b, set()).add(a)
    return {k: frozenset(v) for k, v in adj.items()}


ADJACENCY: Dict[str, FrozenSet[str]] = _build_adjacency()


def normalize_country(name: Optional[str]) -> str:
    s = re.sub(r"\s+", " ", (name or "").strip().lower())
    s = s.removeprefix("the ") if s not in _COUNTRY_ALIASES else s
    return _COUNTRY_ALIASES.get(s, s)


def same_country(a: Optional[str], b: Optional[str]) -> bool:
    na, nb = normalize_country(a), normalize_country(b)
    return bool(na) and na == nb


def continent_of(country: Optional[str]) -> Optional[str]:
    return COUNTRY_CONTINENT.get(normalize_country(country))


def are_adjacent(a: Optional[str], b: Optional[str]) -> bool:
    na, nb = normalize_country(a), normalize_country(b)
    return nb in ADJACENCY.get(na, frozenset())


def continent_named_in(title: Optional[str]) -> Optional[str]:
    t = (title or "").lower()
    # longest terms first so "south america" wins over "america"
    for term in sorted(CONTINENT_TITLE_TERMS, key=len, reverse=True):
        if re.search(rf"\b{re.escape(term)}\b", t):
            return CONTINENT_TITLE_TERMS[term]
    return None
